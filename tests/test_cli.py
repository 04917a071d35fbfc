from unittest import mock

from canvas_course_sync.cli import main

DOCUMENT = """---
canvas_course_id: 42
canvas_url: https://canvas.test
---

# Week 1

## [page] Overview
Hello
"""


def test_template_command(capsys):
    """Test printing an assignment snippet."""
    assert main(["template", "assignment", "HW1", "--points", "10"]) == 0

    assert capsys.readouterr().out == "\n## [assignment] HW1\npoints: 10\n\n---\n"


def test_internal_link_template(capsys):
    """Test the cross-reference snippet."""
    assert main(["template", "internal-link", "Syllabus"]) == 0

    assert capsys.readouterr().out == "[[Page:Syllabus]]\n"


def test_upload_missing_file(tmp_path, capsys):
    """Test that a missing document is reported."""
    assert main(["upload", str(tmp_path / "missing.md")]) == 1
    assert "not found" in capsys.readouterr().out


def test_preview_makes_no_changes(tmp_path, monkeypatch, capsys):
    """Test that preview only reads from Canvas."""
    monkeypatch.setenv("CANVAS_API_TOKEN", "token")
    document = tmp_path / "course.md"
    document.write_text(DOCUMENT, encoding="utf-8")

    with mock.patch("canvas_course_sync.cli.CanvasAPI") as api_class:
        assert main(["preview", str(document)]) == 0

    api_class.assert_called_once_with("https://canvas.test", "42", "token")
    out = capsys.readouterr().out
    assert "[page] Overview (create)" in out
    assert "This was a dry run" in out
    api_class.return_value.create_page.assert_not_called()
