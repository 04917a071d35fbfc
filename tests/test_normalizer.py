import pytest

from canvas_course_sync.normalizer import (
    compare_html_content,
    markdown_to_html,
    normalize_html,
)


def test_markdown_and_canvas_html_normalize_equal():
    """Test that typed markdown and Canvas' stored HTML of the same text match."""
    local = markdown_to_html("Hello **world**")
    remote = "<p>Hello <strong>world</strong></p>"

    assert normalize_html(local) == normalize_html(remote)


def test_entities_are_decoded():
    """Test that named and numeric entities become literal characters."""
    assert normalize_html("Caf&eacute;&nbsp;&#39;time&#x27;") == "café 'time'"


def test_line_breaks_and_blocks_become_spaces():
    """Test that <br> and block boundaries keep words apart."""
    assert normalize_html("line one<br>line two") == "line one line two"
    assert normalize_html("<p>a</p><p>b</p>") == "a b"
    assert normalize_html("<ul><li>first</li><li>second</li></ul>") == "first second"


def test_unicode_punctuation_is_folded():
    """Test that smart quotes, dashes and ellipses compare equal to ASCII."""
    assert compare_html_content("“Quoted” — text…", '"Quoted" - text...')
    assert compare_html_content("It’s here", "It's here")


def test_markdown_escapes_are_removed():
    """Test that backslash escapes before punctuation are ignored."""
    assert normalize_html(r"1\. Intro \(draft\)") == "1. intro (draft)"


def test_bare_url_wrapping_is_collapsed():
    """Test that [url](url) and a plain anchor with the URL as text match."""
    assert compare_html_content(
        "[https://x.org](https://x.org)",
        '<a href="https://x.org">https://x.org</a>',
    )
    assert compare_html_content("see (https://x.org)", "see https://x.org")


def test_underscore_blanks_are_ignored():
    """Test that fill-in-the-blank underscores do not count as content."""
    assert compare_html_content("Name: ____ date", "Name: date")


def test_hyphen_spacing_is_normalized():
    """Test that spacing around hyphens does not matter."""
    assert compare_html_content("pre - post", "pre-post")


def test_whitespace_and_case_are_ignored():
    """Test that whitespace runs and letter case do not matter."""
    assert normalize_html("  Some\n\n   TEXT\t here ") == "some text here"


@pytest.mark.parametrize("value", ["", None])
def test_empty_content_normalizes_to_empty_string(value):
    """Test that missing content normalizes to an empty string."""
    assert normalize_html(value) == ""


def test_real_text_differences_are_detected():
    """Test that a changed word is still a difference."""
    assert not compare_html_content("<p>Read chapter 1</p>", "Read chapter 2")


def test_markdown_to_html_headings_are_promoted():
    """Test that demoted body headings map back to Canvas heading levels."""
    assert markdown_to_html("### Intro") == "<h1>Intro</h1>"
    assert markdown_to_html("#### Part") == "<h2>Part</h2>"


def test_markdown_to_html_lists():
    """Test unordered and ordered lists."""
    assert markdown_to_html("- a\n- b") == "<ul><li>a</li><li>b</li></ul>"
    assert markdown_to_html("1. a\n2. b") == "<ol><li>a</li><li>b</li></ol>"


def test_markdown_to_html_paragraphs_and_breaks():
    """Test that blank lines split paragraphs and single newlines are breaks."""
    assert markdown_to_html("a\nb\n\nc") == "<p>a<br>b</p><p>c</p>"


def test_markdown_to_html_inline_formatting():
    """Test bold, italic, links and images."""
    assert markdown_to_html("**b** and *i*") == "<p><strong>b</strong> and <em>i</em></p>"
    assert markdown_to_html("[site](https://x.org)") == '<p><a href="https://x.org">site</a></p>'
    assert markdown_to_html("![logo](https://x.org/a.png)") == '<p><img alt="logo" src="https://x.org/a.png"></p>'


def test_markdown_to_html_leaves_snake_case_alone():
    """Test that underscores inside words are not emphasis."""
    assert "<em>" not in markdown_to_html("use snake_case_name here")


def test_markdown_to_html_respects_escapes_and_code():
    """Test that escaped characters and code spans are kept literal."""
    assert markdown_to_html(r"\*not italic\*") == "<p>*not italic*</p>"
    assert markdown_to_html("a `*b*` c") == "<p>a <code>*b*</code> c</p>"
    assert markdown_to_html("```\n<b>x</b>\n```") == "<pre><code>&lt;b&gt;x&lt;/b&gt;</code></pre>"


def test_markdown_to_html_rules_and_quotes():
    """Test horizontal rules and blockquotes."""
    assert markdown_to_html("a\n\n---\n\nb") == "<p>a</p><hr><p>b</p>"
    assert markdown_to_html("> quoted") == "<blockquote><p>quoted</p></blockquote>"
