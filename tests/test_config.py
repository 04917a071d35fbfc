from unittest import mock

import pytest
from keyring.errors import KeyringError

from canvas_course_sync import keychain
from canvas_course_sync.config import (
    CourseMetadata,
    extract_frontmatter,
    resolve_config,
    resolve_location,
    resolve_token,
    split_course_url,
)
from canvas_course_sync.errors import CourseSyncError, MissingCourseIdError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Fixture to keep CANVAS_* variables from the host out of the tests."""
    for name in ("CANVAS_URL", "CANVAS_COURSE_ID", "CANVAS_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_keychain():
    """Fixture to replace keychain access with a mock."""
    with mock.patch("canvas_course_sync.config.keychain") as patched:
        patched.get_token.return_value = None
        patched.save_token.return_value = True
        yield patched


def test_extract_frontmatter():
    """Test that the YAML block is split from the body."""
    metadata, body = extract_frontmatter("---\ncanvas_course_id: 42\n---\n# Week 1")

    assert metadata == {"canvas_course_id": 42}
    assert body == "# Week 1"


def test_extract_frontmatter_without_block():
    """Test documents with no or unclosed front matter."""
    assert extract_frontmatter("# Week 1") == ({}, "# Week 1")
    assert extract_frontmatter("---\nfoo: bar\n# Week 1") == ({}, "---\nfoo: bar\n# Week 1")


def test_malformed_frontmatter_is_ignored():
    """Test that invalid YAML yields empty metadata instead of an error."""
    metadata, body = extract_frontmatter("---\nfoo: [unclosed\n---\n# Week 1")

    assert metadata == {}
    assert body == "# Week 1"


def test_metadata_from_course_url():
    """Test that a full course URL supplies both base URL and id."""
    metadata = CourseMetadata.from_frontmatter({"canvas_url": "canvas.test/courses/42/"})

    assert metadata.canvas_url == "https://canvas.test"
    assert metadata.course_id == "42"


def test_explicit_course_id_wins_over_url():
    """Test canvas_course_id and the legacy course_id key."""
    metadata = CourseMetadata.from_frontmatter({
        "canvas_course_id": 7,
        "canvas_url": "https://canvas.test/courses/42",
    })
    assert metadata.course_id == "7"

    assert CourseMetadata.from_frontmatter({"course_id": 9}).course_id == "9"


def test_unknown_timezone_falls_back_to_local():
    """Test that an invalid timezone name gives no tzinfo."""
    assert CourseMetadata(timezone="Mars/Olympus").tzinfo is None
    assert CourseMetadata(timezone="UTC").tzinfo is not None


def test_split_course_url():
    """Test splitting base URLs with and without a course path."""
    assert split_course_url("https://canvas.test/courses/42") == ("https://canvas.test", "42")
    assert split_course_url("https://canvas.test/") == ("https://canvas.test", None)


def test_resolve_location_from_metadata():
    """Test that front matter needs no prompt."""
    prompt = mock.Mock()
    metadata = CourseMetadata(course_id="42", canvas_url="https://canvas.test")

    assert resolve_location(metadata, prompt) == ("https://canvas.test", "42")
    prompt.assert_not_called()


def test_resolve_location_from_environment(monkeypatch):
    """Test CANVAS_URL and CANVAS_COURSE_ID as fallbacks."""
    monkeypatch.setenv("CANVAS_URL", "https://canvas.test")
    monkeypatch.setenv("CANVAS_COURSE_ID", "42")

    assert resolve_location(CourseMetadata()) == ("https://canvas.test", "42")


def test_resolve_location_prompts():
    """Test the interactive fallback."""
    prompt = mock.Mock(side_effect=["canvas.test", "42"])

    assert resolve_location(CourseMetadata(), prompt) == ("https://canvas.test", "42")


def test_missing_course_id():
    """Test that no course id anywhere is an error."""
    with pytest.raises(MissingCourseIdError):
        resolve_location(CourseMetadata(canvas_url="https://canvas.test"))


def test_token_from_environment(monkeypatch, mock_keychain):
    """Test that CANVAS_API_TOKEN skips the keychain."""
    monkeypatch.setenv("CANVAS_API_TOKEN", "env-token")

    assert resolve_token("https://canvas.test", "42") == "env-token"
    mock_keychain.get_token.assert_not_called()


def test_token_from_keychain(mock_keychain):
    """Test keychain lookup."""
    mock_keychain.get_token.return_value = "stored"

    assert resolve_token("https://canvas.test", "42") == "stored"
    mock_keychain.get_token.assert_called_once_with("https://canvas.test", "42")


def test_prompted_token_is_saved(mock_keychain):
    """Test that a prompted token goes to the keychain."""
    prompt = mock.Mock(return_value=" typed ")

    assert resolve_token("https://canvas.test", "42", prompt) == "typed"
    mock_keychain.save_token.assert_called_once_with("https://canvas.test", "42", "typed")


def test_reset_token(mock_keychain):
    """Test that reset deletes the stored token and asks again."""
    mock_keychain.get_token.return_value = "stored"
    prompt = mock.Mock(return_value="fresh")

    assert resolve_token("https://canvas.test", "42", prompt, reset=True) == "fresh"
    mock_keychain.delete_token.assert_called_once_with("https://canvas.test", "42")
    mock_keychain.get_token.assert_not_called()


def test_resolve_config_without_token(mock_keychain):
    """Test that a missing token stops the run."""
    metadata = CourseMetadata(course_id="42", canvas_url="https://canvas.test")

    with pytest.raises(CourseSyncError, match="No API token"):
        resolve_config(metadata)


def test_resolve_config(monkeypatch, mock_keychain):
    """Test the combined configuration."""
    monkeypatch.setenv("CANVAS_API_TOKEN", "env-token")
    config = resolve_config(CourseMetadata(course_id="42", canvas_url="https://canvas.test"))

    assert config.api_token == "env-token"
    assert config.course_url == "https://canvas.test/courses/42"


def test_keychain_errors_are_not_fatal():
    """Test that keyring failures read as a missing token."""
    with mock.patch("canvas_course_sync.keychain.keyring") as keyring:
        keyring.get_password.side_effect = KeyringError("locked")
        keyring.set_password.side_effect = KeyringError("locked")

        assert keychain.get_token("https://canvas.test", "42") is None
        assert keychain.save_token("https://canvas.test", "42", "t") is False
        keyring.get_password.assert_called_once_with("canvas-course-sync", "https://canvas.test:42")
