import pytest

from canvas_course_sync.link_resolver import LinkResolver, strip_link_markers
from canvas_course_sync.models import ItemKind


@pytest.fixture
def resolver():
    resolver = LinkResolver()
    resolver.register("page", "Syllabus", "https://x/1")
    return resolver


def test_resolve_is_case_and_space_insensitive(resolver):
    """Test that registered targets resolve regardless of case and padding."""
    text, rewritten = resolver.resolve("Read the [[Page:  syllabus ]] first.")

    assert rewritten is True
    assert text == 'Read the <a href="https://x/1">syllabus</a> first.'


def test_unregistered_marker_degrades_to_title(resolver):
    """Test that an unknown target becomes plain text, never raw marker syntax."""
    text, rewritten = resolver.resolve("See [[Page:Missing]].")

    assert rewritten is False
    assert text == "See Missing."


def test_mixed_markers(resolver):
    """Test that one resolvable marker is enough to report a rewrite."""
    text, rewritten = resolver.resolve("[[Page:Syllabus]] and [[Assignment:HW9]]")

    assert rewritten is True
    assert "[[" not in text
    assert text.endswith(" and HW9")


def test_register_accepts_item_kinds(resolver):
    """Test that ItemKind and string kinds share one key space."""
    resolver.register(ItemKind.ASSIGNMENT, "HW1", "https://x/a/5")

    assert resolver.lookup("Assignment", " hw1 ") == "https://x/a/5"


def test_addresses_are_escaped():
    """Test that the address is HTML-escaped in the generated link."""
    resolver = LinkResolver()
    resolver.register("file", "Notes", "https://x/files/1?a=1&b=2")

    text, _ = resolver.resolve("[[File:Notes]]")

    assert 'href="https://x/files/1?a=1&amp;b=2"' in text


def test_has_links_and_clear(resolver):
    """Test marker detection and that clear empties the registry."""
    assert resolver.has_links("x [[Page:Syllabus]] y")
    assert not resolver.has_links("x [Page:Syllabus] y")
    assert not resolver.has_links("")

    resolver.clear()
    assert resolver.lookup("page", "Syllabus") is None


def test_strip_link_markers():
    """Test that markers are reduced to their titles."""
    assert strip_link_markers("See [[Discussion: Intros ]] today") == "See Intros today"
