"""
Change detection: compares parsed markdown content with Canvas data.

Every comparison returns a ChangeDetection. No Canvas data means the item
does not exist remotely (or its recorded id is stale) and must be created;
otherwise the listed fields decide between update and skip.
"""

import logging
from datetime import datetime
from typing import Optional

from .link_resolver import strip_link_markers
from .models import (
    Action,
    Assignment,
    ChangeDetection,
    Discussion,
    ItemKind,
    Module,
    Page,
)
from .normalizer import compare_html_content, markdown_to_html, normalize_html

log = logging.getLogger(__name__)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a Canvas ISO 8601 timestamp ('...Z' included)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        log.debug(f"Unparsable timestamp {value!r}")
        return None


def same_instant(local: Optional[datetime], remote) -> bool:
    remote_dt = parse_timestamp(remote)
    if local is None or remote_dt is None:
        return local is None and remote_dt is None
    if local.tzinfo is None:
        local = local.astimezone()
    if remote_dt.tzinfo is None:
        remote_dt = remote_dt.astimezone()
    return local == remote_dt


def same_points(local: Optional[float], remote) -> bool:
    """Numeric equality where missing and null are the same thing."""
    if local is None or remote is None:
        return local is None and remote is None
    try:
        return abs(float(local) - float(remote)) < 1e-9
    except (TypeError, ValueError):
        return False


def same_text(local: Optional[str], remote: Optional[str]) -> bool:
    return (local or '').strip() == (remote or '').strip()


def same_rich_text(local_markdown: str, remote_html: Optional[str]) -> bool:
    """Compare typed markdown against stored HTML.

    Cross-reference markers are compared by title: once resolved, Canvas
    holds a link whose text is that title.
    """
    local_html = markdown_to_html(strip_link_markers(local_markdown or ''))
    if compare_html_content(local_html, remote_html or ''):
        return True
    log.debug(f"  Local (normalized):  {normalize_html(local_html)[:200]!r}")
    log.debug(f"  Canvas (normalized): {normalize_html(remote_html or '')[:200]!r}")
    return False


def _result(changed: list[str]) -> ChangeDetection:
    if changed:
        return ChangeDetection(action=Action.UPDATE, changed_fields=changed)
    return ChangeDetection(action=Action.SKIP)


class ContentComparator:
    """Compares local content against Canvas data to detect changes."""

    @staticmethod
    def compare_module(local: Module, canvas_data: Optional[dict]) -> ChangeDetection:
        """Compare module metadata."""
        if not canvas_data:
            return ChangeDetection(action=Action.CREATE)

        changed = []
        if not same_text(local.title, canvas_data.get("name")):
            changed.append("title")
        return _result(changed)

    @staticmethod
    def compare_page(local: Page, canvas_data: Optional[dict]) -> ChangeDetection:
        """Compare page title and body."""
        if not canvas_data:
            return ChangeDetection(action=Action.CREATE)

        changed = []
        if not same_text(local.title, canvas_data.get("title")):
            changed.append("title")
        if not same_rich_text(local.body, canvas_data.get("body")):
            changed.append("body")
        return _result(changed)

    @staticmethod
    def compare_assignment(local: Assignment, canvas_data: Optional[dict]) -> ChangeDetection:
        """Compare assignment metadata and description.

        Submission types are not compared: Canvas refuses to change them on an
        existing assignment, so a difference could never be applied.
        """
        if not canvas_data:
            return ChangeDetection(action=Action.CREATE)

        changed = []
        if not same_text(local.title, canvas_data.get("name")):
            changed.append("title")
        if not same_rich_text(local.description, canvas_data.get("description")):
            changed.append("description")
        if not same_points(local.points, canvas_data.get("points_possible")):
            changed.append("points_possible")
        if not same_instant(local.due_at, canvas_data.get("due_at")):
            changed.append("due_at")
        if local.grading_type and local.grading_type.value != canvas_data.get("grading_type"):
            changed.append("grading_type")
        return _result(changed)

    @staticmethod
    def compare_discussion(local: Discussion, canvas_data: Optional[dict]) -> ChangeDetection:
        """Compare discussion settings and message."""
        if not canvas_data:
            return ChangeDetection(action=Action.CREATE)

        changed = []
        if not same_text(local.title, canvas_data.get("title")):
            changed.append("title")
        if not same_rich_text(local.message, canvas_data.get("message")):
            changed.append("message")

        if (local.require_initial_post is not None
                and local.require_initial_post != bool(canvas_data.get("require_initial_post"))):
            changed.append("require_initial_post")

        canvas_threaded = canvas_data.get("discussion_type", "threaded") == "threaded"
        if local.threaded != canvas_threaded:
            changed.append("threaded")

        # A graded discussion is one that carries an assignment
        canvas_assignment = canvas_data.get("assignment")
        canvas_graded = bool(canvas_assignment)
        if local.graded != canvas_graded:
            changed.append("graded")
        elif local.graded:
            if not same_points(local.points, canvas_assignment.get("points_possible")):
                changed.append("points")
            if not same_instant(local.due_at, canvas_assignment.get("due_at")):
                changed.append("due_at")

        return _result(changed)

    @staticmethod
    def compare_module_item(local, canvas_data: Optional[dict] = None) -> ChangeDetection:
        """Headers, links and files are created once and never updated in place."""
        if local.canvas_module_item_id is None:
            return ChangeDetection(action=Action.CREATE)
        return ChangeDetection(action=Action.SKIP)

    @classmethod
    def compare_item(cls, item, canvas_data: Optional[dict]) -> ChangeDetection:
        """Dispatch on the item kind."""
        if item.kind is ItemKind.PAGE:
            result = cls.compare_page(item, canvas_data)
        elif item.kind is ItemKind.ASSIGNMENT:
            result = cls.compare_assignment(item, canvas_data)
        elif item.kind is ItemKind.DISCUSSION:
            result = cls.compare_discussion(item, canvas_data)
        elif item.kind in (ItemKind.HEADER, ItemKind.LINK, ItemKind.FILE):
            result = cls.compare_module_item(item, canvas_data)
        else:
            raise ValueError(f"Unknown item kind: {item.kind!r}")

        log.debug(f"[{item.kind.value}] {item.title}: {result.action.value} {result.changed_fields}")
        return result
