"""
Data models for the course document and for sync results.

Module items form a tagged union: every item class carries a ``kind``
discriminant (an ``ItemKind``) and callers dispatch on it instead of on the
class hierarchy.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class ItemKind(Enum):
    PAGE = "page"
    ASSIGNMENT = "assignment"
    DISCUSSION = "discussion"
    HEADER = "header"
    LINK = "link"
    FILE = "file"

    @classmethod
    def from_marker(cls, value: str) -> Optional["ItemKind"]:
        """Look up a kind from the ``[kind]`` token of an item heading."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Action(Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class GradingType(Enum):
    """Canvas ``grading_type`` values."""
    PASS_FAIL = "pass_fail"
    POINTS = "points"
    NOT_GRADED = "not_graded"
    LETTER_GRADE = "letter_grade"
    GPA_SCALE = "gpa_scale"
    PERCENT = "percent"


class SubmissionType(Enum):
    ONLINE_TEXT = "online_text_entry"
    ONLINE_UPLOAD = "online_upload"
    ONLINE_URL = "online_url"
    MEDIA_RECORDING = "media_recording"
    NONE = "none"
    ON_PAPER = "on_paper"


# =============================================================================
# Course document
# =============================================================================

@dataclass
class TextHeader:
    title: str
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.HEADER, init=False, repr=False)


@dataclass
class Page:
    title: str
    body: str = ""
    canvas_page_id: Optional[str] = None  # URL slug, not numeric
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.PAGE, init=False, repr=False)


@dataclass
class ExternalLink:
    title: str
    url: str = ""
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.LINK, init=False, repr=False)


@dataclass
class File:
    title: str  # Display title in module
    filename: Optional[str] = None
    canvas_file_id: Optional[int] = None
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.FILE, init=False, repr=False)


@dataclass
class Assignment:
    title: str
    description: str = ""
    points: Optional[float] = None
    due_at: Optional[datetime] = None
    grading_type: Optional[GradingType] = None
    submission_types: Optional[list[SubmissionType]] = None
    canvas_assignment_id: Optional[int] = None
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.ASSIGNMENT, init=False, repr=False)


@dataclass
class Discussion:
    title: str
    message: str = ""
    require_initial_post: Optional[bool] = None
    threaded: bool = True
    graded: bool = False
    points: Optional[float] = None
    due_at: Optional[datetime] = None
    canvas_discussion_id: Optional[int] = None
    canvas_module_item_id: Optional[int] = None
    kind: ItemKind = field(default=ItemKind.DISCUSSION, init=False, repr=False)


ModuleItem = Union[Page, Assignment, Discussion, TextHeader, ExternalLink, File]


@dataclass
class Module:
    title: str
    items: list = field(default_factory=list)  # ModuleItem instances, document order
    canvas_module_id: Optional[int] = None


def remote_id(item) -> Optional[Union[int, str]]:
    """Return the content identity recorded for an item, if any.

    Headers and links have no content object; their only identity is the
    module item id.
    """
    if item.kind is ItemKind.PAGE:
        return item.canvas_page_id
    if item.kind is ItemKind.ASSIGNMENT:
        return item.canvas_assignment_id
    if item.kind is ItemKind.DISCUSSION:
        return item.canvas_discussion_id
    if item.kind is ItemKind.FILE:
        return item.canvas_file_id
    return item.canvas_module_item_id


def rich_text(item) -> str:
    """Return the free-form content of a content-bearing item ('' otherwise)."""
    if item.kind is ItemKind.PAGE:
        return item.body
    if item.kind is ItemKind.ASSIGNMENT:
        return item.description
    if item.kind is ItemKind.DISCUSSION:
        return item.message
    return ""


# =============================================================================
# Sync results
# =============================================================================

@dataclass
class ChangeDetection:
    """Result of comparing a local item against its remote counterpart."""
    action: Action
    changed_fields: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.action is not Action.SKIP

    @property
    def reason(self) -> Optional[str]:
        """Human-readable explanation, e.g. ``Changed: title, body``."""
        if self.changed_fields:
            return f"Changed: {', '.join(self.changed_fields)}"
        return None


@dataclass
class ItemPreview:
    kind: ItemKind
    title: str
    action: Action
    changed_fields: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModulePreview:
    title: str
    action: Action
    changed_fields: list[str] = field(default_factory=list)
    items: list[ItemPreview] = field(default_factory=list)


@dataclass
class UploadError:
    item_type: str
    item_title: str
    error: str

    def __str__(self) -> str:
        return f"[{self.item_type}] {self.item_title}: {self.error}"


@dataclass
class UploadStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    link_updates: int = 0  # Extra content updates issued while resolving links
    errors: list[UploadError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def record(self, action: Action):
        """Count one classified-and-applied module or item."""
        if action is Action.CREATE:
            self.created += 1
        elif action is Action.UPDATE:
            self.updated += 1
        else:
            self.skipped += 1

    def add_error(self, item_type: str, item_title: str, error: Exception):
        self.errors.append(UploadError(item_type, item_title, str(error) or type(error).__name__))

    def summary(self) -> str:
        counts = f"{self.created} created, {self.updated} updated, {self.skipped} skipped"
        if self.errors:
            return f"Completed with {len(self.errors)} error(s): {counts}"
        return f"Completed successfully: {counts}"
