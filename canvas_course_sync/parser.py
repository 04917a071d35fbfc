"""
Parses the structured course markdown into Module / item objects.

Markdown Format:
    ---
    canvas_course_id: 126998
    canvas_url: https://kent.instructure.com/courses/126998
    ---

    # Module Name
    <!-- canvas_module_id: 1234 -->

    ## [header] Text Header Title

    ## [page] Page Title
    <!-- canvas_page_id: page-title -->
    <!-- canvas_module_item_id: 5678 -->
    Page content here...

    ## [link] Link Title
    url: https://example.com

    ## [file] Reading: Chapter 1
    filename: chapter1.pdf

    ## [assignment] Assignment Title
    points: 10
    due: 2026-01-15 11:59pm
    grade_display: points
    submission_types: online_text_entry, online_upload
    ---
    Assignment description here...

    ## [discussion] Discussion Title
    require_initial_post: true
    threaded: false
    graded: true
    points: 5
    due: 2026-01-15 11:59pm
    ---
    Discussion prompt here...

Parsing never fails: unknown item kinds, unparsable values and stray items
are reported as warnings and skipped.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Optional

from .config import CourseMetadata, extract_frontmatter
from .models import (
    Assignment,
    Discussion,
    ExternalLink,
    File,
    GradingType,
    ItemKind,
    Module,
    Page,
    SubmissionType,
    TextHeader,
)

log = logging.getLogger(__name__)

GRADING_TYPE_ALIASES = {
    'complete_incomplete': GradingType.PASS_FAIL,
    'pass_fail': GradingType.PASS_FAIL,
    'points': GradingType.POINTS,
    'not_graded': GradingType.NOT_GRADED,
    'letter_grade': GradingType.LETTER_GRADE,
    'gpa_scale': GradingType.GPA_SCALE,
    'percent': GradingType.PERCENT,
}

SUBMISSION_TYPE_ALIASES = {
    'online_text_entry': SubmissionType.ONLINE_TEXT,
    'online_text': SubmissionType.ONLINE_TEXT,
    'text': SubmissionType.ONLINE_TEXT,
    'online_upload': SubmissionType.ONLINE_UPLOAD,
    'upload': SubmissionType.ONLINE_UPLOAD,
    'file': SubmissionType.ONLINE_UPLOAD,
    'online_url': SubmissionType.ONLINE_URL,
    'url': SubmissionType.ONLINE_URL,
    'media_recording': SubmissionType.MEDIA_RECORDING,
    'media': SubmissionType.MEDIA_RECORDING,
    'none': SubmissionType.NONE,
    'on_paper': SubmissionType.ON_PAPER,
    'paper': SubmissionType.ON_PAPER,
}

TRUE_TOKENS = ('true', 'yes', 'on')
FALSE_TOKENS = ('false', 'no', 'off')

DATE_FORMATS = [
    '%Y-%m-%d %I:%M%p',      # 2026-01-15 11:59pm
    '%Y-%m-%d %I:%M %p',     # 2026-01-15 11:59 pm
    '%Y-%m-%d %H:%M',        # 2026-01-15 23:59
    '%Y-%m-%d',              # 2026-01-15 (defaults to 11:59pm)
    '%b %d, %Y %I:%M%p',     # Jan 15, 2026 11:59pm
    '%b %d, %Y %I:%M %p',    # Jan 15, 2026 11:59 pm
    '%b %d, %Y',             # Jan 15, 2026
]


@dataclass
class ParsedCourse:
    metadata: CourseMetadata
    modules: list[Module]
    warnings: list[str] = field(default_factory=list)


class CourseParser:
    """Parses the structured markdown format into content objects."""

    MODULE_PATTERN = re.compile(r'^# (.+)$')
    ITEM_PATTERN = re.compile(r'^## \[(\w+)\]\s+(.+)$')
    KNOWN_ITEM_PATTERN = re.compile(
        r'^## \[(?:' + '|'.join(kind.value for kind in ItemKind) + r')\]\s+.+$', re.IGNORECASE
    )
    METADATA_PATTERN = re.compile(r'^(\w+):\s*(.*)$')
    CANVAS_ID_PATTERN = re.compile(r'^\s*<!--\s*canvas_(\w+):\s*(\S+)\s*-->\s*$')
    COMMENT_PATTERN = re.compile(r'^\s*<!--.*-->\s*$')
    CONTENT_SEPARATOR = '---'

    # Marker keys an item may carry, by kind (module_item_id is always allowed)
    IDENTITY_KEYS = {
        ItemKind.PAGE: 'page_id',
        ItemKind.ASSIGNMENT: 'assignment_id',
        ItemKind.DISCUSSION: 'discussion_id',
        ItemKind.FILE: 'file_id',
    }
    NUMERIC_IDENTITY_KEYS = ('module_id', 'assignment_id', 'discussion_id', 'file_id', 'module_item_id')

    def __init__(self, content: str, timezone: Optional[tzinfo] = None):
        self.lines = content.split('\n')
        self.pos = 0
        self.timezone = timezone
        self.modules: list[Module] = []
        self.warnings: list[str] = []

    def parse(self) -> list[Module]:
        """Parse the entire markdown body (front matter already removed)."""
        while self.pos < len(self.lines):
            line = self.lines[self.pos].rstrip()

            module_match = self.MODULE_PATTERN.match(line)
            if module_match:
                self.pos += 1
                self.modules.append(self._parse_module(module_match.group(1).strip()))
                continue

            item_match = self.ITEM_PATTERN.match(line)
            if item_match:
                self.pos += 1
                if not self.modules:
                    self._warn(f"Item '{item_match.group(2).strip()}' appears before any module, skipping")
                    self._skip_section()
                    continue
                item = self._parse_item(item_match.group(1), item_match.group(2).strip())
                if item is not None:
                    self.modules[-1].items.append(item)
                continue

            self.pos += 1

        return self.modules

    def _warn(self, message: str):
        log.warning(message)
        self.warnings.append(message)

    def _is_boundary(self, line: str) -> bool:
        # ``## [Note] ...`` inside a body is content, only real item kinds end it
        return bool(self.MODULE_PATTERN.match(line) or self.KNOWN_ITEM_PATTERN.match(line))

    def _skip_section(self):
        while self.pos < len(self.lines) and not self._is_boundary(self.lines[self.pos].rstrip()):
            self.pos += 1

    def _parse_module(self, title: str) -> Module:
        module = Module(title=title)

        if self.pos < len(self.lines):
            id_match = self.CANVAS_ID_PATTERN.match(self.lines[self.pos])
            if id_match and id_match.group(1) == 'module_id':
                module.canvas_module_id = self._parse_identity('module_id', id_match.group(2))
                self.pos += 1

        return module

    def _parse_identity(self, key: str, value: str):
        if key not in self.NUMERIC_IDENTITY_KEYS:
            return value
        try:
            return int(value)
        except ValueError:
            self._warn(f"Ignoring non-numeric canvas_{key} '{value}'")
            return None

    def _parse_identity_markers(self) -> dict[str, Any]:
        """Consume the comment markers directly below an item heading."""
        ids = {}
        while self.pos < len(self.lines):
            line = self.lines[self.pos]
            id_match = self.CANVAS_ID_PATTERN.match(line)
            if not id_match:
                if self.COMMENT_PATTERN.match(line):
                    self.pos += 1
                    continue
                break
            key = id_match.group(1)
            value = self._parse_identity(key, id_match.group(2))
            if value is not None:
                ids[key] = value
            self.pos += 1
        return ids

    def _read_body(self) -> str:
        """Read free-form lines up to the next module or item heading."""
        content_lines = []
        while self.pos < len(self.lines):
            line = self.lines[self.pos].rstrip()
            if self._is_boundary(line):
                break
            content_lines.append(line)
            self.pos += 1
        return unescape_brackets('\n'.join(content_lines).strip())

    def _read_metadata(self, with_body: bool) -> tuple[dict[str, str], str]:
        """Read ``key: value`` lines, then the body after a ``---`` line."""
        metadata = {}
        while self.pos < len(self.lines):
            line = self.lines[self.pos].rstrip()
            if self._is_boundary(line):
                return metadata, ''

            self.pos += 1
            if line.strip() == self.CONTENT_SEPARATOR:
                body = self._read_body()
                if body and not with_body:
                    log.debug("Ignoring body text below metadata")
                    return metadata, ''
                return metadata, body

            meta_match = self.METADATA_PATTERN.match(line)
            if meta_match:
                metadata[meta_match.group(1).lower()] = meta_match.group(2).strip()
            elif line.strip() and not line.lstrip().startswith('<!--'):
                log.debug(f"Ignoring non-metadata line: {line!r}")

        return metadata, ''

    def _parse_item(self, kind_token: str, title: str):
        """Parse a content item based on its kind."""
        kind = ItemKind.from_marker(kind_token)
        if kind is None:
            self._warn(f"Unknown item type '{kind_token}' for '{title}', skipping")
            self._skip_section()
            return None

        ids = self._parse_identity_markers()
        module_item_id = ids.get('module_item_id')
        content_id = ids.get(self.IDENTITY_KEYS.get(kind, ''))

        if kind is ItemKind.HEADER:
            self._skip_section()
            return TextHeader(title=title, canvas_module_item_id=module_item_id)

        if kind is ItemKind.PAGE:
            return Page(
                title=title,
                body=self._read_body(),
                canvas_page_id=content_id,
                canvas_module_item_id=module_item_id,
            )

        metadata, content = self._read_metadata(with_body=kind in (ItemKind.ASSIGNMENT, ItemKind.DISCUSSION))

        if kind is ItemKind.LINK:
            url = metadata.get('url', '')
            if not url:
                self._warn(f"Link '{title}' has no URL")
            return ExternalLink(title=title, url=url, canvas_module_item_id=module_item_id)

        if kind is ItemKind.FILE:
            return File(
                title=title,
                filename=metadata.get('filename') or None,
                canvas_file_id=content_id,
                canvas_module_item_id=module_item_id,
            )

        if kind is ItemKind.ASSIGNMENT:
            return Assignment(
                title=title,
                description=content,
                points=self._parse_points(title, metadata.get('points')),
                due_at=self._parse_date(metadata.get('due')),
                grading_type=self._parse_grading_type(metadata.get('grade_display')),
                submission_types=self._parse_submission_types(metadata.get('submission_types')),
                canvas_assignment_id=content_id,
                canvas_module_item_id=module_item_id,
            )

        require_initial_post = self._parse_bool(metadata.get('require_initial_post'))
        threaded = self._parse_bool(metadata.get('threaded'))
        graded = self._parse_bool(metadata.get('graded'))
        return Discussion(
            title=title,
            message=content,
            require_initial_post=require_initial_post,
            threaded=True if threaded is None else threaded,
            graded=bool(graded),
            points=self._parse_points(title, metadata.get('points')),
            due_at=self._parse_date(metadata.get('due')),
            canvas_discussion_id=content_id,
            canvas_module_item_id=module_item_id,
        )

    def _parse_points(self, title: str, value: Optional[str]) -> Optional[float]:
        if value is None or value == '' or value.lower() == 'null':
            return None
        try:
            return float(value)
        except ValueError:
            self._warn(f"Could not parse points '{value}' for '{title}'")
            return None

    def _parse_date(self, date_str: Optional[str]) -> Optional[datetime]:
        """Parse a due date into an aware datetime (local zone if unspecified)."""
        if not date_str or date_str.lower() == 'null':
            return None

        date_str = date_str.strip()
        for fmt in DATE_FORMATS:
            try:
                dt = datetime.strptime(date_str, fmt)
            except ValueError:
                continue
            # If no time specified, default to 11:59 PM
            if '%H' not in fmt and '%I' not in fmt:
                dt = dt.replace(hour=23, minute=59)
            return self._localize(dt)

        try:
            return self._localize(datetime.fromisoformat(date_str.replace('Z', '+00:00')))
        except ValueError:
            pass

        self._warn(f"Could not parse date '{date_str}'")
        return None

    def _localize(self, dt: datetime) -> datetime:
        if dt.tzinfo is not None:
            return dt
        if self.timezone is not None:
            return dt.replace(tzinfo=self.timezone)
        return dt.astimezone()

    def _parse_grading_type(self, value: Optional[str]) -> Optional[GradingType]:
        if not value:
            return None
        grading_type = GRADING_TYPE_ALIASES.get(value.strip().lower())
        if grading_type is None:
            self._warn(f"Unknown grade_display '{value}'")
        return grading_type

    def _parse_submission_types(self, value: Optional[str]) -> Optional[list[SubmissionType]]:
        if not value:
            return None

        types = []
        for part in value.split(','):
            part = part.strip().lower()
            if not part:
                continue
            if part in SUBMISSION_TYPE_ALIASES:
                types.append(SUBMISSION_TYPE_ALIASES[part])
            else:
                self._warn(f"Unknown submission type '{part}'")
        return types or None

    def _parse_bool(self, value: Optional[str]) -> Optional[bool]:
        """Parse a boolean token; None when absent or not a boolean."""
        if value is None:
            return None
        value = value.strip().lower()
        if value in TRUE_TOKENS:
            return True
        if value in FALSE_TOKENS:
            return False
        if value != 'null':
            self._warn(f"Could not parse boolean '{value}'")
        return None


def unescape_brackets(content: str) -> str:
    """Undo the bracket escaping applied when the document was generated."""
    return content.replace('\\[', '[').replace('\\]', ']')


def parse_course(content: str) -> ParsedCourse:
    """Parse a whole course document, front matter included."""
    raw_metadata, body = extract_frontmatter(content)
    metadata = CourseMetadata.from_frontmatter(raw_metadata)

    parser = CourseParser(body, timezone=metadata.tzinfo)
    modules = parser.parse()

    return ParsedCourse(metadata=metadata, modules=modules, warnings=parser.warnings)
