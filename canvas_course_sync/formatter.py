"""
Canvas course -> structured markdown (the download direction).

The output is the same document format the parser reads, including the
identity markers that let a later upload update objects in place.
"""

import logging
import re
from datetime import datetime
from html.parser import HTMLParser
from typing import Optional

from .api import CanvasAPI
from .comparator import parse_timestamp
from .models import ItemKind, Module

log = logging.getLogger(__name__)

DUE_FORMAT = '%Y-%m-%d %I:%M%p'


# =============================================================================
# HTML to Markdown Converter (simple)
# =============================================================================

class HTMLToMarkdown(HTMLParser):
    """Simple HTML to Markdown converter."""

    # h1 -> ### because # and ## are reserved for modules and items
    HEADINGS = {'h1': '### ', 'h2': '#### ', 'h3': '##### ', 'h4': '###### ', 'h5': '###### ', 'h6': '###### '}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.result = []
        self.current_href = None
        self.list_stack: list[list] = []  # [tag, counter]
        self.in_file_link = False
        self.in_pre = False

    def handle_starttag(self, tag, attrs):
        attrs_dict = dict(attrs)

        if tag == 'br':
            self.result.append('\n')
        elif tag in ('strong', 'b'):
            self.result.append('**')
        elif tag in ('em', 'i'):
            self.result.append('*')
        elif tag == 'a':
            self.current_href = attrs_dict.get('href') or ''
            # Canvas file links become [[File:...]] cross-references
            if '/files/' in self.current_href:
                self.in_file_link = True
                self.result.append('[[File:')
            else:
                self.result.append('[')
        elif tag == 'img':
            alt = attrs_dict.get('alt') or 'image'
            src = attrs_dict.get('src') or ''
            self.result.append(f'![{alt}]({src})')
        elif tag in self.HEADINGS:
            self.result.append('\n' + self.HEADINGS[tag])
        elif tag in ('ul', 'ol'):
            self.list_stack.append([tag, 0])
            self.result.append('\n')
        elif tag == 'li':
            indent = '  ' * max(len(self.list_stack) - 1, 0)
            if self.list_stack and self.list_stack[-1][0] == 'ol':
                self.list_stack[-1][1] += 1
                self.result.append(f'{indent}{self.list_stack[-1][1]}. ')
            else:
                self.result.append(f'{indent}- ')
        elif tag == 'blockquote':
            self.result.append('\n> ')
        elif tag == 'code' and not self.in_pre:
            self.result.append('`')
        elif tag == 'pre':
            self.in_pre = True
            self.result.append('\n```\n')
        elif tag == 'hr':
            self.result.append('\n***\n')

    def handle_endtag(self, tag):
        if tag == 'p':
            self.result.append('\n\n')
        elif tag in ('strong', 'b'):
            self.result.append('**')
        elif tag in ('em', 'i'):
            self.result.append('*')
        elif tag == 'a':
            if self.in_file_link:
                self.result.append(']]')
                self.in_file_link = False
            else:
                self.result.append(f']({self.current_href})')
            self.current_href = None
        elif tag in self.HEADINGS:
            self.result.append('\n')
        elif tag in ('ul', 'ol'):
            if self.list_stack:
                self.list_stack.pop()
            self.result.append('\n')
        elif tag in ('li', 'blockquote'):
            self.result.append('\n')
        elif tag == 'code' and not self.in_pre:
            self.result.append('`')
        elif tag == 'pre':
            self.in_pre = False
            self.result.append('\n```\n')

    def handle_data(self, data):
        if self.in_pre or self.in_file_link:
            self.result.append(data)
            return
        # Literal brackets would read as link syntax; the parser un-escapes them
        self.result.append(data.replace('[', '\\[').replace(']', '\\]'))

    def get_markdown(self):
        text = ''.join(self.result)
        # Clean up extra whitespace
        text = re.sub(r'[ \t]+\n', '\n', text)
        text = re.sub(r'\n{3,}', '\n\n', text)
        return text.strip()


def html_to_markdown(html: str) -> str:
    """Convert HTML to Markdown."""
    if not html:
        return ""

    # Quick check if it's already plain text
    if '<' not in html:
        return html.strip()

    parser = HTMLToMarkdown()
    parser.feed(html)
    parser.close()
    return parser.get_markdown()


# =============================================================================
# Identity markers
# =============================================================================

def format_marker(key: str, value) -> str:
    return f"<!-- canvas_{key}: {value} -->"


def format_module_markers(module: Module) -> list[str]:
    if module.canvas_module_id is None:
        return []
    return [format_marker('module_id', module.canvas_module_id)]


# Content identity attribute and marker key per kind
IDENTITY_FIELDS = {
    ItemKind.PAGE: ('canvas_page_id', 'page_id'),
    ItemKind.ASSIGNMENT: ('canvas_assignment_id', 'assignment_id'),
    ItemKind.DISCUSSION: ('canvas_discussion_id', 'discussion_id'),
    ItemKind.FILE: ('canvas_file_id', 'file_id'),
}


def format_identity_markers(item) -> list[str]:
    """Marker lines for an item: content id first, then module item id."""
    lines = []
    if item.kind in IDENTITY_FIELDS:
        attribute, key = IDENTITY_FIELDS[item.kind]
        value = getattr(item, attribute)
        if value is not None:
            lines.append(format_marker(key, value))
    if item.canvas_module_item_id is not None:
        lines.append(format_marker('module_item_id', item.canvas_module_item_id))
    return lines


def format_points(points) -> str:
    points = float(points)
    return str(int(points)) if points.is_integer() else str(points)


def format_due(value: Optional[str]) -> Optional[str]:
    """Canvas UTC timestamp -> ``2026-01-15 11:59pm`` in local time."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.astimezone().strftime(DUE_FORMAT).lower()


def format_frontmatter(canvas_url: str, course_id: str) -> list[str]:
    return [
        "---",
        f"canvas_course_id: {course_id}",
        f"canvas_url: {canvas_url}/courses/{course_id}",
        "---",
    ]


# =============================================================================
# Course Exporter
# =============================================================================

class CourseExporter:
    """Exports a Canvas course to Markdown format."""

    def __init__(self, api: CanvasAPI):
        self.api = api

    def export(self) -> str:
        """Export the entire course to Markdown."""
        lines = format_frontmatter(self.api.base_url, self.api.course_id)
        lines.append(f"<!-- Exported: {datetime.now().isoformat(timespec='seconds')} -->")
        lines.append("")

        log.info("Fetching modules...")
        modules = self.api.get_modules(include_items=True)
        log.info(f"Found {len(modules)} modules.")

        for module in modules:
            log.info(f"[Module] {module['name']}")
            lines.append(f"# {module['name']}")
            lines.extend(format_module_markers(Module(title=module['name'], canvas_module_id=module['id'])))
            lines.append("")

            items = sorted(module.get("items", []), key=lambda i: i.get("position", 0))
            for item in items:
                item_lines = self._export_item(item)
                if item_lines:
                    lines.extend(item_lines)
                    lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    def _export_item(self, item: dict) -> Optional[list]:
        """Export a single module item to Markdown lines."""
        item_type = item.get("type")
        title = item.get("title", "Untitled")
        module_item_id = item.get("id")

        if item_type == "SubHeader":
            log.info(f"  • [header] {title}")
            return [f"## [header] {title}", format_marker('module_item_id', module_item_id)]

        if item_type == "ExternalUrl":
            log.info(f"  • [link] {title}")
            return [
                f"## [link] {title}",
                format_marker('module_item_id', module_item_id),
                f"url: {item.get('external_url', '')}",
            ]

        if item_type == "Quiz":
            # Quizzes are exported as links; they cannot be edited here
            log.info(f"  • [quiz] {title} (exported as link)")
            return [
                f"## [link] {title}",
                format_marker('module_item_id', module_item_id),
                f"url: {item.get('html_url', '')}",
            ]

        exporters = {
            "Page": self._export_page,
            "Assignment": self._export_assignment,
            "Discussion": self._export_discussion,
            "File": self._export_file,
        }
        exporter = exporters.get(item_type)
        if exporter is None:
            log.info(f"  • [{item_type}] {title} (unsupported, skipped)")
            return None

        log.info(f"  • [{item_type.lower()}] {title}")
        try:
            return exporter(item, module_item_id)
        except Exception as e:
            # Keep the item and the markers we know; its content can be re-fetched later
            log.warning(f"    Could not fetch {item_type.lower()} details: {e}")
            lines = [f"## [{item_type.lower()}] {title}", format_marker('module_item_id', module_item_id)]
            if item_type in ("Assignment", "Discussion"):
                lines.append("---")
            return lines

    def _export_page(self, item: dict, module_item_id: int) -> list:
        page_url = item.get("page_url")
        if not page_url:
            return [f"## [page] {item.get('title', 'Untitled')}", format_marker('module_item_id', module_item_id)]

        page = self.api.get_page(page_url)
        lines = [
            f"## [page] {page.get('title') or item.get('title', 'Untitled')}",
            format_marker('page_id', page.get('url') or page_url),
            format_marker('module_item_id', module_item_id),
        ]
        body = html_to_markdown(page.get("body") or "")
        if body:
            lines.append(body)
        return lines

    def _export_file(self, item: dict, module_item_id: int) -> list:
        title = item.get("title", "Untitled")
        content_id = item.get("content_id")
        if not content_id:
            return [f"## [file] {title}", format_marker('module_item_id', module_item_id)]

        file_data = self.api.get_file(content_id)
        lines = [
            f"## [file] {title}",
            format_marker('file_id', content_id),
            format_marker('module_item_id', module_item_id),
        ]
        filename = file_data.get("display_name", title)
        # Only add filename if different from title
        if filename != title:
            lines.append(f"filename: {filename}")
        return lines

    def _export_assignment(self, item: dict, module_item_id: int) -> list:
        content_id = item.get("content_id")
        if not content_id:
            return [f"## [assignment] {item.get('title', 'Untitled')}",
                    format_marker('module_item_id', module_item_id), "---"]

        assignment = self.api.get_assignment(content_id)
        lines = [
            f"## [assignment] {assignment.get('name') or item.get('title', 'Untitled')}",
            format_marker('assignment_id', content_id),
            format_marker('module_item_id', module_item_id),
        ]

        if assignment.get("points_possible") is not None:
            lines.append(f"points: {format_points(assignment['points_possible'])}")

        due = format_due(assignment.get("due_at"))
        if due:
            lines.append(f"due: {due}")

        grading_type = assignment.get("grading_type")
        if grading_type and grading_type != "pass_fail":
            lines.append(f"grade_display: {grading_type}")

        submission_types = assignment.get("submission_types") or []
        if submission_types and submission_types != ["online_text_entry"]:
            # Filter out 'none' if there are other types
            filtered = [t for t in submission_types if t != "none"] or submission_types
            lines.append(f"submission_types: {', '.join(filtered)}")

        lines.append("---")
        description = html_to_markdown(assignment.get("description") or "")
        if description:
            lines.append(description)
        return lines

    def _export_discussion(self, item: dict, module_item_id: int) -> list:
        content_id = item.get("content_id")
        if not content_id:
            return [f"## [discussion] {item.get('title', 'Untitled')}",
                    format_marker('module_item_id', module_item_id), "---"]

        discussion = self.api.get_discussion(content_id)
        lines = [
            f"## [discussion] {discussion.get('title') or item.get('title', 'Untitled')}",
            format_marker('discussion_id', content_id),
            format_marker('module_item_id', module_item_id),
        ]

        if discussion.get("require_initial_post"):
            lines.append("require_initial_post: true")
        # side_comment = not threaded
        if discussion.get("discussion_type", "threaded") == "side_comment":
            lines.append("threaded: false")

        assignment = discussion.get("assignment")
        if assignment:
            lines.append("graded: true")
            if assignment.get("points_possible") is not None:
                lines.append(f"points: {format_points(assignment['points_possible'])}")
            due = format_due(assignment.get("due_at"))
            if due:
                lines.append(f"due: {due}")

        lines.append("---")
        message = html_to_markdown(discussion.get("message") or "")
        if message:
            lines.append(message)
        return lines
