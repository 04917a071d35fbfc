"""Snippet builders for hand-authoring course documents.

Defaults are left out of the output so snippets stay short: points 0,
``complete_incomplete`` grading, ``online_text_entry`` submissions and
threaded discussions.
"""

from typing import Optional

DEFAULT_DUE_TIME = '11:59pm'


def build_module(title: str) -> str:
    return f"# {title}\n"


def build_header(title: str) -> str:
    return f"\n## [header] {title}\n"


def build_page(title: str) -> str:
    return f"\n## [page] {title}\n"


def build_link(title: str, url: str) -> str:
    return f"\n## [link] {title}\nurl: {url}\n"


def build_file(title: str, filename: str) -> str:
    return f"\n## [file] {title}\nfilename: {filename}\n"


def _due_line(due_date: Optional[str], due_time: Optional[str]) -> Optional[str]:
    if not due_date:
        return None
    return f"due: {due_date} {due_time or DEFAULT_DUE_TIME}"


def build_assignment(
    title: str,
    points: Optional[float] = None,
    due_date: Optional[str] = None,
    due_time: Optional[str] = None,
    grade_display: Optional[str] = None,
    submission_types: Optional[str] = None,
) -> str:
    """Assignment heading plus any non-default metadata and the ``---`` rule."""
    lines = [f"\n## [assignment] {title}"]

    if points:
        lines.append(f"points: {points:g}")
    due = _due_line(due_date, due_time)
    if due:
        lines.append(due)
    if grade_display and grade_display != 'complete_incomplete':
        lines.append(f"grade_display: {grade_display}")
    if submission_types and submission_types != 'online_text_entry':
        lines.append(f"submission_types: {submission_types}")

    return '\n'.join(lines) + '\n\n---\n'


def build_discussion(
    title: str,
    require_initial_post: Optional[bool] = None,
    threaded: Optional[bool] = None,
    graded: Optional[bool] = None,
    points: Optional[float] = None,
    due_date: Optional[str] = None,
    due_time: Optional[str] = None,
    grade_display: Optional[str] = None,
) -> str:
    """Discussion heading and metadata; grading fields only when graded."""
    lines = [f"\n## [discussion] {title}"]

    if require_initial_post is not None:
        lines.append(f"require_initial_post: {str(require_initial_post).lower()}")
    if threaded is False:
        lines.append("threaded: false")
    if graded is not None:
        lines.append(f"graded: {str(graded).lower()}")

    if graded:
        if points is not None:
            lines.append(f"points: {points:g}")
        due = _due_line(due_date, due_time)
        if due:
            lines.append(due)
        if grade_display:
            lines.append(f"grade_display: {grade_display}")

    return '\n'.join(lines) + '\n\n---\n'


def build_internal_link(kind: str, name: str) -> str:
    """``[[Page:Syllabus]]`` style cross-reference."""
    return f"[[{kind.strip().capitalize()}:{name.strip()}]]"
