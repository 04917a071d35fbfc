"""Keep a markdown course document in sync with a Canvas LMS course."""

from .api import CanvasAPI
from .comparator import ContentComparator
from .errors import CourseSyncError, MissingCourseIdError
from .link_resolver import LinkResolver
from .normalizer import compare_html_content, markdown_to_html, normalize_html
from .parser import CourseParser, parse_course
from .uploader import CourseUploader

__version__ = "0.3.0"

__all__ = [
    "CanvasAPI",
    "ContentComparator",
    "CourseParser",
    "CourseSyncError",
    "CourseUploader",
    "LinkResolver",
    "MissingCourseIdError",
    "compare_html_content",
    "markdown_to_html",
    "normalize_html",
    "parse_course",
]
