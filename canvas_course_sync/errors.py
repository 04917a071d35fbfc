"""Exceptions shared across the sync engine."""


class CourseSyncError(Exception):
    """Base class for all errors raised by canvas_course_sync."""


class MissingCourseIdError(CourseSyncError):
    """The document (or configuration) carries no Canvas course id.

    Raised before any remote mutation; nothing can be synchronized without it.
    """

    def __init__(self, message: str = "No Canvas course id found (set canvas_course_id in the front matter)"):
        super().__init__(message)
