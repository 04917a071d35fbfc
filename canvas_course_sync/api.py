"""
Canvas LMS REST client (read and write) built on requests.

All calls are synchronous. Non-2xx responses raise a CanvasAPIError subclass
chosen by status code; network failures raise CanvasConnectionError.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

import requests

from .errors import CourseSyncError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
PER_PAGE = 100


# =============================================================================
# Errors
# =============================================================================

class CanvasAPIError(CourseSyncError):
    """A Canvas request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class InvalidTokenError(CanvasAPIError):
    pass


class PermissionDeniedError(CanvasAPIError):
    pass


class NotFoundError(CanvasAPIError):
    pass


class CanvasValidationError(CanvasAPIError):
    pass


class CanvasConnectionError(CanvasAPIError):
    pass


STATUS_ERRORS = {
    401: (InvalidTokenError, "Invalid Canvas token. Please check your API token."),
    403: (PermissionDeniedError, "Access denied. You may not have permission to modify this course."),
    404: (NotFoundError, "Resource not found. The Canvas ID may be stale."),
    422: (CanvasValidationError, "Validation error"),
}


def _error_details(response: requests.Response) -> str:
    """Pull Canvas' own error messages out of a failed response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]

    errors = data.get("errors") if isinstance(data, dict) else None
    if isinstance(errors, list):
        return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    if isinstance(errors, dict):
        parts = []
        for key, value in errors.items():
            messages = value if isinstance(value, list) else [value]
            for message in messages:
                text = message.get("message", message) if isinstance(message, dict) else message
                parts.append(f"{key}: {text}")
        return "; ".join(parts)
    return str(data)[:500]


def raise_for_status(response: requests.Response):
    """Raise the CanvasAPIError matching a non-2xx response."""
    if response.ok:
        return

    details = _error_details(response)
    log.debug(f"Canvas API returned {response.status_code}: {details}")

    error_class, message = STATUS_ERRORS.get(
        response.status_code, (CanvasAPIError, f"Canvas API returned {response.status_code}")
    )
    if details:
        message = f"{message}: {details}"
    raise error_class(message, status_code=response.status_code, details=details)


# =============================================================================
# Form encoding
# =============================================================================

def format_timestamp(value: datetime) -> str:
    """ISO 8601 with an explicit offset; naive values are taken as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def form_params(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested params into Canvas' bracketed form keys.

    ``{"assignment": {"name": "HW", "submission_types": ["a", "b"]}}`` becomes
    ``assignment[name]=HW``, ``assignment[submission_types][]=a``, ... None
    values are left out entirely.
    """
    pairs = []
    for key, value in params.items():
        if value is None:
            continue
        form_key = f"{prefix}[{key}]" if prefix else key

        if isinstance(value, dict):
            pairs.extend(form_params(value, form_key))
        elif isinstance(value, (list, tuple)):
            for entry in value:
                pairs.append((f"{form_key}[]", _form_value(entry)))
        else:
            pairs.append((form_key, _form_value(value)))
    return pairs


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# Canvas API Client
# =============================================================================

class CanvasAPI:
    """Client for Canvas LMS API."""

    def __init__(self, base_url: str, course_id: str, api_token: str, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.course_id = str(course_id) if course_id else ""
        self.api_token = api_token
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        """Build full course-scoped API URL."""
        return f"{self.base_url}/api/v1/courses/{self.course_id}/{path}"

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise CanvasConnectionError(f"Cannot connect to Canvas. Check your internet connection. ({e})") from e
        raise_for_status(response)
        return response

    def _request(self, method: str, path: str, params: Optional[dict] = None, url: Optional[str] = None) -> dict:
        """Make an API request; write payloads are form encoded."""
        url = url or self._url(path)
        if method == "GET":
            response = self._send(method, url, params=params)
        else:
            data = form_params(params or {})
            log.debug(f"{method} {url}")
            for key, value in data:
                log.debug(f"    {key}: {value[:100]}{'...' if len(value) > 100 else ''}")
            response = self._send(method, url, data=data)
        return response.json() if response.text else {}

    def _get_paginated(self, path: str, params: Optional[dict] = None) -> list:
        """Get all results from a paginated endpoint."""
        url = self._url(path)
        results = []
        params = dict(params or {})
        params['per_page'] = PER_PAGE

        while url:
            response = self._send("GET", url, params=params)
            results.extend(response.json())

            # Get next page URL from Link header
            url = response.links.get("next", {}).get("url")
            params = None  # The next URL carries its own query string

        return results

    # --- Addresses ---

    @property
    def course_url(self) -> str:
        return f"{self.base_url}/courses/{self.course_id}"

    def page_url(self, slug: str) -> str:
        return f"{self.course_url}/pages/{slug}"

    def assignment_url(self, assignment_id: int) -> str:
        return f"{self.course_url}/assignments/{assignment_id}"

    def discussion_url(self, topic_id: int) -> str:
        return f"{self.course_url}/discussion_topics/{topic_id}"

    def file_url(self, file_id: int) -> str:
        return f"{self.course_url}/files/{file_id}"

    # --- Modules ---

    def get_modules(self, include_items: bool = False) -> list:
        """Get all modules, sorted by position."""
        params = {"include[]": "items"} if include_items else None
        modules = self._get_paginated("modules", params)
        modules.sort(key=lambda m: m.get("position", 0))

        if include_items:
            # Canvas omits items for large modules; fetch those separately
            for module in modules:
                if "items" not in module or module.get("items_count", 0) > len(module.get("items", [])):
                    module["items"] = self.get_module_items(module["id"])

        return modules

    def get_module(self, module_id: int) -> dict:
        """Get a single module by ID."""
        return self._request("GET", f"modules/{module_id}")

    def get_module_items(self, module_id: int) -> list:
        return self._get_paginated(f"modules/{module_id}/items")

    def get_module_item(self, module_id: int, item_id: int) -> dict:
        return self._request("GET", f"modules/{module_id}/items/{item_id}")

    def create_module(self, name: str, position: Optional[int] = None) -> dict:
        """Create a new module."""
        return self._request("POST", "modules", {"module": {"name": name, "position": position}})

    def update_module(self, module_id: int, name: Optional[str] = None, position: Optional[int] = None) -> dict:
        """Update an existing module."""
        return self._request("PUT", f"modules/{module_id}", {"module": {"name": name, "position": position}})

    def create_module_item(
        self,
        module_id: int,
        item_type: str,
        title: Optional[str] = None,
        content_id: Optional[int] = None,
        page_url: Optional[str] = None,
        external_url: Optional[str] = None,
        position: Optional[int] = None,
        new_tab: Optional[bool] = None,
    ) -> dict:
        """Attach an item (SubHeader, Page, ExternalUrl, Assignment, Discussion, File) to a module."""
        item = {
            "type": item_type,
            "title": title,
            "content_id": content_id,
            "page_url": page_url,
            "external_url": external_url,
            "position": position,
            "new_tab": new_tab,
        }
        return self._request("POST", f"modules/{module_id}/items", {"module_item": item})

    def update_module_item(self, module_id: int, item_id: int, **fields) -> dict:
        """Update title, position, indent or external_url of a module item."""
        return self._request("PUT", f"modules/{module_id}/items/{item_id}", {"module_item": fields})

    # --- Pages ---

    def get_page(self, page_url: str) -> dict:
        """Get a page by its URL slug."""
        return self._request("GET", f"pages/{page_url}")

    def create_page(self, title: str, body: str, published: bool = True) -> dict:
        """Create a wiki page."""
        return self._request("POST", "pages", {"wiki_page": {"title": title, "body": body, "published": published}})

    def update_page(self, page_url: str, body: Optional[str] = None, title: Optional[str] = None) -> dict:
        """Update a wiki page's content and/or title."""
        return self._request("PUT", f"pages/{page_url}", {"wiki_page": {"title": title, "body": body}})

    # --- Assignments ---

    def get_assignment(self, assignment_id: int) -> dict:
        """Get an assignment by ID."""
        return self._request("GET", f"assignments/{assignment_id}")

    def create_assignment(
        self,
        name: str,
        description: str = "",
        points_possible: Optional[float] = None,
        due_at: Optional[datetime] = None,
        grading_type: Optional[str] = None,
        submission_types: Optional[list[str]] = None,
        published: bool = True,
    ) -> dict:
        """Create an assignment."""
        assignment = {
            "name": name,
            "description": description,
            "points_possible": points_possible,
            "due_at": due_at,
            "grading_type": grading_type,
            "submission_types": submission_types,
            "published": published,
        }
        return self._request("POST", "assignments", {"assignment": assignment})

    def update_assignment(
        self,
        assignment_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        points_possible: Optional[float] = None,
        due_at: Optional[datetime] = None,
        grading_type: Optional[str] = None,
        clear: Sequence[str] = (),
    ) -> dict:
        """Update an assignment.

        Canvas does not allow changing submission_types on an existing
        assignment, so they are not accepted here. Fields left as None keep
        their current Canvas value; fields named in ``clear`` are sent empty,
        which removes the value (e.g. ``clear=["due_at"]``).
        """
        assignment = {
            "name": name,
            "description": description,
            "points_possible": points_possible,
            "due_at": due_at,
            "grading_type": grading_type,
        }
        assignment.update({field: "" for field in clear})
        return self._request("PUT", f"assignments/{assignment_id}", {"assignment": assignment})

    # --- Discussions ---

    def get_discussion(self, topic_id: int) -> dict:
        """Get a discussion topic by ID."""
        return self._request("GET", f"discussion_topics/{topic_id}")

    @staticmethod
    def _discussion_params(
        title, message, require_initial_post, discussion_type, graded,
        points_possible, due_at, grading_type, clear=(),
    ) -> dict:
        params = {
            "title": title,
            "message": message,
            "require_initial_post": require_initial_post,
            "discussion_type": discussion_type,
        }
        if graded:
            params["assignment"] = {
                "points_possible": points_possible,
                "due_at": due_at,
                "grading_type": grading_type,
            }
            params["assignment"].update({field: "" for field in clear})
        elif graded is False:
            params["assignment"] = {"set_assignment": False}
        return params

    def create_discussion(
        self,
        title: str,
        message: str = "",
        require_initial_post: Optional[bool] = None,
        discussion_type: str = "threaded",
        published: bool = True,
        graded: bool = False,
        points_possible: Optional[float] = None,
        due_at: Optional[datetime] = None,
        grading_type: Optional[str] = None,
    ) -> dict:
        """Create a discussion topic (graded when ``graded`` is set)."""
        params = self._discussion_params(
            title, message, require_initial_post, discussion_type,
            graded or None, points_possible, due_at, grading_type,
        )
        params["published"] = published
        return self._request("POST", "discussion_topics", params)

    def update_discussion(
        self,
        topic_id: int,
        title: Optional[str] = None,
        message: Optional[str] = None,
        require_initial_post: Optional[bool] = None,
        discussion_type: Optional[str] = None,
        graded: Optional[bool] = None,
        points_possible: Optional[float] = None,
        due_at: Optional[datetime] = None,
        grading_type: Optional[str] = None,
        clear: Sequence[str] = (),
    ) -> dict:
        """Update a discussion topic; ``graded=False`` detaches its assignment."""
        params = self._discussion_params(
            title, message, require_initial_post, discussion_type,
            graded, points_possible, due_at, grading_type, clear,
        )
        return self._request("PUT", f"discussion_topics/{topic_id}", params)

    # --- Files ---

    def get_file(self, file_id: int) -> dict:
        """Get a file by ID."""
        # Files endpoint is at the root, not under courses
        return self._request("GET", "", url=f"{self.base_url}/api/v1/files/{file_id}")

    def get_files(self) -> list:
        """Get all files in the course (paginated)."""
        return self._get_paginated("files")
