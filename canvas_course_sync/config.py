"""
Course configuration: YAML front matter, environment and token lookup.

Priority for each setting: document front matter > environment variable >
interactive prompt. The API token never lives in the document; it comes from
CANVAS_API_TOKEN, the system keychain or a prompt (saved to the keychain).
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from . import keychain
from .errors import CourseSyncError, MissingCourseIdError

log = logging.getLogger(__name__)

ENV_CANVAS_URL = "CANVAS_URL"
ENV_COURSE_ID = "CANVAS_COURSE_ID"
ENV_API_TOKEN = "CANVAS_API_TOKEN"

COURSE_URL_PATTERN = re.compile(r'^(?P<base>.+?)/courses/(?P<course_id>\d+)/?$')


def extract_frontmatter(content: str) -> tuple[dict, str]:
    """
    Extract YAML frontmatter from markdown content.

    Returns:
        (metadata_dict, content_without_frontmatter)

    Example:
        content = '''---
        canvas_url: https://example.com
        canvas_course_id: 12345
        ---
        # Module 1'''

        metadata, clean_content = extract_frontmatter(content)
        # metadata = {'canvas_url': 'https://example.com', 'canvas_course_id': 12345}
        # clean_content = '# Module 1'
    """
    lines = content.split('\n')

    if not lines or lines[0].strip() != '---':
        return {}, content

    closing_idx = None
    for i in range(1, len(lines)):
        if lines[i].strip() == '---':
            closing_idx = i
            break

    if closing_idx is None:
        # No closing delimiter found - treat as regular content
        return {}, content

    frontmatter_text = '\n'.join(lines[1:closing_idx])

    try:
        metadata = yaml.safe_load(frontmatter_text) or {}
    except yaml.YAMLError as e:
        log.warning(f"Failed to parse YAML frontmatter, continuing without it: {e}")
        metadata = {}

    if not isinstance(metadata, dict):
        log.warning("YAML frontmatter is not a mapping, ignoring it")
        metadata = {}

    return metadata, '\n'.join(lines[closing_idx + 1:])


def normalize_canvas_url(url: str) -> str:
    """Add https:// when missing and drop any trailing slash."""
    url = url.strip()
    if url and not url.startswith("http"):
        url = "https://" + url
    return url.rstrip('/')


def split_course_url(url: str) -> tuple[str, Optional[str]]:
    """Split ``https://host/courses/42`` into ``('https://host', '42')``."""
    url = normalize_canvas_url(url)
    match = COURSE_URL_PATTERN.match(url)
    if match:
        return match.group('base'), match.group('course_id')
    return url, None


@dataclass
class CourseMetadata:
    """The document-level settings carried in the front matter."""
    course_id: Optional[str] = None
    canvas_url: Optional[str] = None  # Base URL, without /courses/<id>
    timezone: Optional[str] = None

    @classmethod
    def from_frontmatter(cls, data: dict) -> "CourseMetadata":
        course_id = data.get('canvas_course_id') or data.get('course_id')
        canvas_url = data.get('canvas_url')
        url_course_id = None
        if canvas_url:
            canvas_url, url_course_id = split_course_url(str(canvas_url))

        timezone = data.get('timezone')
        return cls(
            course_id=str(course_id) if course_id else url_course_id,
            canvas_url=canvas_url or None,
            timezone=str(timezone) if timezone else None,
        )

    @property
    def tzinfo(self) -> Optional[tzinfo]:
        """Zone for naive due dates; None means the machine's local zone."""
        if not self.timezone:
            return None
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning(f"Unknown timezone '{self.timezone}', using local time")
            return None


@dataclass
class SyncConfig:
    canvas_url: str
    course_id: str
    api_token: str

    @property
    def course_url(self) -> str:
        return f"{self.canvas_url}/courses/{self.course_id}"


def resolve_location(
    metadata: CourseMetadata,
    prompt: Optional[Callable[[str], str]] = None,
) -> tuple[str, str]:
    """Work out (canvas_url, course_id) from front matter, env, then prompt.

    Raises MissingCourseIdError when no course id can be found.
    """
    canvas_url = metadata.canvas_url
    course_id = metadata.course_id

    if not canvas_url and os.environ.get(ENV_CANVAS_URL):
        canvas_url, url_course_id = split_course_url(os.environ[ENV_CANVAS_URL])
        course_id = course_id or url_course_id
    if not course_id:
        course_id = os.environ.get(ENV_COURSE_ID) or None

    if not canvas_url and prompt:
        canvas_url = normalize_canvas_url(prompt("Enter your Canvas URL (e.g., https://kent.instructure.com): "))
    if not course_id and prompt:
        course_id = prompt("Enter your Course ID (e.g., 126998): ").strip() or None

    if not course_id:
        raise MissingCourseIdError()
    if not canvas_url:
        raise MissingCourseIdError("No Canvas URL found (set canvas_url in the front matter)")

    return canvas_url, str(course_id)


def resolve_token(
    canvas_url: str,
    course_id: str,
    prompt: Optional[Callable[[str], str]] = None,
    reset: bool = False,
) -> Optional[str]:
    """Find an API token: environment, then keychain, then prompt.

    A prompted token is saved to the keychain for next time. With ``reset``
    the stored token is deleted and the user is asked again.
    """
    token = os.environ.get(ENV_API_TOKEN)
    if token and not reset:
        return token

    if reset:
        keychain.delete_token(canvas_url, course_id)
    else:
        token = keychain.get_token(canvas_url, course_id)
        if token:
            log.info("Using API token from keychain")
            return token

    if prompt is None:
        return None

    token = prompt("Enter your Canvas API token: ").strip()
    if not token:
        return None

    if keychain.save_token(canvas_url, course_id, token):
        log.info("Saved token to keychain (next time it will be retrieved automatically)")
    return token


def resolve_config(
    metadata: CourseMetadata,
    prompt: Optional[Callable[[str], str]] = None,
    reset_token: bool = False,
) -> SyncConfig:
    """Resolve everything needed to talk to Canvas for one document."""
    canvas_url, course_id = resolve_location(metadata, prompt)
    api_token = resolve_token(canvas_url, course_id, prompt, reset=reset_token)
    if not api_token:
        raise CourseSyncError("No API token provided")
    return SyncConfig(canvas_url=canvas_url, course_id=course_id, api_token=api_token)
