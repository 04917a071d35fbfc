"""Keychain token storage (one entry per Canvas URL + course)."""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

log = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "canvas-course-sync"


def get_keychain_username(canvas_url: str, course_id: str) -> str:
    """Generate unique username for keychain entry."""
    url = canvas_url.rstrip('/')
    return f"{url}:{course_id}"


def get_token(canvas_url: str, course_id: str) -> Optional[str]:
    """
    Retrieve API token from system keychain.

    Returns:
        Token string if found, None otherwise
    """
    username = get_keychain_username(canvas_url, course_id)
    try:
        return keyring.get_password(KEYCHAIN_SERVICE, username)
    except KeyringError as e:
        # Keychain access failed - caller falls back to a prompt
        log.warning(f"Could not access keychain: {e}")
        return None


def save_token(canvas_url: str, course_id: str, token: str) -> bool:
    """
    Save API token to system keychain.

    Returns:
        True if saved successfully, False otherwise
    """
    username = get_keychain_username(canvas_url, course_id)
    try:
        keyring.set_password(KEYCHAIN_SERVICE, username, token)
        return True
    except KeyringError as e:
        log.warning(f"Could not save to keychain: {e}")
        return False


def delete_token(canvas_url: str, course_id: str) -> bool:
    """Delete API token from system keychain."""
    username = get_keychain_username(canvas_url, course_id)
    try:
        keyring.delete_password(KEYCHAIN_SERVICE, username)
        return True
    except PasswordDeleteError:
        return False
    except KeyringError as e:
        log.warning(f"Could not delete from keychain: {e}")
        return False
