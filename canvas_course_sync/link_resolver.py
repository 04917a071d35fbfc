"""Resolves internal [[Type:Title]] links to Canvas URLs."""

import html
import logging
import re
from typing import Union

from .models import ItemKind

log = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r'\[\[(\w+):([^\]]+)\]\]')


def make_key(kind: Union[ItemKind, str], title: str) -> tuple[str, str]:
    """Registry key: lowercase kind, trimmed lowercase title."""
    if isinstance(kind, ItemKind):
        kind = kind.value
    return kind.strip().lower(), title.strip().lower()


def strip_link_markers(content: str) -> str:
    """Replace every [[Type:Title]] marker with its bare title."""
    if not content:
        return content
    return LINK_PATTERN.sub(lambda m: m.group(2).strip(), content)


class LinkResolver:
    """Registry of item addresses for one sync run.

    Items register their Canvas URL as they are created or updated; content
    is resolved once every item has had the chance to register.
    """

    def __init__(self):
        self.registry: dict[tuple[str, str], str] = {}

    def register(self, kind: Union[ItemKind, str], title: str, address: str):
        """Register a content item for link resolution."""
        self.registry[make_key(kind, title)] = address

    def lookup(self, kind: Union[ItemKind, str], title: str):
        return self.registry.get(make_key(kind, title))

    def clear(self):
        self.registry.clear()

    def resolve(self, content: str) -> tuple[str, bool]:
        """Replace all internal links with Canvas URLs.

        Returns the resolved content and whether any marker was turned into
        a link. Unknown targets degrade to their plain title.
        """
        if not content:
            return content, False

        resolved_any = False

        def replace_link(match):
            nonlocal resolved_any
            kind, title = match.group(1), match.group(2).strip()
            address = self.lookup(kind, title)
            if address:
                resolved_any = True
                return f'<a href="{html.escape(address)}">{html.escape(title, quote=False)}</a>'

            log.warning(f"Could not resolve link [[{kind}:{title}]]")
            return title

        return LINK_PATTERN.sub(replace_link, content), resolved_any

    def has_links(self, content: str) -> bool:
        """Check if content has internal links."""
        return bool(content) and bool(LINK_PATTERN.search(content))
