"""
HTML normalization and markdown rendering for change detection.

Local content is typed as markdown; Canvas stores HTML (often re-encoded by
its editor). Both sides are reduced to a canonical lowercase text string so
that formatting-only differences never count as changes. The canonical form
is only ever compared, never shown to the user.
"""

import html
import re

# Block-level tags end a word even when no whitespace separates them
# ("<p>a</p><p>b</p>" reads as "a b").
BLOCK_TAG_PATTERN = re.compile(
    r'</?(?:p|div|li|ul|ol|h[1-6]|blockquote|pre|hr|table|thead|tbody|tr|td|th)\b[^>]*>',
    re.IGNORECASE,
)
BREAK_TAG_PATTERN = re.compile(r'<br\s*/?>', re.IGNORECASE)
TAG_PATTERN = re.compile(r'<[^>]+>')

UNICODE_FOLDS = [
    (re.compile('[\u2018\u2019\u201a\u201b]'), "'"),
    (re.compile('[\u201c\u201d\u201e\u201f]'), '"'),
    (re.compile('[\u2013\u2014\u2015]'), '-'),
    (re.compile('\u2026'), '...'),
    (re.compile('[\u00a0\u202f]'), ' '),
]

MARKDOWN_ESCAPE_PATTERN = re.compile(r'\\([_*\[\]\\`#+\-().!])')


def decode_entities(text: str) -> str:
    """Decode named and numeric character references (&nbsp;, &#39;, &#x27;)."""
    return html.unescape(text)


def strip_tags(text: str) -> str:
    """Remove markup; line breaks and block boundaries become a single space."""
    text = BREAK_TAG_PATTERN.sub(' ', text)
    text = BLOCK_TAG_PATTERN.sub(' ', text)
    return TAG_PATTERN.sub('', text)


def fold_unicode(text: str) -> str:
    """Smart quotes, long dashes, ellipsis and non-breaking spaces to ASCII."""
    for pattern, replacement in UNICODE_FOLDS:
        text = pattern.sub(replacement, text)
    return text


def normalize_html(content: str) -> str:
    """
    Normalize HTML/markdown for semantic comparison.

    Process:
    1. Decode HTML entities (&nbsp;, &#39;, etc.)
    2. Strip tags (<br> and block tags become spaces)
    3. Fold Unicode punctuation to ASCII
    4. Remove markdown escape backslashes
    5. Unwrap bracketed/parenthesized URLs and [url](url) links
    6. Drop underscore placeholder runs (blanks like ____)
    7. Normalize spacing around hyphens
    8. Collapse whitespace
    9. Lowercase
    """
    if not content:
        return ""

    normalized = decode_entities(content)
    normalized = strip_tags(normalized)
    normalized = fold_unicode(normalized)

    normalized = MARKDOWN_ESCAPE_PATTERN.sub(r'\1', normalized)

    normalized = re.sub(r'\[(https?://[^\]]+)\]\(\1\)', r'\1', normalized)
    normalized = re.sub(r'\[(https?://[^\]]+)\]', r'\1', normalized)
    normalized = re.sub(r'\((https?://[^)]+)\)', r'\1', normalized)

    normalized = re.sub(r'_+(\[)', r'\1', normalized)
    normalized = re.sub(r'(\])_+', r'\1', normalized)
    normalized = re.sub(r'_{3,}', '', normalized)
    normalized = re.sub(r'(?<=\s)_+(?=\s)', ' ', normalized)

    normalized = re.sub(r'\s*-\s*', '-', normalized)

    normalized = re.sub(r'\s+', ' ', normalized).strip()

    return normalized.lower()


def compare_html_content(first: str, second: str) -> bool:
    """True when both contents normalize to the same text."""
    return normalize_html(first) == normalize_html(second)


# =============================================================================
# Markdown -> HTML (best effort, for comparison and upload)
# =============================================================================

HEADING_PATTERN = re.compile(r'^(#{2,6})\s+(.+?)\s*#*$')
UNORDERED_ITEM_PATTERN = re.compile(r'^\s*[-*+]\s+(.+)$')
ORDERED_ITEM_PATTERN = re.compile(r'^\s*\d+[.)]\s+(.+)$')
BLOCKQUOTE_PATTERN = re.compile(r'^>\s?(.*)$')
RULE_PATTERN = re.compile(r'^(?:-{3,}|\*{3,}|_{3,})$')
FENCE_PATTERN = re.compile(r'^```')

# Downloaded bodies demote headings by two levels (h1 -> ###) because # and ##
# are reserved for modules and items; undo that here.
HEADING_LEVELS = {2: 1, 3: 1, 4: 2, 5: 3, 6: 4}

ESCAPABLE = r'\\`*_{}\[\]()#+\-.!|>~'
ESCAPE_PATTERN = re.compile(r'\\([' + ESCAPABLE + r'])')
PLACEHOLDER_PATTERN = re.compile('\x00(\\d+)\x00')


class _Placeholders:
    """Keeps literal fragments (escapes, code spans) out of inline rules."""

    def __init__(self):
        self.values: list[str] = []

    def hold(self, value: str) -> str:
        self.values.append(value)
        return f'\x00{len(self.values) - 1}\x00'

    def restore(self, text: str) -> str:
        # Nested placeholders (an escape inside a code span) need a second pass
        while PLACEHOLDER_PATTERN.search(text):
            text = PLACEHOLDER_PATTERN.sub(lambda m: self.values[int(m.group(1))], text)
        return text


def _render_inline(text: str, held: _Placeholders) -> str:
    text = re.sub(r'`([^`]+)`', lambda m: held.hold(f'<code>{m.group(1)}</code>'), text)

    # Images before links so ![alt](src) is not read as a link
    text = re.sub(r'!\[([^\]]*)\]\(([^)\s]+)\)', r'<img alt="\1" src="\2">', text)
    text = re.sub(r'\[([^\]]+)\]\(([^)\s]+)\)', r'<a href="\2">\1</a>', text)

    text = re.sub(r'\*\*(?=\S)(.+?)(?<=\S)\*\*', r'<strong>\1</strong>', text)
    text = re.sub(r'(?<!\w)__(?=[^_\s])(.+?)(?<=[^_\s])__(?!\w)', r'<strong>\1</strong>', text)
    text = re.sub(r'(?<![*\w])\*(?=[^*\s])(.+?)(?<=[^*\s])\*(?!\*)', r'<em>\1</em>', text)
    text = re.sub(r'(?<!\w)_(?=[^_\s])(.+?)(?<=[^_\s])_(?!\w)', r'<em>\1</em>', text)

    return text


def markdown_to_html(text: str) -> str:
    """Convert common markdown patterns to HTML equivalents.

    Handles headings, ordered/unordered lists, blockquotes, fenced code,
    horizontal rules, emphasis, links, images, inline code, paragraphs and
    hard line breaks. Not a full renderer: the output only has to normalize
    to the same text as Canvas' stored HTML.
    """
    if not text:
        return ""

    held = _Placeholders()
    text = ESCAPE_PATTERN.sub(lambda m: held.hold(m.group(1)), text)

    blocks: list[str] = []
    paragraph: list[str] = []
    quote: list[str] = []
    list_tag = None
    list_items: list[str] = []
    code_lines = None

    def flush_paragraph():
        if paragraph:
            blocks.append('<p>' + '<br>'.join(paragraph) + '</p>')
            paragraph.clear()

    def flush_list():
        nonlocal list_tag
        if list_items:
            items = ''.join(f'<li>{item}</li>' for item in list_items)
            blocks.append(f'<{list_tag}>{items}</{list_tag}>')
            list_items.clear()
        list_tag = None

    def flush_quote():
        if quote:
            blocks.append('<blockquote><p>' + '<br>'.join(quote) + '</p></blockquote>')
            quote.clear()

    def flush_all():
        flush_paragraph()
        flush_list()
        flush_quote()

    for raw_line in text.split('\n'):
        line = raw_line.rstrip()

        if code_lines is not None:
            if FENCE_PATTERN.match(line.strip()):
                code = html.escape('\n'.join(code_lines), quote=False)
                blocks.append(held.hold(f'<pre><code>{code}</code></pre>'))
                code_lines = None
            else:
                code_lines.append(raw_line)
            continue

        stripped = line.strip()
        if FENCE_PATTERN.match(stripped):
            flush_all()
            code_lines = []
            continue

        if not stripped:
            flush_all()
            continue

        heading = HEADING_PATTERN.match(stripped)
        if heading or stripped.startswith('# '):
            flush_all()
            if heading:
                level = HEADING_LEVELS[len(heading.group(1))]
                content = heading.group(2)
            else:
                level, content = 1, stripped[2:].strip()
            blocks.append(f'<h{level}>{_render_inline(content, held)}</h{level}>')
            continue

        if RULE_PATTERN.match(stripped):
            flush_all()
            blocks.append('<hr>')
            continue

        item = UNORDERED_ITEM_PATTERN.match(line)
        tag = 'ul'
        if not item:
            item = ORDERED_ITEM_PATTERN.match(line)
            tag = 'ol'
        if item:
            flush_paragraph()
            flush_quote()
            if list_tag != tag:
                flush_list()
                list_tag = tag
            list_items.append(_render_inline(item.group(1), held))
            continue

        quoted = BLOCKQUOTE_PATTERN.match(stripped)
        if quoted:
            flush_paragraph()
            flush_list()
            quote.append(_render_inline(quoted.group(1), held))
            continue

        flush_list()
        flush_quote()
        paragraph.append(_render_inline(stripped, held))

    if code_lines is not None:
        # Unterminated fence: keep what was collected
        code = html.escape('\n'.join(code_lines), quote=False)
        blocks.append(held.hold(f'<pre><code>{code}</code></pre>'))
    flush_all()

    return held.restore(''.join(blocks))
