"""
ENML to canonical HTML.

ENML is the XML dialect stored in the relational source's note documents.
Conversion is a fixed sequence of textual rewrites; the order matters and
must not change, because later steps rely on the shapes produced by earlier
ones.
"""

import re
from typing import Mapping

_CODEBLOCK_OPEN = re.compile(r"<\s*div\b[^>]*--en-codeblock:true[^>]*>", re.IGNORECASE)
_DIV_TOKEN = re.compile(r"<\s*(/)?\s*div\b[^>]*>", re.IGNORECASE)
_MEDIA = re.compile(
    r'<en-media[^>]*?hash="([0-9a-f]+)"[^>]*?(?:></en-media>|\s*/>)',
    re.IGNORECASE,
)
_EN_NOTE_OPEN = re.compile(r"<en-note[^>]*>", re.IGNORECASE)
_EN_NOTE_CLOSE = re.compile(r"</en-note>", re.IGNORECASE)
_BR_PAIR = re.compile(r"<br></br>", re.IGNORECASE)
_EN_TODO = re.compile(r"<en-todo([^>]*)/>", re.IGNORECASE)
_CHECKED = re.compile(r'checked="true"', re.IGNORECASE)
_P_AROUND_CALLOUT_OPEN = re.compile(r'<p>\s*(<div class="note-callout">)', re.IGNORECASE)
_P_AROUND_CALLOUT_CLOSE = re.compile(r"</div>\s*</p>", re.IGNORECASE)
_NESTED_P_OPEN = re.compile(r"<p>\s*<p>", re.IGNORECASE)
_NESTED_P_CLOSE = re.compile(r"</p>\s*</p>", re.IGNORECASE)
_EMPTY_P = re.compile(r"<p>\s*</p>", re.IGNORECASE)
_BR_ONLY_P = re.compile(r"<p>\s*<br\s*/?>\s*</p>", re.IGNORECASE)

CALLOUT_OPEN = "<note-callout>"
CALLOUT_CLOSE = "</note-callout>"


def rewrite_media(markup: str, asset_map: Mapping[str, str]) -> str:
    """
    Replace <en-media hash="..."> references with images pointing at the
    placed asset. Hashes missing from asset_map are left untouched.
    """
    if not markup:
        return markup

    def replace(match):
        digest = match.group(1)
        relative_path = asset_map.get(digest)
        if not relative_path:
            return match.group(0)
        return f'<img data-en-hash="{digest}" src="files/{relative_path}" />'

    return _MEDIA.sub(replace, markup)


def extract_callouts(html: str) -> str:
    """
    Wrap the body of every code-block div in <note-callout> tags.

    The closing tag is found by counting div depth over a div tokenizer, so
    nested divs inside the block stay inside the callout. An unbalanced
    block stops the extraction and leaves the rest of the text as it is.
    """
    search_index = 0
    while True:
        match = _CODEBLOCK_OPEN.search(html, search_index)
        if not match:
            break
        start = match.start()
        depth = 0
        open_end = None
        close_start = None
        close_end = None
        for token in _DIV_TOKEN.finditer(html, start):
            if token.group(1):
                depth -= 1
                if depth == 0:
                    close_start, close_end = token.start(), token.end()
                    break
            else:
                depth += 1
                if open_end is None:
                    open_end = token.end()
        if open_end is None or close_start is None:
            break
        replacement = f"{CALLOUT_OPEN}{html[open_end:close_start]}{CALLOUT_CLOSE}"
        html = html[:start] + replacement + html[close_end:]
        search_index = start + len(replacement)
    return html


def _todo_to_checkbox(match) -> str:
    checked = "checked " if _CHECKED.search(match.group(1)) else ""
    return f'<input type="checkbox" {checked}disabled />'


def collapse_paragraphs(html: str) -> str:
    """Merge directly nested paragraphs until stable, then drop empty ones."""
    previous = None
    while previous != html:
        previous = html
        html = _NESTED_P_OPEN.sub("<p>", html)
        html = _NESTED_P_CLOSE.sub("</p>", html)
    html = _EMPTY_P.sub("", html)
    html = _BR_ONLY_P.sub("", html)
    return html


def normalize_enml(enml: str) -> str:
    """Convert an ENML fragment into the canonical HTML dialect."""
    if not enml:
        return ""
    html = extract_callouts(enml)

    html = _EN_NOTE_OPEN.sub("<div>", html)
    html = _EN_NOTE_CLOSE.sub("</div>", html)
    html = _BR_PAIR.sub("<br>", html)

    html = _EN_TODO.sub(_todo_to_checkbox, html)

    html = re.sub(r"<div>", "<p>", html, flags=re.IGNORECASE)
    html = re.sub(r"</div>", "</p>", html, flags=re.IGNORECASE)
    html = re.sub(CALLOUT_OPEN, '<div class="note-callout">', html, flags=re.IGNORECASE)
    html = re.sub(CALLOUT_CLOSE, "</div>", html, flags=re.IGNORECASE)
    html = _P_AROUND_CALLOUT_OPEN.sub(r"\1", html)
    html = _P_AROUND_CALLOUT_CLOSE.sub("</div>", html)

    return collapse_paragraphs(html)
