"""
Helpers shared by the content transcoders.

Escaping, key normalization, timestamp and hash normalization, plus the HTML
fragments every transcoder emits (code blocks and attachment blocks).
"""

import hashlib
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..models import AttachmentRecord

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".svg", ".jfif", ".tif", ".tiff")

CODE_LANGUAGES = [("auto", "AUTO"), ("php", "PHP"), ("html", "HTML"), ("js", "JS"), ("css", "CSS")]

LANGUAGE_ALIASES = {
    "php": "php",
    "html": "html",
    "htm": "html",
    "js": "js",
    "javascript": "js",
    "css": "css",
}

_MIME_BY_EXTENSION = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
    "jfif": "image/jpeg",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "json": "application/json",
    "csv": "text/csv",
}

_BASE64_CHAR = re.compile(r"[A-Za-z0-9+/=]")


class TranscodeResult(BaseModel):
    """Output of transcoding one tree note."""

    html: str = ""
    attachments: List[AttachmentRecord] = Field(default_factory=list)
    image_count: int = 0
    errors: List[str] = Field(default_factory=list)


def escape_html(value: str) -> str:
    return value.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_attr(value: str) -> str:
    return escape_html(value).replace('"', "&quot;")


def normalize_key(value: str) -> str:
    """Lookup key for a relative path: trimmed, forward slashes, lower-case."""
    key = value.strip().replace("\\", "/")
    key = re.sub(r"/{2,}", "/", key)
    return key.lower()


def normalize_rel_path(value: str) -> str:
    """Fold '.' and '..' segments of a relative path."""
    parts: List[str] = []
    for part in value.replace("\\", "/").split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def strip_ext(filename: str) -> str:
    return re.sub(r"\.[^/.]+$", "", filename)


def is_image_path(path: str) -> bool:
    return str(path).lower().endswith(IMAGE_EXTENSIONS)


def guess_mime(filename: str) -> str:
    lower = filename.strip().lower()
    ext = lower.rsplit(".", 1)[-1] if "." in lower else ""
    return _MIME_BY_EXTENSION.get(ext, "")


def fallback_html_from_text(raw: str) -> str:
    safe = escape_html(raw).replace("\n", "<br>")
    return f"<p>{safe}</p>"


def is_likely_encoded(raw: str) -> bool:
    """
    Heuristic for note files that hold a base64 payload instead of prose.

    Looks at the first 120000 characters: at least 20000 visible characters,
    a base64 run of 5000 or more, and a base64 share of at least 97%.
    """
    sample = raw[:120000]
    total_chars = 0
    base64_chars = 0
    longest_run = 0
    current_run = 0
    for ch in sample:
        if not ch.isspace():
            total_chars += 1
        if _BASE64_CHAR.match(ch):
            base64_chars += 1
            current_run += 1
            longest_run = max(longest_run, current_run)
        else:
            current_run = 0
    if total_chars < 20000:
        return False
    return longest_run >= 5000 and base64_chars / total_chars >= 0.97


def normalize_timestamp(value: Any, fallback: Optional[int]) -> Optional[int]:
    """
    Convert a source timestamp to epoch seconds.

    Values above 1e12 are taken to be milliseconds. This is a magnitude
    heuristic: it misreads second-precision dates after the year 33658 and
    millisecond dates before 2001-09-09.
    """
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    if number > 1e12:
        return math.floor(number / 1000)
    return math.floor(number)


def content_digest(canonical_html: str) -> Tuple[str, int]:
    """SHA-256 hex digest and byte length of the UTF-8 encoded body."""
    data = canonical_html.encode("utf-8")
    return hashlib.sha256(data).hexdigest(), len(data)


def code_language(info: str) -> str:
    """Map a fence info string to one of the known code languages, or 'auto'."""
    words = info.strip().split()
    if not words:
        return "auto"
    return LANGUAGE_ALIASES.get(words[0].lower(), "auto")


def code_block_html(code: str, language: str = "auto") -> str:
    """The code block wrapper with its language selector and copy button."""
    if language not in dict(CODE_LANGUAGES):
        language = "auto"
    options = "".join(
        f'<option value="{value}"{" selected" if value == language else ""}>{label}</option>'
        for value, label in CODE_LANGUAGES
    )
    return (
        f'<div class="note-code" data-lang="{language}">'
        '<div class="note-code-toolbar" contenteditable="false">'
        f'<select class="note-code-select">{options}</select>'
        '<button class="note-code-copy" type="button">Copy</button>'
        '</div>'
        f'<pre><code>{escape_html(code)}</code></pre>'
        '</div>'
    )


def format_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1
    if unit_index == 0:
        return f"{int(value)} {units[0]}"
    return f"{value:.1f} {units[unit_index]}"


def attachment_block_html(name: str, relative_path: str, size: int, mime: str) -> str:
    """A non-image attachment rendered as a download block."""
    return (
        f'<div class="note-attachment" data-attachment-name="{escape_attr(name)}" '
        f'data-attachment-size="{size}" data-attachment-mime="{escape_attr(mime)}" '
        'contenteditable="false">'
        f'<a class="note-attachment__name" href="files/{escape_attr(relative_path)}">{escape_html(name)}</a>'
        f'<span class="note-attachment__size">{format_size(size)}</span>'
        '</div>'
    )


def split_wiki_target(raw: str) -> Tuple[str, str]:
    """
    Split '[[target#anchor|alias]]' contents into (target, label).

    Note extensions are dropped from the target unless it points into an
    attachments/ or images/ folder.
    """
    cleaned = re.sub(r"^\s*:", "", raw.strip())
    target, _, alias = cleaned.partition("|")
    target = target.split("#", 1)[0].strip()
    lower = target.lower()
    if not (lower.startswith("attachments/") or lower.startswith("images/")):
        target = re.sub(r"\.(txt|md|markdown)$", "", target, flags=re.IGNORECASE)
    label = (alias or target).strip()
    return target, label


def resolve_stack_notebook(rel_path: str, default_stack: str, default_notebook: str = "General") -> Dict[str, str]:
    """
    Derive (stack, notebook, title) from a note's relative path.

    No folder: (default_stack, default_notebook). One folder: (folder,
    default_notebook). Deeper: (first folder, remaining folders joined by '.').
    """
    parts = [part for part in rel_path.split("/") if part]
    filename = parts.pop() if parts else ""
    title = strip_ext(filename)
    if not parts:
        return {"stack": default_stack, "notebook": default_notebook, "title": title}
    if len(parts) == 1:
        return {"stack": parts[0], "notebook": default_notebook, "title": title}
    return {"stack": parts[0], "notebook": ".".join(parts[1:]), "title": title}


def build_external_id(kind: str, rel_path_without_ext: str) -> str:
    return f"{kind}:{normalize_key(rel_path_without_ext)}"
