"""
Markdown and plain-text notes to canonical HTML.

A small line-oriented block parser: fenced and indented code, raw <pre>
regions, ATX headings, lists with to-do detection, block quotes, rules and
paragraphs. Inline references (wiki links, embeds, images and bare asset
paths) are resolved through the run's TreeContext.
"""

import re
from typing import List, Optional, Tuple

from ..models import AttachmentRecord
from .common import (
    TranscodeResult,
    code_block_html,
    code_language,
    escape_attr,
    escape_html,
    is_image_path,
    split_wiki_target,
)
from .linking import TreeContext

_INLINE_REF = re.compile(
    r"!\[\[([^\]]+)\]\]"
    r"|\[\[([^\]]+)\]\]"
    r"|!\[[^\]]*\]\(([^)]+)\)"
    r"|(attachments/[^\s)\]]+)"
    r"|(\S+\.(?:png|jpe?g|gif|webp|bmp|svg|jfif))",
    re.IGNORECASE,
)
_INLINE_CODE = re.compile(r"`([^`]+)`")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_EM = re.compile(r"\*([^*]+)\*")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")

_FENCE = re.compile(r"^```(.*)$")
_RULE = re.compile(r"^---+$")
_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_ORDERED = re.compile(r"^(\d+)\.\s+(.*)$")
_UNORDERED = re.compile(r"^[-*+]\s+(.*)$")
_TODO = re.compile(r"^[-*+]\s+\[(x|X| )\]\s+(.*)$")
_QUOTE = re.compile(r"^>\s?(.*)$")
_PRE_OPEN = re.compile(r"^<pre[^>]*>", re.IGNORECASE)
_PRE_CLOSE = re.compile(r"</pre>.*", re.IGNORECASE)


def _is_indented(line: str) -> bool:
    return line.startswith("    ") or line.startswith("\t")


def _dedent(line: str) -> str:
    if line.startswith("\t"):
        return line[1:]
    return line[4:] if line.startswith("    ") else line.lstrip()


class _NoteRender:
    """Mutable state of rendering one note."""

    def __init__(self, context: TreeContext, note_dir: str, note_id: str):
        self.context = context
        self.note_dir = note_dir
        self.note_id = note_id
        self.attachments: List[AttachmentRecord] = []
        self.image_count = 0

    def _local(self, path, target: str, fallback: str) -> str:
        if is_image_path(target) or is_image_path(str(path)):
            record = self.context.store_local(path)
            if record is None:
                return escape_html(fallback)
            self.image_count += 1
            return self.context.image_tag(record)
        name = target.replace("\\", "/").split("/")[-1] or "file"
        block = self.context.attach(path, name, self.note_id, self.attachments)
        return block if block is not None else escape_html(name)

    def _asset(self, target: str, fallback: str, allow_remote: bool = True) -> str:
        resolved = self.context.resolve(self.note_dir, target)
        if resolved.url and allow_remote:
            record = self.context.download(resolved.url)
            if record is None:
                return escape_html(fallback)
            self.image_count += 1
            return self.context.image_tag(record)
        if resolved.local_path:
            return self._local(resolved.local_path, target, fallback)
        return escape_html(fallback)

    def _wiki(self, raw: str) -> str:
        target, label = split_wiki_target(raw)
        lower = target.lower()
        ext = lower.rsplit(".", 1)[-1] if "." in lower else ""
        looks_like_file = (
            lower.startswith("attachments/")
            or lower.startswith("images/")
            or (ext and ext not in ("txt", "md", "markdown"))
        )
        if looks_like_file:
            return self._asset(target, label or target)
        external_id = self.context.lookup_note(self.note_dir, target)
        if external_id:
            return self.context.note_link(external_id, label or target)
        return escape_html(label or target)

    def _reference(self, match) -> str:
        embed, wiki, md_image, bare_attachment, bare_image = match.groups()
        if embed:
            target, label = split_wiki_target(embed)
            return self._asset(target, label or embed)
        if wiki:
            return self._wiki(wiki)
        if md_image:
            cleaned = md_image.strip()
            return self._asset(cleaned, cleaned)
        raw_path = (bare_attachment or bare_image).strip()
        cleaned = re.sub(r"[),.;]+$", "", raw_path)
        tail = raw_path[len(cleaned):]
        return self._asset(cleaned, cleaned, allow_remote=False) + escape_html(tail)

    def inline(self, raw: str) -> str:
        """Render one block's text: references first, then emphasis, code and links."""
        parts = []
        cursor = 0
        for match in _INLINE_REF.finditer(raw):
            parts.append(escape_html(raw[cursor:match.start()]))
            parts.append(self._reference(match))
            cursor = match.end()
        parts.append(escape_html(raw[cursor:]))
        html = "".join(parts)

        pieces = _INLINE_CODE.split(html)
        for i, piece in enumerate(pieces):
            if i % 2:
                pieces[i] = f"<code>{piece}</code>"
                continue
            piece = _BOLD.sub(r"<strong>\1</strong>", piece)
            piece = _EM.sub(r"<em>\1</em>", piece)
            piece = _LINK.sub(lambda m: f'<a href="{escape_attr(m.group(2))}">{m.group(1)}</a>', piece)
            pieces[i] = piece
        return "".join(pieces).replace("\n", "<br>")


class MarkdownTranscoder:
    """
    Renders Markdown (and plain text, which is treated as Markdown) into the
    canonical HTML dialect.
    """

    def __init__(self, context: TreeContext):
        self.context = context

    def render(self, raw: str, note_dir: str = "", note_id: str = "") -> TranscodeResult:
        """
        Args:
            raw: The note file's text
            note_dir: Folder of the note relative to the tree root
            note_id: External id of the note, used to own its attachments

        Returns:
            TranscodeResult with the HTML, linked attachments and image count
        """
        state = _NoteRender(self.context, note_dir, note_id)
        lines = raw.replace("\r\n", "\n").replace("\ufeff", "").split("\n")
        rendered: List[str] = []
        paragraph: List[str] = []
        list_items: List[Tuple[str, Optional[bool]]] = []
        list_ordered = False
        list_todo = False

        def flush_paragraph():
            text = "\n".join(paragraph).rstrip()
            paragraph.clear()
            if text:
                rendered.append(f"<p>{state.inline(text)}</p>")

        def flush_list():
            nonlocal list_ordered, list_todo
            if not list_items:
                return
            tag = "ol" if list_ordered else "ul"
            items = []
            for text, checked in list_items:
                body = state.inline(text)
                if list_todo:
                    flag = "true" if checked else "false"
                    items.append(f'<li data-en-checked="{flag}"><p>{body}</p></li>')
                else:
                    items.append(f"<li>{body}</li>")
            extra = ' data-en-todo="true"' if list_todo else ""
            rendered.append(f"<{tag}{extra}>{''.join(items)}</{tag}>")
            list_items.clear()
            list_ordered = False
            list_todo = False

        def flush_all():
            flush_paragraph()
            flush_list()

        i = 0
        while i < len(lines):
            line = lines[i]
            trimmed = line.rstrip()
            stripped = line.lstrip()

            fence = _FENCE.match(stripped)
            if fence:
                flush_all()
                language = code_language(fence.group(1))
                code_lines = []
                i += 1
                while i < len(lines) and not lines[i].lstrip().startswith("```"):
                    code_lines.append(lines[i])
                    i += 1
                rendered.append(code_block_html("\n".join(code_lines), language))
                i += 1
                continue

            if _PRE_OPEN.match(trimmed):
                flush_all()
                pre_lines = []
                first = _PRE_OPEN.sub("", trimmed)
                while True:
                    if "</pre>" in first.lower():
                        pre_lines.append(_PRE_CLOSE.sub("", first))
                        break
                    pre_lines.append(first)
                    i += 1
                    if i >= len(lines):
                        break
                    first = lines[i]
                safe = escape_html("\n".join(pre_lines)).replace("\n", "<br>")
                rendered.append(f'<div class="note-callout"><p>{safe}</p></div>')
                i += 1
                continue

            if not trimmed:
                flush_all()
                i += 1
                continue

            if _is_indented(line) and not paragraph and not list_items:
                code_lines = []
                while i < len(lines) and (_is_indented(lines[i]) or not lines[i].strip()):
                    code_lines.append(_dedent(lines[i]))
                    i += 1
                while code_lines and not code_lines[-1].strip():
                    code_lines.pop()
                rendered.append(code_block_html("\n".join(code_lines)))
                continue

            if _RULE.match(trimmed):
                flush_all()
                rendered.append("<hr>")
                i += 1
                continue

            heading = _HEADING.match(trimmed)
            if heading:
                flush_all()
                level = len(heading.group(1))
                # H1 repeats the note title
                if level > 1:
                    rendered.append(f"<h{level}>{state.inline(heading.group(2))}</h{level}>")
                i += 1
                continue

            ordered = _ORDERED.match(trimmed)
            unordered = _UNORDERED.match(trimmed)
            if ordered or unordered:
                flush_paragraph()
                todo = _TODO.match(trimmed)
                is_ordered = bool(ordered)
                is_todo = bool(todo) and not is_ordered
                if list_items and (list_ordered != is_ordered or list_todo != is_todo):
                    flush_list()
                list_ordered = is_ordered
                list_todo = is_todo
                if is_todo:
                    list_items.append((todo.group(2).strip(), todo.group(1).lower() == "x"))
                else:
                    text = ordered.group(2) if ordered else unordered.group(1)
                    list_items.append((text.strip(), None))
                i += 1
                continue

            quote = _QUOTE.match(trimmed)
            if quote:
                flush_all()
                rendered.append(f"<blockquote><p>{state.inline(quote.group(1))}</p></blockquote>")
                i += 1
                continue

            if list_items:
                flush_list()
            paragraph.append(line)
            i += 1

        flush_all()
        return TranscodeResult(
            html="".join(rendered),
            attachments=state.attachments,
            image_count=state.image_count,
        )
