"""
HTML notes to canonical HTML.

Walks the parsed document with BeautifulSoup, dropping what the editor does
not keep, converting checkbox lists and code blocks, and rewriting image and
link targets through the run's TreeContext.
"""

import base64
import binascii
import logging
import re
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from ..assets.resolver import ext_from_mime
from ..errors import AssetCopyError
from .common import TranscodeResult, code_block_html, code_language, is_image_path
from .linking import TreeContext

_PARSER = "html.parser"
_NOTE_LINK = re.compile(r"\.(html?|md|markdown|txt)(#.*)?$", re.IGNORECASE)
_DATA_URI = re.compile(r"^data:([^;,]+)?(;base64)?,(.*)$", re.IGNORECASE | re.DOTALL)


def _fragment(html: str) -> Tag:
    """Parse a single-element HTML snippet and detach its element."""
    fragment = BeautifulSoup(html, _PARSER)
    element = fragment.find(True)
    return element.extract()


def _checkbox(tag: Tag):
    return tag.find("input", attrs={"type": "checkbox"})


class HtmlTranscoder:
    """
    Renders an HTML note file into the canonical HTML dialect.
    """

    def __init__(self, context: TreeContext):
        self.context = context

    def render(self, raw: str, note_dir: str = "", note_id: str = "") -> TranscodeResult:
        soup = BeautifulSoup(raw, _PARSER)
        body = soup.find("body")
        if body is None:
            for node in soup.find_all(["head", "title", "meta", "link"]):
                node.decompose()
            root = soup.find("html")
            if root is not None:
                root.unwrap()
            body = soup
        result = TranscodeResult()

        for node in body.find_all(["script", "style", "h1"]):
            node.decompose()

        self._convert_todo_lists(soup, body)
        self._convert_code_blocks(body)
        self._rewrite_images(body, note_dir, result)
        self._rewrite_links(body, note_dir, note_id, result)

        result.html = body.decode_contents().strip()
        return result

    def _convert_todo_lists(self, soup: BeautifulSoup, body: Tag) -> None:
        for list_tag in body.find_all(["ul", "ol"]):
            items = list_tag.find_all("li")
            if not any(_checkbox(item) for item in items):
                continue
            list_tag["data-en-todo"] = "true"
            for item in items:
                checkbox = _checkbox(item)
                if checkbox is None:
                    continue
                checked = checkbox.has_attr("checked")
                for box in item.find_all("input", attrs={"type": "checkbox"}):
                    box.decompose()
                paragraph = soup.new_tag("p")
                for child in list(item.contents):
                    paragraph.append(child.extract())
                item.append(paragraph)
                item["data-en-checked"] = "true" if checked else "false"

    def _convert_code_blocks(self, body: Tag) -> None:
        for pre in body.find_all("pre"):
            code = pre.find("code")
            if code is None:
                continue
            language = "auto"
            for css_class in code.get("class") or []:
                if css_class.startswith("language-"):
                    language = code_language(css_class[len("language-"):])
            pre.replace_with(_fragment(code_block_html(code.get_text(), language)))

    def _store_data_uri(self, src: str):
        match = _DATA_URI.match(src)
        if not match or not match.group(2):
            return None
        try:
            data = base64.b64decode(match.group(3), validate=False)
        except (binascii.Error, ValueError) as e:
            logging.warning(f"Skipping undecodable inline image: {e}")
            return None
        if not data:
            return None
        try:
            return self.context.resolver.store_bytes(data, ext_from_mime(match.group(1)), origin="data URI")
        except AssetCopyError as e:
            self.context.resolver.record_copy_error(e)
            return None

    def _rewrite_images(self, body: Tag, note_dir: str, result: TranscodeResult) -> None:
        for img in body.find_all("img"):
            src = (img.get("src") or "").strip()
            if not src:
                continue
            if src.lower().startswith("data:"):
                record = self._store_data_uri(src)
            else:
                resolved = self.context.resolve(note_dir, src)
                if resolved.url:
                    record = self.context.download(resolved.url)
                    if record is None:
                        img["data-en-external"] = "1"
                        continue
                elif resolved.local_path and is_image_path(resolved.local_path.name):
                    record = self.context.store_local(resolved.local_path)
                else:
                    continue
            if record is None:
                continue
            img["src"] = f"files/{record.relative_path}"
            img["data-en-hash"] = record.hash
            result.image_count += 1

    def _rewrite_links(self, body: Tag, note_dir: str, note_id: str, result: TranscodeResult) -> None:
        for link in body.find_all("a", href=True):
            href = link["href"].strip()
            if not href or href.startswith(("#", "mailto:", "note://")):
                continue
            resolved = self.context.resolve(note_dir, href)
            if resolved.url:
                link["data-en-external"] = "1"
                continue
            if _NOTE_LINK.search(href):
                external_id = self.context.lookup_note(note_dir, unquote(href))
                if external_id:
                    link["href"] = f"note://{external_id}"
                    link["data-note-link"] = "1"
                continue
            if resolved.local_path is None or is_image_path(resolved.local_path.name):
                continue
            name = unquote(href.split("?", 1)[0].rstrip("/").split("/")[-1]) or "file"
            block = self.context.attach(resolved.local_path, name, note_id, result.attachments)
            if block is not None:
                link.replace_with(_fragment(block))
