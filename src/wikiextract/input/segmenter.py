"""
Streaming page segmenter for MediaWiki XML exports.

Like a plain `<page>` boundary scan this avoids building a DOM, but it walks
the tags of each page so that malformed pages are detected and skipped
instead of silently merged with their neighbours:

    OUTSIDE_PAGE      between pages; only a tag-sized tail is buffered
    IN_PAGE_METADATA  inside <page>, outside <text>
    IN_PAGE_BODY      inside the current revision's <text>
    PAGE_COMPLETE     </page> seen, record emitted
    ERROR_SKIP        page abandoned; scanning for the next <page>

Only the bytes of the currently open page are held. The items emitted
(PageRecord or SegmentationFailure) follow archive order and do not depend on
how the input was split into chunks.

Usage:
    segmenter = PageSegmenter()
    for chunk in chunks:
        segmenter.feed(chunk)
        for item in segmenter.drain():
            ...
    segmenter.close()
    for item in segmenter.drain():
        ...
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional, Union

from wikiextract.errors import DumpFormatError, SegmentationError


logger = logging.getLogger(__name__)

EXPORT_NAMESPACE = "http://www.mediawiki.org/xml/export"

# Largest tag (or text before the root) accepted while waiting for '>'
MAX_TAG_BYTES = 1024 * 1024

_NAME = re.compile(rb"[A-Za-z_][\w.:-]*")
_ATTRIBUTE = re.compile(rb"""([\w:.-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_PAGE_START = re.compile(rb"<page[\s/>]")
_ENTITY = re.compile(r"&(?:#([0-9]+)|#x([0-9a-fA-F]+)|(lt|gt|amp|quot|apos));")
_BAD_AMPERSAND = re.compile(r"&(?!(?:#[0-9]+|#x[0-9a-fA-F]+|lt|gt|amp|quot|apos);)")
_NAMED_ENTITIES = {"lt": "<", "gt": ">", "amp": "&", "quot": '"', "apos": "'"}

_SITENAME = re.compile(r"<sitename>(.*?)</sitename>", re.S)
_DBNAME = re.compile(r"<dbname>(.*?)</dbname>", re.S)
_NAMESPACE = re.compile(r"<namespace\b([^>]*?)(?:/>|>(.*?)</namespace>)", re.S)
_KEY = re.compile(r"""key\s*=\s*["'](-?\d+)["']""")

# Element path -> captured field. Revision fields are reset per <revision>,
# so the last revision of a page wins.
_CAPTURED = {
    ("page", "title"): "title",
    ("page", "ns"): "ns",
    ("page", "id"): "id",
    ("page", "revision", "id"): "revision_id",
    ("page", "revision", "timestamp"): "timestamp",
    ("page", "revision", "model"): "model",
    ("page", "revision", "format"): "format",
    ("page", "revision", "text"): "text",
}


class SegmenterState(Enum):
    OUTSIDE_PAGE = "outside_page"
    IN_PAGE_METADATA = "in_page_metadata"
    IN_PAGE_BODY = "in_page_body"
    PAGE_COMPLETE = "page_complete"
    ERROR_SKIP = "error_skip"


@dataclass
class PageRecord:
    """One page as found in the export, markup still raw."""

    page_id: int
    title: str
    namespace: int = 0
    timestamp: Optional[str] = None
    redirect_target: Optional[str] = None
    text: str = ""
    revision_id: Optional[int] = None
    model: Optional[str] = None
    format: Optional[str] = None
    offset: int = 0  # decompressed byte offset of <page>

    @property
    def is_redirect(self) -> bool:
        return self.redirect_target is not None


@dataclass
class SegmentationFailure:
    """Stands in the stream for a page that could not be segmented."""

    offset: int
    reason: str
    page_id: Optional[int] = None
    title: Optional[str] = None


SegmentedItem = Union[PageRecord, SegmentationFailure]


def decode_entities(text: str) -> str:
    """
    Decode the five XML entities and numeric character references.

    Raises:
        SegmentationError: On an unterminated or unknown entity
    """
    if "&" not in text:
        return text

    bad = _BAD_AMPERSAND.search(text)
    if bad:
        snippet = text[bad.start():bad.start() + 12]
        raise SegmentationError(f"unterminated or unknown entity {snippet!r}")

    def replace(match: re.Match) -> str:
        decimal, hexadecimal, named = match.groups()
        if named:
            return _NAMED_ENTITIES[named]
        try:
            return chr(int(decimal) if decimal else int(hexadecimal, 16))
        except (ValueError, OverflowError):
            raise SegmentationError(f"invalid character reference {match.group(0)!r}")

    return _ENTITY.sub(replace, text)


def _attributes(raw: bytes) -> dict[str, str]:
    attributes = {}
    for match in _ATTRIBUTE.finditer(raw):
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attributes[match.group(1).decode("utf-8", "replace")] = value.decode("utf-8", "replace")
    return attributes


def _optional_int(value: Optional[str], what: str) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        raise SegmentationError(f"invalid {what}: {value!r}")


class PageSegmenter:
    """Turn a decompressed byte stream into page records."""

    def __init__(self, max_page_bytes: int = 128 * 1024 * 1024):
        self.max_page_bytes = max_page_bytes
        self.state = SegmenterState.OUTSIDE_PAGE

        # <siteinfo>
        self.sitename: Optional[str] = None
        self.dbname: Optional[str] = None
        self.namespaces: dict[int, str] = {}

        self.bytes_fed = 0
        self.pages_emitted = 0
        self.failures = 0

        self._buffer = bytearray()
        self._base = 0  # absolute offset of _buffer[0]
        self._pos = 0  # next unprocessed index in _buffer
        self._root_seen = False
        self._root_closed = False
        self._siteinfo_start: Optional[int] = None
        self._closed = False
        self._items: deque = deque()
        self._reset_page()

    def _reset_page(self) -> None:
        self._page_start: Optional[int] = None
        self._content_start = 0
        self._stack: list[str] = []
        self._page: dict[str, str] = {}
        self._revision: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    def feed(self, data: bytes) -> None:
        """
        Consume decompressed bytes.

        Raises:
            DumpFormatError: If the stream is not a MediaWiki export
        """
        if self._closed:
            raise RuntimeError("feed() called after close()")
        self.bytes_fed += len(data)
        if self._root_closed:
            return
        self._buffer += data
        self._process()

    def next_item(self) -> Optional[SegmentedItem]:
        """Pop the next PageRecord or SegmentationFailure, or None if none is ready."""
        if self._items:
            return self._items.popleft()
        return None

    def drain(self) -> Iterator[SegmentedItem]:
        item = self.next_item()
        while item is not None:
            yield item
            item = self.next_item()

    def close(self) -> None:
        """
        Signal end of input. A page still open becomes a "truncated" failure.

        Raises:
            DumpFormatError: If the root element or <siteinfo> never completed
        """
        if self._closed:
            return
        self._closed = True

        if not self._root_seen:
            raise DumpFormatError("input ended before the <mediawiki> root element", offset=self.bytes_fed)
        if self._siteinfo_start is not None:
            raise DumpFormatError("input ended inside <siteinfo>", offset=self.bytes_fed)
        if self._page_start is not None:
            self._fail("truncated: input ended inside the page")
        elif not self._root_closed and self.state is SegmenterState.OUTSIDE_PAGE:
            logger.debug("Input ended without </mediawiki>")

        self._buffer = bytearray()
        self.state = SegmenterState.OUTSIDE_PAGE

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _process(self) -> None:
        buf = self._buffer
        while not self._root_closed:
            if self.state is SegmenterState.ERROR_SKIP:
                match = _PAGE_START.search(buf, self._pos)
                if match is None:
                    self._discard(max(self._pos, len(buf) - len(b"<page")))
                    return
                self._pos = match.start()
                self.state = SegmenterState.OUTSIDE_PAGE

            if self._siteinfo_start is not None:
                end = buf.find(b"</siteinfo>", self._pos)
                if end < 0:
                    self._pos = max(self._pos, len(buf) - len(b"</siteinfo>"))
                    return
                self._read_siteinfo(bytes(buf[self._siteinfo_start:end]))
                self._siteinfo_start = None
                self._pos = end + len(b"</siteinfo>")
                continue

            lt = buf.find(b"<", self._pos)
            text_end = len(buf) if lt < 0 else lt
            if text_end > self._pos:
                self._text(self._pos, text_end)
            self._pos = text_end

            if self._page_start is not None and text_end - self._page_start > self.max_page_bytes:
                self._fail(f"page exceeds {self.max_page_bytes:,} bytes")
                continue
            if lt < 0:
                break

            end = self._tag_end(lt)
            if end < 0:
                if len(buf) - lt > MAX_TAG_BYTES:
                    self._oversized_tag(lt)
                    continue
                break
            self._pos = end
            self._markup(lt, end)

        self._compact()

    def _tag_end(self, lt: int) -> int:
        """Index just past the tag starting at `lt`, or -1 if incomplete."""
        buf = self._buffer
        if buf.startswith(b"<!--", lt):
            end = buf.find(b"-->", lt + 4)
            return -1 if end < 0 else end + 3
        if buf.startswith(b"<?", lt):
            end = buf.find(b"?>", lt + 2)
            return -1 if end < 0 else end + 2
        end = buf.find(b">", lt + 1)
        return -1 if end < 0 else end + 1

    def _oversized_tag(self, lt: int) -> None:
        if self._page_start is None:
            raise DumpFormatError("unterminated tag", offset=self._base + lt)
        self._pos = lt + 1
        self._fail("unterminated tag")

    def _text(self, start: int, end: int) -> None:
        # Text content of captured elements is sliced out at the close tag;
        # only text before the root element needs checking.
        if self._root_seen:
            return
        if self._buffer[start:end].strip(b" \t\r\n\xef\xbb\xbf"):
            raise DumpFormatError("text found before the <mediawiki> root element", offset=self._base + start)

    def _markup(self, lt: int, end: int) -> None:
        raw = bytes(self._buffer[lt + 1:end - 1])
        if raw.startswith((b"!", b"?")):
            return  # comment, processing instruction, doctype

        closing = raw.startswith(b"/")
        body = raw[1:].strip() if closing else raw.rstrip()
        self_closing = not closing and body.endswith(b"/")
        if self_closing:
            body = body[:-1]

        match = _NAME.match(body)
        if match is None:
            if self._page_start is not None:
                self._fail(f"malformed tag <{raw[:40].decode('utf-8', 'replace')}>")
            elif not self._root_seen:
                raise DumpFormatError("malformed tag before the root element", offset=self._base + lt)
            return

        name = match.group(0).decode("ascii", "replace")
        attrs = body[match.end():]

        if self._page_start is None:
            self._outside_tag(name, attrs, closing, self_closing, lt, end)
            return
        try:
            self._page_tag(name, attrs, closing, self_closing, lt, end)
        except SegmentationError as e:
            self._fail(e.message)

    # -------------------------------------------------------------------------
    # Tags outside pages
    # -------------------------------------------------------------------------

    def _outside_tag(self, name, attrs, closing, self_closing, lt, end) -> None:
        if not self._root_seen:
            if closing or name != "mediawiki":
                found = f"</{name}>" if closing else f"<{name}>"
                raise DumpFormatError(
                    f"expected <mediawiki> root element, found {found}", offset=self._base + lt
                )
            xmlns = _attributes(attrs).get("xmlns", "")
            if not xmlns.startswith(EXPORT_NAMESPACE):
                raise DumpFormatError(
                    f"not a MediaWiki export (namespace {xmlns!r})", offset=self._base + lt
                )
            self._root_seen = True
            logger.debug(f"MediaWiki export {xmlns}")
            return

        if closing:
            if name == "mediawiki":
                self._root_closed = True
            return

        if name == "page":
            self._reset_page()
            self._page_start = lt
            self.state = SegmenterState.IN_PAGE_METADATA
            if self_closing:
                self._fail("empty <page/> element")
            else:
                self._stack = ["page"]
        elif name == "siteinfo" and not self_closing:
            self._siteinfo_start = end

    def _read_siteinfo(self, raw: bytes) -> None:
        text = raw.decode("utf-8", "replace")
        try:
            match = _SITENAME.search(text)
            if match:
                self.sitename = decode_entities(match.group(1).strip())
            match = _DBNAME.search(text)
            if match:
                self.dbname = decode_entities(match.group(1).strip())
            for match in _NAMESPACE.finditer(text):
                key = _KEY.search(match.group(1))
                if key:
                    self.namespaces[int(key.group(1))] = decode_entities((match.group(2) or "").strip())
        except SegmentationError as e:
            raise DumpFormatError(f"malformed <siteinfo>: {e.message}")
        logger.debug(f"Site {self.sitename} ({self.dbname}), {len(self.namespaces)} namespaces")

    # -------------------------------------------------------------------------
    # Tags inside a page
    # -------------------------------------------------------------------------

    def _page_tag(self, name, attrs, closing, self_closing, lt, end) -> None:
        stack = self._stack

        if closing:
            if stack[-1] != name:
                raise SegmentationError(f"mismatched </{name}>, expected </{stack[-1]}>")
            path = tuple(stack)
            if path in _CAPTURED:
                self._store(path, self._decode(bytes(self._buffer[self._content_start:lt])))
            stack.pop()
            if name == "text":
                self.state = SegmenterState.IN_PAGE_METADATA
            if not stack:
                self._complete_page(end)
            return

        if name == "page":
            # The open page is abandoned; segmentation restarts at this tag
            self._fail("nested <page> before </page>")
            self._pos = lt
            return

        if tuple(stack) in _CAPTURED:
            raise SegmentationError(f"unexpected <{name}> inside <{stack[-1]}>")

        path = (*stack, name)
        if path == ("page", "revision"):
            self._revision = {}
        elif path == ("page", "redirect"):
            self._page["redirect"] = decode_entities(_attributes(attrs).get("title", ""))

        if self_closing:
            if path in _CAPTURED:
                self._store(path, "")
            return

        stack.append(name)
        self._content_start = end
        if path == ("page", "revision", "text"):
            self.state = SegmenterState.IN_PAGE_BODY

    def _decode(self, raw: bytes) -> str:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SegmentationError(f"invalid UTF-8 in page ({e.reason})")
        return decode_entities(text)

    def _store(self, path: tuple, value: str) -> None:
        field = _CAPTURED[path]
        if path[1] == "revision":
            self._revision[field] = value
        else:
            self._page[field] = value

    def _complete_page(self, end: int) -> None:
        self.state = SegmenterState.PAGE_COMPLETE
        if end - self._page_start > self.max_page_bytes:
            raise SegmentationError(f"page exceeds {self.max_page_bytes:,} bytes")

        page, revision = self._page, self._revision
        title = page.get("title", "").strip()
        if not title:
            raise SegmentationError("missing <title>")
        page_id = _optional_int(page.get("id"), "page id")
        if page_id is None:
            raise SegmentationError("missing page <id>")

        redirect = page.get("redirect")
        record = PageRecord(
            page_id=page_id,
            title=title,
            namespace=_optional_int(page.get("ns"), "namespace") or 0,
            timestamp=revision.get("timestamp"),
            redirect_target=redirect.strip() if redirect and redirect.strip() else None,
            text=revision.get("text", ""),
            revision_id=_optional_int(revision.get("revision_id"), "revision id"),
            model=revision.get("model"),
            format=revision.get("format"),
            offset=self._base + self._page_start,
        )
        self._items.append(record)
        self.pages_emitted += 1
        self._reset_page()
        self.state = SegmenterState.OUTSIDE_PAGE

    def _fail(self, reason: str) -> None:
        """Abandon the open page and skip to the next <page>."""
        page_id = None
        raw_id = self._page.get("id")
        if raw_id and raw_id.strip().isdigit():
            page_id = int(raw_id)

        self._items.append(
            SegmentationFailure(
                offset=self._base + self._page_start,
                reason=reason,
                page_id=page_id,
                title=self._page.get("title") or None,
            )
        )
        self.failures += 1
        self._reset_page()
        self.state = SegmenterState.ERROR_SKIP

    # -------------------------------------------------------------------------
    # Buffer management
    # -------------------------------------------------------------------------

    def _compact(self) -> None:
        if self._siteinfo_start is not None:
            return
        cut = self._pos if self._page_start is None else self._page_start
        self._discard(cut)

    def _discard(self, count: int) -> None:
        if count <= 0:
            return
        del self._buffer[:count]
        self._base += count
        self._pos = max(0, self._pos - count)
        if self._page_start is not None:
            self._page_start -= count
            self._content_start -= count


def scan_pages(chunks: Iterable[bytes], max_page_bytes: int = 128 * 1024 * 1024) -> Iterator[SegmentedItem]:
    """Segment an iterable of decompressed chunks."""
    segmenter = PageSegmenter(max_page_bytes=max_page_bytes)
    for chunk in chunks:
        segmenter.feed(chunk)
        yield from segmenter.drain()
    segmenter.close()
    yield from segmenter.drain()
