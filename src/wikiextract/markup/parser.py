"""
Wiki markup -> ParsedDocument.

mwparserfromhell supplies the grammar (templates, links, tags, headings,
tables, list markers). This module walks the top-level nodes and assembles
them into blocks line by line, the way MediaWiki lays out a page:

- a heading, table or <pre> is a block of its own
- consecutive text lines form one paragraph; a blank line ends it
- lines starting with *, #, ; or : form a list
- a line holding nothing but one template invocation is a TemplateBlock

Parsing never raises for markup problems. Anything the grammar leaves
unterminated ("{{" or "[[" with no closer) and any parser exception turns
the page into a degraded document: a single RawBlock with the whole text,
`best_effort=True` and `error` set.
"""

import re
from typing import List, Optional

import mwparserfromhell
from mwparserfromhell import nodes
from mwparserfromhell.parser import ParserError

from wikiextract.errors import MarkupParseError
from wikiextract.markup import document as doc


_REDIRECT = re.compile(r"^\s*#REDIRECT\s*:?\s*\[\[([^\]|]+)(?:\|[^\]]*)?\]\]", re.IGNORECASE)

LIST_TAGS = {"li", "dt", "dd"}
STYLE_TAGS = {"b": "bold", "strong": "bold", "i": "italic", "em": "italic"}
PREFORMATTED_TAGS = {"pre", "syntaxhighlight", "source"}

# Tags whose content is not prose
DROPPED_TAGS = {
    "references", "gallery", "math", "chem", "ce", "timeline", "score",
    "graph", "mapframe", "maplink", "imagemap", "templatedata",
    "templatestyles", "hiero", "inputbox", "categorytree", "indicator",
    "section", "noinclude",
}


def redirect_target(text: str) -> Optional[str]:
    """Target title of a `#REDIRECT [[Target]]` body, without its #anchor."""
    match = _REDIRECT.match(text)
    if not match:
        return None
    target = match.group(1).split("#", 1)[0].strip()
    return target or None


def _tag_name(node: nodes.Tag) -> str:
    return str(node.tag).strip().lower()


def _is_list_marker(node) -> bool:
    return isinstance(node, nodes.Tag) and node.wiki_markup is not None and _tag_name(node) in LIST_TAGS


def _is_block_node(node) -> bool:
    if isinstance(node, nodes.Heading):
        return True
    if isinstance(node, nodes.Tag):
        name = _tag_name(node)
        return name == "table" or name == "hr" or name in PREFORMATTED_TAGS
    return False


# ─────────────────────────────────────────────────────────────────────────────
# Inline conversion
# ─────────────────────────────────────────────────────────────────────────────

def convert_inlines(code) -> List[doc.Inline]:
    """Convert a Wikicode fragment to inline nodes. Newlines become spaces."""
    result: List[doc.Inline] = []
    if code is None:
        return result
    for node in code.nodes:
        inline = _inline(node)
        if inline is None:
            continue
        if isinstance(inline, list):
            result.extend(inline)
        else:
            result.append(inline)
    return result


def _plain(code) -> str:
    return doc.plain_text(convert_inlines(code)).strip()


def _inline(node):
    if isinstance(node, nodes.Text):
        return doc.Text(node.value.replace("\n", " "))
    if isinstance(node, nodes.HTMLEntity):
        return doc.Text(node.normalize())
    if isinstance(node, nodes.Wikilink):
        return _wikilink(node)
    if isinstance(node, nodes.ExternalLink):
        title = _plain(node.title) if node.title is not None else None
        return doc.ExternalLink(url=str(node.url).strip(), title=title or None, brackets=node.brackets)
    if isinstance(node, nodes.Template):
        return _template(node)
    if isinstance(node, nodes.Heading):
        return convert_inlines(node.title)
    if isinstance(node, nodes.Tag):
        return _inline_tag(node)
    # Comment, Argument ({{{1}}}) and anything unknown carry no prose
    return None


def _wikilink(node: nodes.Wikilink) -> doc.Wikilink:
    title = str(node.title).strip()
    target, _, anchor = title.partition("#")
    display = _plain(node.text) if node.text is not None else None
    return doc.Wikilink(
        target=target.strip(),
        anchor=anchor.strip() or None,
        display=display or None,
    )


def _template(node: nodes.Template) -> doc.Template:
    params = []
    named = {}
    for param in node.params:
        value = _plain(param.value)
        if param.showkey:
            named[str(param.name).strip()] = value
        else:
            params.append(value)
    return doc.Template(name=str(node.name).strip(), params=params, named=named)


def _inline_tag(node: nodes.Tag):
    name = _tag_name(node)
    if name in DROPPED_TAGS or name in LIST_TAGS or name == "table":
        return None
    if name == "br":
        return doc.Text(" ")
    if name == "ref":
        return doc.Reference(content=_plain(node.contents))
    if name == "nowiki":
        return doc.Text(str(node.contents or "").replace("\n", " "))
    if name in STYLE_TAGS:
        return doc.Styled(style=STYLE_TAGS[name], children=convert_inlines(node.contents))
    # span, small, sup, sub, u, s, div, blockquote, poem ...: keep the content
    return convert_inlines(node.contents)


# ─────────────────────────────────────────────────────────────────────────────
# Block-level conversion
# ─────────────────────────────────────────────────────────────────────────────

def _table(node: nodes.Tag, span: doc.Span) -> doc.Table:
    rows: List[List[doc.TableCell]] = []
    caption = None
    pending: List[doc.TableCell] = []  # cells before the first |-

    def cell(tag) -> doc.TableCell:
        return doc.TableCell(inlines=convert_inlines(tag.contents), header=_tag_name(tag) == "th")

    for child in (node.contents.nodes if node.contents is not None else []):
        if not isinstance(child, nodes.Tag):
            continue
        name = _tag_name(child)
        if name == "caption":
            caption = convert_inlines(child.contents)
        elif name in ("td", "th"):
            pending.append(cell(child))
        elif name == "tr":
            if pending:
                rows.append(pending)
                pending = []
            row = [
                cell(grandchild)
                for grandchild in (child.contents.nodes if child.contents is not None else [])
                if isinstance(grandchild, nodes.Tag) and _tag_name(grandchild) in ("td", "th")
            ]
            if row:
                rows.append(row)
    if pending:
        rows.append(pending)
    return doc.Table(rows=rows, caption=caption, span=span)


def _preformatted(node: nodes.Tag, span: doc.Span) -> doc.Preformatted:
    text = str(node.contents or "")
    return doc.Preformatted(text=text.strip("\n"), span=span)


class _Line:
    """Content of one source line: list markers plus (inline, start, end) entries."""

    def __init__(self, start: int):
        self.start = start
        self.markers = ""
        self.entries = []

    def add(self, inline, start: int, end: int) -> None:
        self.entries.append((inline, start, end))

    @property
    def inlines(self) -> List[doc.Inline]:
        return [entry[0] for entry in self.entries]

    @property
    def span(self) -> doc.Span:
        if not self.entries:
            return (self.start, self.start)
        return (self.entries[0][1], self.entries[-1][2])

    def is_blank(self) -> bool:
        return all(isinstance(inline, doc.Text) and not inline.value.strip() for inline in self.inlines)

    def standalone_template(self):
        """The (template, start, end) entry if the line holds only one template."""
        found = None
        for entry in self.entries:
            inline = entry[0]
            if isinstance(inline, doc.Text) and not inline.value.strip():
                continue
            if isinstance(inline, doc.Template) and found is None:
                found = entry
                continue
            return None
        return found


class _BlockAssembler:
    """Consumes top-level nodes in order and groups them into blocks."""

    def __init__(self):
        self.blocks: List[doc.Block] = []
        self.pos = 0  # byte offset into the UTF-8 encoded text
        self._line = _Line(0)
        self._paragraph: Optional[doc.Paragraph] = None
        self._list: Optional[doc.ListBlock] = None

    def feed(self, node) -> None:
        if isinstance(node, nodes.Text):
            self._text(node.value)
            return

        start = self.pos
        self.pos += len(str(node).encode("utf-8"))
        span = (start, self.pos)

        if _is_list_marker(node):
            if self._line.entries:
                # ";term : definition" on one line
                markers = self._line.markers
                self._end_line()
                self._line = _Line(start)
                self._line.markers = markers[:-1] if markers.endswith(";") else markers
            self._line.markers += node.wiki_markup
            return

        if _is_block_node(node):
            self._end_line()
            self._flush()
            block = self._block(node, span)
            if block is not None:
                self.blocks.append(block)
            self._line = _Line(self.pos)
            return

        inline = _inline(node)
        if inline is None:
            return
        if isinstance(inline, list):
            for item in inline:
                self._line.add(item, start, self.pos)
        else:
            self._line.add(inline, start, self.pos)

    def finish(self) -> List[doc.Block]:
        self._end_line()
        self._flush()
        return self.blocks

    def _block(self, node, span: doc.Span) -> Optional[doc.Block]:
        if isinstance(node, nodes.Heading):
            return doc.Heading(level=node.level, inlines=convert_inlines(node.title), span=span)
        name = _tag_name(node)
        if name == "table":
            return _table(node, span)
        if name in PREFORMATTED_TAGS:
            return _preformatted(node, span)
        return None  # hr only separates

    def _text(self, value: str) -> None:
        for i, piece in enumerate(value.split("\n")):
            if i:
                self._end_line()
                self.pos += 1
                self._line = _Line(self.pos)
            if piece:
                size = len(piece.encode("utf-8"))
                self._line.add(doc.Text(piece), self.pos, self.pos + size)
                self.pos += size

    def _end_line(self) -> None:
        line = self._line
        if line.markers:
            self._flush_paragraph()
            item = doc.ListItem(markers=line.markers, inlines=line.inlines)
            start, end = line.span if line.entries else (line.start, line.start)
            if self._list is None:
                self._list = doc.ListBlock(items=[], span=(line.start, end))
            self._list.items.append(item)
            self._list.span = (self._list.span[0], max(end, self._list.span[1]))
        elif line.is_blank():
            self._flush()
        else:
            entry = line.standalone_template()
            if entry is not None:
                self._flush()
                template, start, end = entry
                self.blocks.append(doc.TemplateBlock(template=template, span=(start, end)))
            else:
                self._flush_list()
                start, end = line.span
                if self._paragraph is None:
                    self._paragraph = doc.Paragraph(inlines=[], span=(start, end))
                else:
                    self._paragraph.inlines.append(doc.Text(" "))
                    self._paragraph.span = (self._paragraph.span[0], end)
                self._paragraph.inlines.extend(line.inlines)
        self._line = _Line(self.pos)

    def _flush_paragraph(self) -> None:
        if self._paragraph is not None:
            self.blocks.append(self._paragraph)
            self._paragraph = None

    def _flush_list(self) -> None:
        if self._list is not None:
            self.blocks.append(self._list)
            self._list = None

    def _flush(self) -> None:
        self._flush_paragraph()
        self._flush_list()


def _check_terminated(code) -> None:
    """
    Raise MarkupParseError if a "{{" or "[[" opener was left as plain text.

    The grammar does not fail on unterminated constructs, it emits their
    opening brackets as text; adjacent text nodes are joined so an opener
    split across two nodes is still found.
    """
    run = []
    for node in list(code.nodes) + [None]:
        if isinstance(node, nodes.Text):
            run.append(node.value)
            continue
        if run:
            text = "".join(run)
            for opener in ("{{", "[["):
                if opener in text:
                    raise MarkupParseError(f"unterminated {opener!r} in markup")
            run = []


class DocumentParser:
    """Parse page records into ParsedDocuments."""

    def parse(self, record) -> doc.ParsedDocument:
        return self.parse_text(record.text, page_id=record.page_id, title=record.title)

    def parse_text(self, text: str, page_id: int = 0, title: str = "") -> doc.ParsedDocument:
        target = redirect_target(text)
        if target is not None:
            return doc.ParsedDocument(page_id=page_id, title=title, redirect_target=target)

        try:
            code = mwparserfromhell.parse(text)
            _check_terminated(code)
            assembler = _BlockAssembler()
            for node in code.nodes:
                assembler.feed(node)
            blocks = assembler.finish()
        except (ParserError, MarkupParseError, RecursionError, ValueError) as e:
            return degraded(text, page_id, title, e)

        return doc.ParsedDocument(page_id=page_id, title=title, blocks=blocks)


def degraded(text: str, page_id: int, title: str, error: Exception) -> doc.ParsedDocument:
    """A document holding the whole raw text as one RawBlock."""
    message = error.message if isinstance(error, MarkupParseError) else f"{type(error).__name__}: {error}"
    return doc.ParsedDocument(
        page_id=page_id,
        title=title,
        blocks=[doc.RawBlock(text=text, span=(0, len(text.encode("utf-8"))))],
        best_effort=True,
        error=message,
    )


_parser = DocumentParser()


def parse_text(text: str, page_id: int = 0, title: str = "") -> doc.ParsedDocument:
    """Parse a markup string with a shared DocumentParser."""
    return _parser.parse_text(text, page_id=page_id, title=title)


def parse_record(record) -> doc.ParsedDocument:
    """Module-level entry point, picklable for worker processes."""
    return _parser.parse(record)
