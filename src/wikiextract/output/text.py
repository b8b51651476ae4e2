"""
ParsedDocument -> text units, redirect edges and page metadata.

The extractor decides what of a page is prose. It drops templates without a
rendering rule, references, category and file links, and (unless asked
otherwise) tables and preformatted blocks. Sections such as "References"
are skipped up to the next heading of the same or higher level. Output is
plain prose or Markdown.

Every emitted unit's visible words, plus the words of headings, are counted
into the run's DictionaryCounters.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, List, Optional

from wikiextract.config import TextOptions
from wikiextract.markup import document as doc
from wikiextract.markup.parser import redirect_target
from wikiextract.output.dictionary import DictionaryCounters, Tokenizer


logger = logging.getLogger(__name__)

# Link prefixes that do not render as visible text
HIDDEN_LINK_PREFIXES = {"category", "file", "image", "media"}

_SENTENCE_END = (".", "!", "?", "…")
_TRAILING_CLOSERS = "\"')]}»”’"

# Units joined by a single newline when adjacent
_LINE_UNITS = {"list_item", "table_cell"}


@dataclass(frozen=True)
class RedirectEdge:
    source: str
    target: str


@dataclass
class TextUnit:
    kind: str  # heading, paragraph, list_item, table_cell, table, preformatted, template, raw
    text: str


@dataclass
class PageExtraction:
    page_id: int
    title: str
    units: List[TextUnit] = field(default_factory=list)
    token_counts: Counter = field(default_factory=Counter)
    redirect: Optional[RedirectEdge] = None
    best_effort: bool = False

    @property
    def text(self) -> str:
        """Page body: line units joined by newlines, other units by blank lines."""
        parts = []
        previous = None
        for unit in self.units:
            if previous is not None:
                same_run = unit.kind in _LINE_UNITS and previous.kind == unit.kind
                parts.append("\n" if same_run else "\n\n")
            parts.append(unit.text)
            previous = unit
        return "".join(parts)


@dataclass
class PageMetadata:
    page_id: int
    title: str
    namespace: int
    namespace_name: str
    timestamp: Optional[str]
    revision_id: Optional[int]
    redirect_target: Optional[str]
    model: Optional[str]
    length: int  # UTF-8 bytes of the raw markup

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.page_id,
            "title": self.title,
            "ns": self.namespace,
            "namespace_name": self.namespace_name,
            "timestamp": self.timestamp,
            "revision_id": self.revision_id,
            "redirect_target": self.redirect_target,
            "model": self.model,
            "length": self.length,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Whitespace and raw-markup cleanup
# ─────────────────────────────────────────────────────────────────────────────

_SPACES = re.compile(r"[ \t\u00a0]+")
_LEADING_SPACES = re.compile(r"\n +")
_BLANK_LINES = re.compile(r"\n{3,}")


def collapse_whitespace(text: str) -> str:
    """
    Runs of spaces/tabs/NBSP -> one space, at most one blank line, no
    spaces at line starts.
    """
    text = _SPACES.sub(" ", text)
    text = _LEADING_SPACES.sub("\n", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


_RAW_TEMPLATE = re.compile(r"\{\{[^{}]*\}\}")
_RAW_LINK = re.compile(r"\[\[(?:[^\[\]|]*\|)?([^\[\]]*)\]\]")
_RAW_EXTERNAL = re.compile(r"\[(?:https?:)?//[^\s\]]+\s*([^\]]*)\]")
_RAW_TAG = re.compile(r"<[^<>]+>")
_RAW_REF = re.compile(r"<ref[^>/]*>.*?</ref>", re.S | re.I)
_RAW_COMMENT = re.compile(r"<!--.*?(?:-->|$)", re.S)
_RAW_QUOTES = re.compile(r"'{2,}")


def strip_raw_markup(text: str) -> str:
    """
    Best-effort cleanup of markup that could not be parsed.

    Removes balanced templates innermost first, keeps link text, drops
    tags, comments and bold/italic quotes, then stray brackets.
    """
    text = _RAW_COMMENT.sub("", text)
    text = _RAW_REF.sub("", text)
    previous = None
    while previous != text:
        previous = text
        text = _RAW_TEMPLATE.sub("", text)
    text = _RAW_LINK.sub(r"\1", text)
    text = _RAW_EXTERNAL.sub(r"\1", text)
    text = _RAW_TAG.sub("", text)
    text = _RAW_QUOTES.sub("", text)
    for stray in ("{{", "}}", "[[", "]]"):
        text = text.replace(stray, "")
    return text


def is_sentence(text: str) -> bool:
    return text.rstrip().rstrip(_TRAILING_CLOSERS).endswith(_SENTENCE_END)


# ─────────────────────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────────────────────

class TextExtractor:
    """
    Render parsed documents and count their words.

    Args:
        options: Rendering options
        counters: Run-wide dictionary; this extractor is its only writer
    """

    def __init__(self, options: TextOptions, counters: Optional[DictionaryCounters] = None):
        self.options = options
        self.counters = counters if counters is not None else DictionaryCounters()
        self.tokenizer = Tokenizer(options.max_token_length)
        self._skip_sections = {title.strip().lower() for title in options.skip_sections}
        self._kept_templates = {
            " ".join(name.replace("_", " ").split()).lower(): position
            for name, position in options.kept_templates.items()
        }

    def extract(self, document: doc.ParsedDocument) -> PageExtraction:
        extraction = PageExtraction(
            page_id=document.page_id,
            title=document.title,
            best_effort=document.best_effort,
        )
        if document.redirect_target is not None:
            extraction.redirect = RedirectEdge(document.title, document.redirect_target)
            return extraction

        counted: List[str] = []  # plain text whose words go into the dictionary
        skip_level = None

        for block in document.blocks:
            if isinstance(block, doc.Heading):
                title = collapse_whitespace(self._plain(block.inlines))
                if skip_level is not None and block.level <= skip_level:
                    skip_level = None
                if skip_level is not None:
                    continue
                if title.lower() in self._skip_sections:
                    skip_level = block.level
                    continue
                counted.append(title)
                if self.options.include_headings and title:
                    text = f"{'#' * block.level} {title}" if self.options.markdown else title
                    extraction.units.append(TextUnit("heading", text))
                continue

            if skip_level is not None:
                continue
            self._block(block, extraction.units, counted)

        counts = Counter()
        for text in counted:
            counts.update(self.tokenizer.tokens(text))
        extraction.token_counts = counts
        self.counters.merge(counts)
        return extraction

    def _block(self, block, units: List[TextUnit], counted: List[str]) -> None:
        markdown = self.options.markdown

        if isinstance(block, doc.Paragraph):
            text = collapse_whitespace(self._render(block.inlines))
            if text:
                units.append(TextUnit("paragraph", text))
                counted.append(collapse_whitespace(self._plain(block.inlines)))

        elif isinstance(block, doc.ListBlock):
            self._list(block, units, counted)

        elif isinstance(block, doc.Table):
            if self.options.include_tables:
                self._table(block, units, counted)

        elif isinstance(block, doc.TemplateBlock):
            text = collapse_whitespace(self._template(block.template))
            if text:
                units.append(TextUnit("template", text))
                counted.append(text)

        elif isinstance(block, doc.Preformatted):
            if self.options.include_preformatted and block.text.strip():
                text = f"```\n{block.text}\n```" if markdown else block.text
                units.append(TextUnit("preformatted", text))
                counted.append(block.text)

        elif isinstance(block, doc.RawBlock):
            text = collapse_whitespace(strip_raw_markup(block.text))
            if text:
                units.append(TextUnit("raw", text))
                counted.append(text)

    def _list(self, block: doc.ListBlock, units: List[TextUnit], counted: List[str]) -> None:
        numbers: dict[int, int] = {}
        for item in block.items:
            depth, kind = item.depth, item.kind
            for deeper in [d for d in numbers if d > depth]:
                del numbers[deeper]
            if kind != "number":
                numbers.pop(depth, None)

            plain = collapse_whitespace(self._plain(item.inlines))
            if not plain:
                continue
            if self.options.only_sentences and (kind == "term" or not is_sentence(plain)):
                continue
            if kind == "number":
                numbers[depth] = numbers.get(depth, 0) + 1

            if self.options.markdown:
                body = collapse_whitespace(self._render(item.inlines))
                indent = "  " * (depth - 1)
                if kind == "bullet":
                    text = f"{indent}- {body}"
                elif kind == "number":
                    text = f"{indent}{numbers[depth]}. {body}"
                elif kind == "term":
                    text = f"{indent}**{body}**"
                else:
                    text = f"{indent}{body}"
            else:
                text = plain
            units.append(TextUnit("list_item", text))
            counted.append(plain)

    def _table(self, table: doc.Table, units: List[TextUnit], counted: List[str]) -> None:
        caption = collapse_whitespace(self._plain(table.caption)) if table.caption else ""

        if self.options.markdown:
            rows = [
                [collapse_whitespace(self._render(cell.inlines)).replace("|", "\\|") for cell in row]
                for row in table.rows
            ]
            rows = [row for row in rows if any(row)]
            if not rows:
                return
            width = max(len(row) for row in rows)
            rows = [row + [""] * (width - len(row)) for row in rows]
            lines = []
            if caption:
                lines.append(f"_{caption}_")
                lines.append("")
            lines.append("| " + " | ".join(rows[0]) + " |")
            lines.append("|" + "|".join(["---"] * width) + "|")
            for row in rows[1:]:
                lines.append("| " + " | ".join(row) + " |")
            units.append(TextUnit("table", "\n".join(lines)))
            if caption:
                counted.append(caption)
            counted.extend(
                collapse_whitespace(self._plain(cell.inlines)) for row in table.rows for cell in row
            )
            return

        cells = [caption] if caption else []
        cells.extend(collapse_whitespace(self._plain(cell.inlines)) for row in table.rows for cell in row)
        for text in cells:
            if not text:
                continue
            if self.options.only_sentences and not is_sentence(text):
                continue
            units.append(TextUnit("table_cell", text))
            counted.append(text)

    # -------------------------------------------------------------------------
    # Inline rendering
    # -------------------------------------------------------------------------

    def _template(self, template: doc.Template) -> str:
        position = self._kept_templates.get(template.key)
        if position is None:
            return ""
        return template.param(position) or ""

    def _plain(self, inlines: Optional[List[doc.Inline]]) -> str:
        return self._inlines(inlines or [], markdown=False)

    def _render(self, inlines: List[doc.Inline]) -> str:
        return self._inlines(inlines, markdown=self.options.markdown)

    def _inlines(self, inlines: List[doc.Inline], markdown: bool) -> str:
        parts = []
        for node in inlines:
            if isinstance(node, doc.Text):
                parts.append(node.value)
            elif isinstance(node, doc.Wikilink):
                if node.prefix not in HIDDEN_LINK_PREFIXES:
                    parts.append(node.text())
            elif isinstance(node, doc.ExternalLink):
                if node.title:
                    parts.append(node.title)
                elif not node.brackets:
                    parts.append(node.url)
            elif isinstance(node, doc.Template):
                parts.append(self._template(node))
            elif isinstance(node, doc.Styled):
                inner = self._inlines(node.children, markdown)
                if markdown and inner.strip():
                    mark = "**" if node.style == "bold" else "_"
                    inner = f"{mark}{inner.strip()}{mark}"
                parts.append(inner)
            # References are dropped
        return "".join(parts)


def extract_redirect(record) -> Optional[RedirectEdge]:
    """Redirect edge of a page record, from <redirect> or a #REDIRECT body, without #anchors."""
    target = record.redirect_target or redirect_target(record.text)
    if target:
        target = target.split("#", 1)[0].strip()
    if not target:
        return None
    return RedirectEdge(source=record.title, target=target)


def extract_metadata(record, namespaces: Optional[dict[int, str]] = None) -> PageMetadata:
    namespaces = namespaces or {}
    return PageMetadata(
        page_id=record.page_id,
        title=record.title,
        namespace=record.namespace,
        namespace_name=namespaces.get(record.namespace, ""),
        timestamp=record.timestamp,
        revision_id=record.revision_id,
        redirect_target=record.redirect_target,
        model=record.model,
        length=len(record.text.encode("utf-8")),
    )
