"""
Document model produced by the markup parser.

A ParsedDocument is an ordered list of blocks. Every block carries
`span = (start, end)`, the byte range it was built from in the UTF-8
encoding of the page's raw markup. Block content is a list of inline nodes.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


Span = Tuple[int, int]


# ─────────────────────────────────────────────────────────────────────────────
# Inline nodes
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Text:
    value: str


@dataclass
class Wikilink:
    """Represents a parsed wikilink: [[target#anchor|display]]"""
    target: str
    anchor: Optional[str] = None
    display: Optional[str] = None

    def text(self) -> str:
        """Return display text if present, otherwise target."""
        if self.display is not None:
            return self.display
        return self.target.lstrip(":")

    @property
    def prefix(self) -> Optional[str]:
        """
        Lowercased namespace-like prefix ("category", "file", ...), or None.

        A leading colon makes the link an ordinary visible link, so it has
        no prefix.
        """
        if self.target.startswith(":") or ":" not in self.target:
            return None
        return self.target.split(":", 1)[0].strip().lower()


@dataclass
class ExternalLink:
    """[url title] or a bare url"""
    url: str
    title: Optional[str] = None
    brackets: bool = True


@dataclass
class Template:
    """Represents a parsed template: {{name|param1|param2|key=value}}"""
    name: str
    params: List[str] = field(default_factory=list)
    named: dict = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Name as compared against template rules: lowercase, spaces for underscores."""
        return " ".join(self.name.replace("_", " ").split()).lower()

    def param(self, position: int) -> Optional[str]:
        """1-based positional parameter, falling back to an explicit `N=` key."""
        if 0 < position <= len(self.params):
            return self.params[position - 1]
        return self.named.get(str(position))


@dataclass
class Styled:
    style: str  # "bold" or "italic"
    children: List["Inline"] = field(default_factory=list)


@dataclass
class Reference:
    """<ref> footnote content, already flattened to text."""
    content: str = ""


Inline = Union[Text, Wikilink, ExternalLink, Template, Styled, Reference]


def plain_text(inlines: List[Inline]) -> str:
    """Flatten inline nodes to their visible text. Templates and references vanish."""
    parts = []
    for node in inlines:
        if isinstance(node, Text):
            parts.append(node.value)
        elif isinstance(node, Wikilink):
            parts.append(node.text())
        elif isinstance(node, ExternalLink):
            if node.title:
                parts.append(node.title)
            elif not node.brackets:
                parts.append(node.url)
        elif isinstance(node, Styled):
            parts.append(plain_text(node.children))
    return "".join(parts)


# ─────────────────────────────────────────────────────────────────────────────
# Blocks
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Heading:
    level: int
    inlines: List[Inline]
    span: Span = (0, 0)


@dataclass
class Paragraph:
    inlines: List[Inline]
    span: Span = (0, 0)


@dataclass
class ListItem:
    markers: str  # e.g. "*", "#*", ";"
    inlines: List[Inline] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.markers)

    @property
    def kind(self) -> str:
        return {"*": "bullet", "#": "number", ";": "term", ":": "definition"}[self.markers[-1]]


@dataclass
class ListBlock:
    items: List[ListItem]
    span: Span = (0, 0)


@dataclass
class TableCell:
    inlines: List[Inline]
    header: bool = False


@dataclass
class Table:
    rows: List[List[TableCell]]
    caption: Optional[List[Inline]] = None
    span: Span = (0, 0)


@dataclass
class TemplateBlock:
    """A template invocation standing alone on its line(s)."""
    template: Template
    span: Span = (0, 0)


@dataclass
class Preformatted:
    text: str
    span: Span = (0, 0)


@dataclass
class RawBlock:
    """Unparsed markup, used when a page could not be parsed."""
    text: str
    span: Span = (0, 0)


Block = Union[Heading, Paragraph, ListBlock, Table, TemplateBlock, Preformatted, RawBlock]


@dataclass
class ParsedDocument:
    page_id: int
    title: str
    blocks: List[Block] = field(default_factory=list)
    redirect_target: Optional[str] = None
    best_effort: bool = False
    error: Optional[str] = None
