"""
Tests for text extraction, redirects, metadata and the word tokenizer.
"""
from wikiextract.config import TextOptions
from wikiextract.input.segmenter import PageRecord
from wikiextract.markup.parser import parse_text
from wikiextract.output.dictionary import DictionaryCounters, Tokenizer
from wikiextract.output.text import (
    PageExtraction,
    RedirectEdge,
    TextExtractor,
    TextUnit,
    collapse_whitespace,
    extract_metadata,
    extract_redirect,
    is_sentence,
    strip_raw_markup,
)


ARTICLE = """'''Alpha''' is a [[letter|letter]].<ref>Note</ref>

== History ==
It came from [[Phoenicia]].

== References ==
{{Reflist}}
Some ref text.

== Later ==
Modern use."""


def extract(text, counters=None, **options):
    extractor = TextExtractor(TextOptions(**options), counters)
    return extractor.extract(parse_text(text, page_id=1, title="Alpha"))


class TestParagraphs:
    """Test prose extraction and section skipping."""

    def test_plain_text(self):
        extraction = extract(ARTICLE)
        assert extraction.text == "Alpha is a letter.\n\nIt came from Phoenicia.\n\nModern use."
        assert [unit.kind for unit in extraction.units] == ["paragraph"] * 3

    def test_markdown_with_headings(self):
        extraction = extract(ARTICLE, markdown=True, include_headings=True)
        assert extraction.text == (
            "**Alpha** is a letter.\n\n## History\n\nIt came from Phoenicia.\n\n## Later\n\nModern use."
        )

    def test_plain_headings(self):
        extraction = extract("== Early life ==\nBorn in 1900.", include_headings=True)
        assert extraction.text == "Early life\n\nBorn in 1900."

    def test_skip_ends_at_same_level_heading(self):
        text = "== Notes ==\nSkipped.\n=== Sub ===\nAlso skipped.\n== Body ==\nKept."
        assert extract(text).text == "Kept."

    def test_custom_skip_sections(self):
        text = "== Plot ==\nSpoilers here.\n== Reception ==\nWell received."
        assert extract(text, skip_sections=["plot"]).text == "Well received."

    def test_hidden_links(self):
        text = "Alpha is a letter.[[Category:Letters]] [[File:Alpha.svg|thumb|An alpha]]"
        assert extract(text).text == "Alpha is a letter."

    def test_kept_templates(self):
        extraction = extract("The word {{lang|fr|bonjour}} means hello.{{citation needed}}")
        assert extraction.text == "The word bonjour means hello."

    def test_standalone_template_dropped(self):
        extraction = extract("{{Infobox letter\n| name = Alpha\n}}\nAlpha is a letter.")
        assert extraction.text == "Alpha is a letter."

    def test_preformatted(self):
        text = "Example:\n<pre>\nprint(1)\n</pre>"
        assert extract(text).text == "Example:"
        assert extract(text, include_preformatted=True).text == "Example:\n\nprint(1)"
        assert extract(text, include_preformatted=True, markdown=True).text == (
            "Example:\n\n```\nprint(1)\n```"
        )

    def test_degraded_page_is_cleaned(self):
        extraction = extract("Gamma is {{Infobox\n| name = Gamma\nThe third [[Greek alphabet|letter]].")
        assert extraction.best_effort
        assert "{{" not in extraction.text
        assert "The third letter." in extraction.text


class TestLists:
    """Test list rendering and sentence filtering."""

    LIST = "* Complete sentence.\n* fragment\n# First step.\n# Second step.\n"

    def test_only_sentences(self):
        assert extract(self.LIST).text == "Complete sentence.\nFirst step.\nSecond step."

    def test_all_lines(self):
        extraction = extract(self.LIST, only_sentences=False)
        assert extraction.text == "Complete sentence.\nfragment\nFirst step.\nSecond step."

    def test_markdown(self):
        extraction = extract(self.LIST, markdown=True)
        assert extraction.text == "- Complete sentence.\n1. First step.\n2. Second step."

    def test_nested_numbering(self):
        text = "# One.\n## Sub one.\n## Sub two.\n# Two.\n"
        assert extract(text, markdown=True).text == "1. One.\n  1. Sub one.\n  2. Sub two.\n2. Two."

    def test_paragraph_after_list(self):
        extraction = extract("* Item one.\n\nA paragraph.")
        assert extraction.text == "Item one.\n\nA paragraph."


class TestTables:
    """Test table rendering."""

    TABLE = "{|\n|-\n! Header\n|-\n| A full sentence here.\n|-\n| 42\n|}"

    def test_plain_cells(self):
        assert extract(self.TABLE).text == "A full sentence here."

    def test_plain_all_cells(self):
        assert extract(self.TABLE, only_sentences=False).text == "Header\nA full sentence here.\n42"

    def test_tables_excluded(self):
        assert extract("Before.\n" + self.TABLE, include_tables=False).text == "Before."

    def test_markdown_table(self):
        text = "{|\n|-\n! Name !! Value\n|-\n| Alpha || 1\n|}"
        assert extract(text, markdown=True).text == "| Name | Value |\n|---|---|\n| Alpha | 1 |"


class TestCounting:
    """Test that emitted text feeds the dictionary."""

    def test_token_counts(self):
        counters = DictionaryCounters()
        extraction = extract(ARTICLE, counters=counters)
        assert extraction.token_counts["alpha"] == 1
        assert extraction.token_counts["history"] == 1  # headings count even when not emitted
        assert "references" not in extraction.token_counts
        assert "ref" not in extraction.token_counts  # skipped section
        assert "note" not in extraction.token_counts  # reference content
        assert counters.counts == extraction.token_counts

    def test_counters_accumulate(self):
        counters = DictionaryCounters()
        extractor = TextExtractor(TextOptions(), counters)
        extractor.extract(parse_text("Alpha beta.", page_id=1, title="A"))
        extractor.extract(parse_text("Beta gamma.", page_id=2, title="B"))
        assert counters.counts["beta"] == 2
        assert counters.total == 4
        assert len(counters) == 3


class TestRedirectsAndMetadata:
    def test_redirect_document(self):
        extraction = extract("#REDIRECT [[Beta#Usage]]")
        assert extraction.redirect == RedirectEdge("Alpha", "Beta")
        assert extraction.units == []

    def test_extract_redirect_from_element(self):
        record = PageRecord(page_id=2, title="Beta", redirect_target="Alpha", text="#REDIRECT [[Alpha]]")
        assert extract_redirect(record) == RedirectEdge("Beta", "Alpha")

    def test_extract_redirect_element_anchor(self):
        """Section anchors on <redirect> targets are dropped like body targets."""
        record = PageRecord(page_id=2, title="Beta", redirect_target="Alpha#Usage", text="#REDIRECT [[Alpha#Usage]]")
        assert extract_redirect(record) == RedirectEdge("Beta", "Alpha")

    def test_extract_redirect_from_body(self):
        record = PageRecord(page_id=2, title="Beta", text="#REDIRECT [[Alpha]]")
        assert extract_redirect(record) == RedirectEdge("Beta", "Alpha")

    def test_not_a_redirect(self):
        assert extract_redirect(PageRecord(page_id=3, title="Gamma", text="Gamma.")) is None

    def test_metadata(self):
        record = PageRecord(
            page_id=3, title="Talk:Alpha", namespace=1, timestamp="2024-01-01T00:00:00Z",
            text="Größe", revision_id=30, model="wikitext",
        )
        metadata = extract_metadata(record, {0: "", 1: "Talk"})
        assert metadata.to_dict() == {
            "id": 3,
            "title": "Talk:Alpha",
            "ns": 1,
            "namespace_name": "Talk",
            "timestamp": "2024-01-01T00:00:00Z",
            "revision_id": 30,
            "redirect_target": None,
            "model": "wikitext",
            "length": 7,
        }


class TestHelpers:
    def test_collapse_whitespace(self):
        assert collapse_whitespace("a    b\n\n\n\n   c ") == "a b\n\nc"

    def test_is_sentence(self):
        assert is_sentence("Done.")
        assert is_sentence('He said "stop!"')
        assert is_sentence("(See below.)")
        assert not is_sentence("fragment")

    def test_strip_raw_markup(self):
        raw = "A {{t|{{inner}}}} [[Link|shown]] [https://x.org site] '''b''' <span>s</span><!-- c --> {{open"
        assert collapse_whitespace(strip_raw_markup(raw)) == "A shown site b s open"

    def test_page_text_joins_units(self):
        extraction = PageExtraction(page_id=1, title="T", units=[
            TextUnit("paragraph", "P."),
            TextUnit("list_item", "a."),
            TextUnit("list_item", "b."),
            TextUnit("table_cell", "c."),
        ])
        assert extraction.text == "P.\n\na.\nb.\n\nc."


class TestTokenizer:
    """Test dictionary tokenization."""

    def test_tokens(self):
        tokens = list(Tokenizer().tokens("Don't stop—believing! Well-known 'quoted' (1999) e-mail--"))
        assert tokens == ["don't", "stop", "believing", "well-known", "quoted", "1999", "e-mail"]

    def test_typographic_apostrophe(self):
        assert list(Tokenizer().tokens("Don’t")) == ["don't"]

    def test_max_length(self):
        assert list(Tokenizer(max_token_length=5).tokens("short toolongword")) == ["short"]

    def test_count(self):
        assert Tokenizer().count("a A a, b.") == {"a": 3, "b": 1}

    def test_sorted_items_natural_order(self):
        counters = DictionaryCounters()
        counters.add(["item10", "item2", "Beta", "alpha", "item2"])
        assert counters.sorted_items() == [("alpha", 1), ("Beta", 1), ("item2", 2), ("item10", 1)]
