"""
Output sinks.

Each enabled artifact has one sink writing to its own file in the output
directory:

    wiki_text.jsonl   {"id", "title", "text"} per page (or wiki_text.txt/.md)
    redirects.tsv     source<TAB>target, in discovery order
    metadata.jsonl    one PageMetadata object per page
    dictionary.tsv    token<TAB>count, natural order, written at end of run
    run_state.json    summary of how the run ended

Every record is written with one call, so a run that stops early leaves only
complete records behind. OSError from the filesystem becomes SinkWriteError.
"""

import logging
from pathlib import Path
from typing import Optional

import orjson

from wikiextract.config import GeneratorOptions, OutputSettings, Settings
from wikiextract.errors import SinkWriteError
from wikiextract.output.dictionary import DictionaryCounters
from wikiextract.output.text import PageExtraction, PageMetadata, RedirectEdge


logger = logging.getLogger(__name__)

TEXT_FILES = {"jsonl": "wiki_text.jsonl", "txt": "wiki_text.txt", "md": "wiki_text.md"}
REDIRECTS_FILE = "redirects.tsv"
METADATA_FILE = "metadata.jsonl"
DICTIONARY_FILE = "dictionary.tsv"
DIAGNOSTICS_FILE = "diagnostics.jsonl"
RUN_STATE_FILE = "run_state.json"


class FileSink:
    """Binary append-only file with error translation."""

    def __init__(self, path: Path):
        self.path = path
        self.records = 0
        try:
            self._file = open(path, "wb")
        except OSError as e:
            raise SinkWriteError(f"cannot open {path}: {e}") from e

    def write(self, data: bytes) -> None:
        try:
            self._file.write(data)
        except OSError as e:
            raise SinkWriteError(f"cannot write {self.path}: {e}") from e
        self.records += 1

    def flush(self) -> None:
        if self._file.closed:
            return
        try:
            self._file.flush()
        except OSError as e:
            raise SinkWriteError(f"cannot flush {self.path}: {e}") from e

    def close(self) -> None:
        if self._file.closed:
            return
        try:
            self._file.close()
        except OSError as e:
            raise SinkWriteError(f"cannot close {self.path}: {e}") from e


class TextDumpSink(FileSink):
    """Cleaned page text, one record per page."""

    def __init__(self, path: Path, layout: str = "jsonl", markdown: bool = False):
        super().__init__(path)
        self.layout = layout
        self.markdown = markdown

    def write_page(self, extraction: PageExtraction) -> bool:
        text = extraction.text
        if not text:
            return False
        if self.layout == "jsonl":
            record = {"id": extraction.page_id, "title": extraction.title, "text": text}
            self.write(orjson.dumps(record) + b"\n")
        elif self.markdown:
            self.write(f"# {extraction.title}\n\n{text}\n\n".encode("utf-8"))
        else:
            self.write(f"{extraction.title}\n{text}\n\n".encode("utf-8"))
        return True


class RedirectSink(FileSink):
    def write_redirect(self, edge: RedirectEdge) -> None:
        self.write(f"{edge.source}\t{edge.target}\n".encode("utf-8"))


class MetadataSink(FileSink):
    def write_metadata(self, metadata: PageMetadata) -> None:
        self.write(orjson.dumps(metadata.to_dict()) + b"\n")


def write_dictionary(path: Path, counters: DictionaryCounters) -> int:
    """Write token counts in natural order; return the number of tokens."""
    items = counters.sorted_items()
    try:
        with open(path, "wb") as f:
            for token, count in items:
                f.write(f"{token}\t{count}\n".encode("utf-8"))
    except OSError as e:
        raise SinkWriteError(f"cannot write {path}: {e}") from e
    logger.info(f"Dictionary: {len(items):,} tokens -> {path}")
    return len(items)


def write_run_state(path: Path, state) -> None:
    """Write the run summary as indented JSON."""
    try:
        with open(path, "wb") as f:
            f.write(orjson.dumps(state.to_dict(), option=orjson.OPT_INDENT_2) + b"\n")
    except OSError as e:
        raise SinkWriteError(f"cannot write {path}: {e}") from e


class SinkMultiplexer:
    """
    Route extraction results to the enabled sinks.

    Args:
        output: Output directory and text layout
        generate: Which artifacts to produce
        markdown: Whether the text dump holds Markdown
        flush_interval: Flush all sinks every N pages
    """

    def __init__(
        self,
        output: OutputSettings,
        generate: GeneratorOptions,
        markdown: bool = False,
        flush_interval: int = 100,
    ):
        self.directory = output.directory
        self.flush_interval = max(1, flush_interval)
        self.closed = False
        self._pages_since_flush = 0

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkWriteError(f"cannot create {self.directory}: {e}") from e

        self.text: Optional[TextDumpSink] = None
        self.redirects: Optional[RedirectSink] = None
        self.metadata: Optional[MetadataSink] = None
        self.dictionary_path: Optional[Path] = None

        if generate.text:
            layout = output.text_layout
            name = TEXT_FILES["md" if layout == "txt" and markdown else layout]
            self.text = TextDumpSink(self.directory / name, layout, markdown)
        if generate.redirects:
            self.redirects = RedirectSink(self.directory / REDIRECTS_FILE)
        if generate.metadata:
            self.metadata = MetadataSink(self.directory / METADATA_FILE)
        if generate.dictionary:
            self.dictionary_path = self.directory / DICTIONARY_FILE

    @classmethod
    def from_settings(cls, settings: Settings) -> "SinkMultiplexer":
        return cls(
            settings.output,
            settings.generate,
            markdown=settings.text.markdown,
            flush_interval=settings.pipeline.flush_interval,
        )

    @property
    def sinks(self) -> list:
        return [sink for sink in (self.text, self.redirects, self.metadata) if sink is not None]

    def write_page(self, extraction: PageExtraction) -> bool:
        """Write one page's text. Returns whether a record was written."""
        if self.text is None:
            return False
        return self.text.write_page(extraction)

    def write_redirect(self, edge: RedirectEdge) -> None:
        if self.redirects is not None:
            self.redirects.write_redirect(edge)

    def write_metadata(self, metadata: PageMetadata) -> None:
        if self.metadata is not None:
            self.metadata.write_metadata(metadata)

    def page_done(self) -> None:
        """Count a processed page and flush on the interval."""
        self._pages_since_flush += 1
        if self._pages_since_flush >= self.flush_interval:
            self.flush()

    def flush(self) -> None:
        for sink in self.sinks:
            sink.flush()
        self._pages_since_flush = 0

    def close(self, counters: Optional[DictionaryCounters] = None) -> None:
        """Flush and close all sinks, then write the dictionary."""
        if self.closed:
            return
        self.closed = True
        try:
            for sink in self.sinks:
                sink.flush()
        finally:
            for sink in self.sinks:
                sink.close()
        if self.dictionary_path is not None and counters is not None:
            write_dictionary(self.dictionary_path, counters)
