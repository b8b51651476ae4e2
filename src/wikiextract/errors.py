"""
Error taxonomy for the extraction pipeline.

Every error raised by a pipeline stage derives from ExtractionError and
records which stage failed and, where known, the byte offset at which the
failure was detected. The `fatal` class attribute tells the orchestrator
whether the run must stop:

    SourceError / RetriesExhaustedError   fatal   (transient I/O exhausted)
    ArchiveCorruptionError                fatal   (bad compressed block)
    DumpFormatError                       fatal   (not a MediaWiki export)
    SegmentationError                     page    (page skipped)
    MarkupParseError                      page    (raw-text fallback)
    SinkWriteError                        fatal   (disk full, permission)
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for all pipeline errors."""

    fatal = True
    default_stage = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        offset: Optional[int] = None,
        page_id: Optional[int] = None,
        title: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.offset = offset
        self.page_id = page_id
        self.title = title

    def __str__(self) -> str:
        if self.offset is not None:
            return f"[{self.stage}] {self.message} (at byte {self.offset:,})"
        return f"[{self.stage}] {self.message}"


class ConfigError(ExtractionError, ValueError):
    """Raised when a settings file or override is invalid."""

    default_stage = "config"


class SourceError(ExtractionError):
    """Non-retryable failure while reading the archive bytes."""

    default_stage = "source"


class TransientSourceError(SourceError):
    """Network hiccup that may succeed when retried."""

    fatal = False


class RetriesExhaustedError(SourceError):
    """A transient failure persisted past the configured retry limit."""


class DumpNotReadyError(SourceError):
    """The mirror is still generating the requested dump."""


class ArchiveCorruptionError(ExtractionError):
    """A compressed block could not be decoded. Not retryable within a run."""

    default_stage = "decompress"


class DumpFormatError(ExtractionError):
    """The decompressed stream is not a MediaWiki XML export."""

    default_stage = "segment"


class SegmentationError(ExtractionError):
    """A single page's XML was malformed; the page is skipped."""

    fatal = False
    default_stage = "segment"


class MarkupParseError(ExtractionError):
    """Wiki markup could not be parsed into blocks; the page degrades to raw text."""

    fatal = False
    default_stage = "parse"


class SinkWriteError(ExtractionError):
    """Writing an output artifact failed."""

    default_stage = "sink"
