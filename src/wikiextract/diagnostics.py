"""
Structured per-page diagnostics.

Non-fatal problems (skipped pages, degraded parses, unsupported content
models, checksum mismatches) are reported on the `wikiextract.diagnostics`
logger with the page id and title attached as record attributes, so that a
handler can route them somewhere machine-readable. DiagnosticsFileHandler
writes them as JSON lines next to the other artifacts.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import orjson


DIAGNOSTICS_LOGGER = "wikiextract.diagnostics"

# Diagnostic kinds
SEGMENTATION = "segmentation"
PARSE_DEGRADED = "parse_degraded"
UNSUPPORTED_MODEL = "unsupported_model"
CHECKSUM = "checksum"

logger = logging.getLogger(DIAGNOSTICS_LOGGER)

_LEVELS = {
    SEGMENTATION: logging.WARNING,
    PARSE_DEGRADED: logging.WARNING,
    UNSUPPORTED_MODEL: logging.WARNING,
    CHECKSUM: logging.ERROR,
}


def report(
    kind: str,
    message: str,
    *,
    page_id: Optional[int] = None,
    title: Optional[str] = None,
    **fields: Any,
) -> None:
    """
    Emit one diagnostic.

    Args:
        kind: Diagnostic kind (SEGMENTATION, PARSE_DEGRADED, ...)
        message: Human-readable description
        page_id: Page id the diagnostic is about, if known
        title: Page title the diagnostic is about, if known
        **fields: Extra structured fields (offsets, reasons)
    """
    label = f"({page_id if page_id is not None else '?'}: {title or ''})"
    logger.log(
        _LEVELS.get(kind, logging.WARNING),
        f"{kind} {label} {message}",
        extra={
            "diagnostic": kind,
            "page_id": page_id,
            "title": title,
            "fields": fields,
            "detail": message,
        },
    )


class DiagnosticsFileHandler(logging.Handler):
    """Write diagnostic records as JSON lines."""

    def __init__(self, path: Path):
        super().__init__(level=logging.DEBUG)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._file = open(path, "wb")

    def emit(self, record: logging.LogRecord) -> None:
        kind = getattr(record, "diagnostic", None)
        if kind is None:
            return
        entry = {
            "kind": kind,
            "page_id": getattr(record, "page_id", None),
            "title": getattr(record, "title", None),
            "message": getattr(record, "detail", record.getMessage()),
        }
        entry.update(getattr(record, "fields", {}) or {})
        try:
            self._file.write(orjson.dumps(entry) + b"\n")
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        if self._file and not self._file.closed:
            self._file.flush()

    def close(self) -> None:
        try:
            if self._file and not self._file.closed:
                self._file.close()
        finally:
            super().close()


def attach_file_handler(path: Path) -> DiagnosticsFileHandler:
    """Attach a JSONL handler to the diagnostics logger and return it."""
    handler = DiagnosticsFileHandler(path)
    logging.getLogger(DIAGNOSTICS_LOGGER).addHandler(handler)
    return handler


def detach_handler(handler: logging.Handler) -> None:
    logging.getLogger(DIAGNOSTICS_LOGGER).removeHandler(handler)
    handler.close()
