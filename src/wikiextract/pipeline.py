"""
Pipeline orchestration.

One producer thread pulls archive bytes through the decompressor and page
segmenter and puts segmented items on a bounded queue. The calling thread
consumes them in order: redirects go straight to the redirect sink, pages
are parsed (inline or on a process pool), extracted and written.

    ByteSource -> Decompressor -> PageSegmenter -> queue -> parse -> extract -> sinks
    \\____________________ producer _________________/      \\_______ consumer _______/

The queue is the backpressure point: when the consumer falls behind, the
producer blocks on put() and stops reading the network. A stop event lets
either side end the run early (Ctrl+C, fatal error, page limit); already
written output is flushed and the dictionary is written in every case.
"""

import logging
import queue
import threading
from collections import deque
from concurrent.futures import ProcessPoolExecutor
from typing import Callable, Iterable, Optional

import requests

from wikiextract import diagnostics
from wikiextract.config import Settings
from wikiextract.errors import ExtractionError, SinkWriteError
from wikiextract.input.decompress import make_decompressor
from wikiextract.input.segmenter import PageRecord, PageSegmenter, SegmentationFailure
from wikiextract.input.source import ArchiveHandle, open_source
from wikiextract.markup.parser import DocumentParser, degraded, parse_record
from wikiextract.output.dictionary import DictionaryCounters
from wikiextract.output.sinks import DIAGNOSTICS_FILE, RUN_STATE_FILE, SinkMultiplexer, write_run_state
from wikiextract.output.text import TextExtractor, extract_metadata, extract_redirect
from wikiextract.state import PipelineState, RunStatus


logger = logging.getLogger(__name__)

# Queue message kinds
ARCHIVE = "archive"
SITEINFO = "siteinfo"
ITEM = "item"
CHECKSUM = "checksum"
ERROR = "error"
END = "end"

PUT_TIMEOUT = 0.1
GET_TIMEOUT = 0.5


class Pipeline:
    """
    Extract one or more archives into the output directory.

    Args:
        settings: Run configuration
        handles: Archives to read, in order
        session: requests session for remote archives (one is created if omitted)
        progress: Called with the PipelineState after each page
    """

    def __init__(
        self,
        settings: Settings,
        handles: Iterable[ArchiveHandle],
        session: Optional[requests.Session] = None,
        progress: Optional[Callable[[PipelineState], None]] = None,
    ):
        self.settings = settings
        self.handles = list(handles)
        self.session = session
        self.progress = progress

        sizes = [handle.size for handle in self.handles]
        self.state = PipelineState(total_size=sum(sizes) if sizes and None not in sizes else None)
        self.counters = DictionaryCounters()
        self.extractor = TextExtractor(settings.text, self.counters)
        self.parser = DocumentParser()
        self.sinks: Optional[SinkMultiplexer] = None
        self.namespaces: dict[int, str] = {}

        namespaces = settings.pipeline.namespaces
        self._namespace_filter = set(namespaces) if namespaces else None
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, settings.pipeline.queue_capacity))
        self._stop = threading.Event()
        self._archive_base = 0
        self._archive_last = 0

    # -------------------------------------------------------------------------
    # Producer
    # -------------------------------------------------------------------------

    def _put(self, message: tuple) -> bool:
        """Blocking put that gives up once the stop event is set."""
        while not self._stop.is_set():
            try:
                self._queue.put(message, timeout=PUT_TIMEOUT)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self) -> None:
        try:
            for handle in self.handles:
                if not self._put((ARCHIVE, handle, 0)):
                    return
                if not self._produce_archive(handle):
                    return
            self._put((END, None, None))
        except Exception as e:
            self._put((ERROR, e, None))

    def _produce_archive(self, handle: ArchiveHandle) -> bool:
        pipeline = self.settings.pipeline
        source = open_source(handle, self.settings.source, pipeline.read_chunk_size, self.session)
        decompressor = make_decompressor(handle, pipeline)
        segmenter = PageSegmenter(pipeline.max_page_bytes)
        siteinfo_sent = False

        with source:
            for chunk in source:
                for piece in decompressor.feed(chunk):
                    segmenter.feed(piece)
                    if not siteinfo_sent and segmenter.namespaces:
                        siteinfo_sent = True
                        if not self._put((SITEINFO, dict(segmenter.namespaces), source.offset)):
                            return False
                    for item in segmenter.drain():
                        if not self._put((ITEM, item, source.offset)):
                            return False
                if self._stop.is_set():
                    return False

            decompressor.finish()
            segmenter.close()
            for item in segmenter.drain():
                if not self._put((ITEM, item, source.offset)):
                    return False
            return self._put((CHECKSUM, source.verify(), source.offset))

    # -------------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------------

    def _get(self, producer: threading.Thread) -> tuple:
        while True:
            try:
                return self._queue.get(timeout=GET_TIMEOUT)
            except queue.Empty:
                if not producer.is_alive() and self._queue.empty():
                    raise ExtractionError("producer stopped without signalling end of input")

    def _needs_parse(self, item) -> bool:
        return (
            isinstance(item, PageRecord)
            and not item.is_redirect
            and self._accepts_namespace(item)
            and item.model in (None, "wikitext")
        )

    def _accepts_namespace(self, record: PageRecord) -> bool:
        return self._namespace_filter is None or record.namespace in self._namespace_filter

    def _consume(self, producer: threading.Thread, executor: Optional[ProcessPoolExecutor]) -> None:
        workers = self.settings.pipeline.parse_workers
        max_window = max(1, workers * 4)
        window: deque = deque()  # (item, future or None, absolute offset), archive order

        while True:
            kind, payload, offset = self._get(producer)

            if kind == END:
                break
            if kind == ERROR:
                if self._drain(window, len(window)):
                    raise payload
                return
            if kind == ARCHIVE:
                self._archive_base += self._archive_last
                self._archive_last = 0
                self.state.current_archive = payload.name
                logger.info(f"Reading {payload.name}")
            elif kind == SITEINFO:
                self.namespaces = payload
            elif kind == CHECKSUM:
                self._archive_last = offset
                self.state.bytes_consumed = max(self.state.bytes_consumed, self._archive_base + offset)
                self.state.record_checksum(payload)
            elif kind == ITEM:
                self._archive_last = offset
                future = None
                if executor is not None and self._needs_parse(payload):
                    future = executor.submit(parse_record, payload)
                window.append((payload, future, self._archive_base + offset))

            ready = 0
            for _, future, _ in window:
                if future is not None and not future.done():
                    break
                ready += 1
            if not self._drain(window, max(ready, len(window) - max_window)):
                return

        self._drain(window, len(window))

    def _drain(self, window: deque, count: int) -> bool:
        """Handle `count` entries from the front of the window; False once the page limit is hit."""
        for _ in range(count):
            if not self._handle(*window.popleft()):
                window.clear()
                return False
        return True

    def _handle(self, item, future, offset: int) -> bool:
        state = self.state
        state.bytes_consumed = max(state.bytes_consumed, offset)

        if isinstance(item, SegmentationFailure):
            state.segmentation_failures += 1
            diagnostics.report(
                diagnostics.SEGMENTATION,
                item.reason,
                page_id=item.page_id,
                title=item.title,
                offset=item.offset,
            )
            return True

        record: PageRecord = item
        state.pages_processed += 1
        try:
            self._handle_record(record, future)
            self.sinks.page_done()
        except SinkWriteError as e:
            if e.offset is None:
                e.offset = offset
            e.page_id = record.page_id
            e.title = record.title
            raise

        if self.progress is not None:
            self.progress(state)

        limit = self.settings.pipeline.max_pages
        if limit is not None and state.pages_processed >= limit:
            state.limited = True
            self._stop.set()
            logger.info(f"Page limit reached ({limit:,})")
            return False
        return True

    def _handle_record(self, record: PageRecord, future) -> None:
        state = self.state
        self.sinks.write_metadata(extract_metadata(record, self.namespaces))

        if record.is_redirect:
            state.redirects += 1
            self.sinks.write_redirect(extract_redirect(record))
        elif not self._accepts_namespace(record):
            state.pages_skipped += 1
        elif record.model not in (None, "wikitext"):
            state.pages_skipped += 1
            diagnostics.report(
                diagnostics.UNSUPPORTED_MODEL,
                f"content model {record.model!r} (format {record.format!r}) is not extracted",
                page_id=record.page_id,
                title=record.title,
                model=record.model,
            )
        else:
            self._extract(record, future)

    def _parse(self, record: PageRecord, future):
        """Parsed document for a record; any parser failure degrades to raw text."""
        try:
            if future is None:
                return self.parser.parse(record)
            return future.result()
        except Exception as e:
            return degraded(record.text, record.page_id, record.title, e)

    def _extract(self, record: PageRecord, future) -> None:
        state = self.state
        document = self._parse(record, future)

        extraction = self.extractor.extract(document)
        if extraction.redirect is not None:
            # #REDIRECT body without a <redirect> element
            state.redirects += 1
            self.sinks.write_redirect(extraction.redirect)
            return

        if document.best_effort:
            state.degraded_pages += 1
            diagnostics.report(
                diagnostics.PARSE_DEGRADED,
                f"markup could not be parsed, kept as raw text: {document.error}",
                page_id=record.page_id,
                title=record.title,
            )
        if self.sinks.write_page(extraction):
            state.pages_written += 1

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> PipelineState:
        """
        Run to completion, interruption or failure.

        Returns:
            The final PipelineState; `exit_code` maps it to a process status
        """
        state = self.state
        settings = self.settings
        state.transition(RunStatus.RUNNING)
        state.stage = "extract"

        try:
            self.sinks = SinkMultiplexer.from_settings(settings)
        except SinkWriteError as e:
            logger.error(f"Fatal: {e}")
            state.fail(e.stage, e.message, e.offset, page_id=e.page_id, title=e.title)
            return state

        handler = None
        if settings.output.diagnostics:
            handler = diagnostics.attach_file_handler(settings.output.directory / DIAGNOSTICS_FILE)

        workers = settings.pipeline.parse_workers
        executor = ProcessPoolExecutor(max_workers=workers) if workers > 0 else None
        producer = threading.Thread(target=self._produce, name="wikiextract-producer", daemon=True)
        logger.info(f"Extracting {len(self.handles)} archive(s) into {settings.output.directory}")
        producer.start()

        try:
            self._consume(producer, executor)
            state.transition(RunStatus.DRAINING)
            state.stage = "drain"
            self._stop.set()
            self.sinks.close(self.counters)
            state.transition(RunStatus.COMPLETED)
        except KeyboardInterrupt:
            logger.warning("Interrupted; flushing partial output")
            self._abort()
            state.transition(RunStatus.INTERRUPTED)
        except ExtractionError as e:
            logger.error(f"Fatal: {e}")
            self._abort()
            state.fail(e.stage, e.message, e.offset, page_id=e.page_id, title=e.title)
        except Exception as e:
            logger.exception("Unexpected error")
            self._abort()
            state.fail("pipeline", f"{type(e).__name__}: {e}")
            raise
        finally:
            self._stop.set()
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
            producer.join(timeout=5)
            if handler is not None:
                diagnostics.detach_handler(handler)
            self._write_state()

        self._summarize()
        return state

    def _abort(self) -> None:
        """Stop the producer and keep whatever output exists."""
        self._stop.set()
        try:
            self.sinks.close(self.counters)
        except SinkWriteError as e:
            logger.error(f"Could not flush partial output: {e}")

    def _write_state(self) -> None:
        path = self.settings.output.directory / RUN_STATE_FILE
        try:
            write_run_state(path, self.state)
        except SinkWriteError as e:
            logger.error(str(e))

    def _summarize(self) -> None:
        state = self.state
        logger.info(
            f"{state.status.value}: {state.pages_processed:,} pages, "
            f"{state.pages_written:,} written, {state.redirects:,} redirects, "
            f"{state.degraded_pages:,} degraded, {state.segmentation_failures:,} skipped (malformed), "
            f"{state.elapsed:.1f}s"
        )
        if state.verified is False:
            logger.warning("Archive checksum mismatch: output is unverified")
        if state.failure is not None:
            logger.error(f"Failed in {state.failure.stage}: {state.failure.message}")
