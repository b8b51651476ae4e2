"""
End-to-end tests for the extraction pipeline.

The sample archive (see conftest.py) holds six pages in two bzip2 streams:
an article, a redirect, a talk page, a page with broken markup, a JSON page
and a short article.
"""
import bz2
import hashlib
import threading
import time

import orjson
import pytest

from wikiextract.config import GeneratorOptions, Settings
from wikiextract.errors import SinkWriteError
from wikiextract.input.source import local_archive, remote_archive
from wikiextract.natural_sort import natural_sorted
from wikiextract.output.sinks import RedirectSink
from wikiextract.pipeline import Pipeline
from wikiextract.state import RunStatus


def make_settings(output, **pipeline):
    settings = Settings()
    settings.output.directory = output
    settings.generate = GeneratorOptions(text=True, dictionary=True, redirects=True, metadata=True)
    settings.pipeline.read_chunk_size = 512
    settings.pipeline.decompressed_chunk_size = 1024
    for key, value in pipeline.items():
        setattr(settings.pipeline, key, value)
    return settings


def read_jsonl(path):
    return [orjson.loads(line) for line in path.read_bytes().splitlines()]


class TestCompleteRun:
    """Test a full run over the sample archive."""

    @pytest.fixture
    def run(self, temp_dir, sample_archive):
        output = temp_dir / "out"
        state = Pipeline(make_settings(output), [local_archive(sample_archive)]).run()
        return state, output

    def test_outcome(self, run):
        state, _ = run
        assert state.status is RunStatus.COMPLETED
        assert state.exit_code == 0
        assert state.pages_processed == 6
        assert state.pages_written == 3
        assert state.pages_skipped == 2
        assert state.redirects == 1
        assert state.degraded_pages == 1
        assert state.segmentation_failures == 0
        assert state.verified is None
        assert state.percent == 1.0

    def test_text_in_archive_order(self, run):
        _, output = run
        pages = read_jsonl(output / "wiki_text.jsonl")
        assert [page["id"] for page in pages] == [1, 4, 6]
        assert pages[0]["text"] == (
            "Alpha is the first letter of the Greek alphabet.\n\n"
            "Alpha was derived from the Phoenician letter aleph."
        )
        assert "The third letter of the alphabet." in pages[1]["text"]
        assert pages[2] == {"id": 6, "title": "Delta", "text": "Delta is the fourth letter."}

    def test_redirects(self, run):
        _, output = run
        assert (output / "redirects.tsv").read_text(encoding="utf-8") == "Beta\tAlpha\n"

    def test_metadata_for_every_page(self, run):
        _, output = run
        metadata = read_jsonl(output / "metadata.jsonl")
        assert [m["id"] for m in metadata] == [1, 2, 3, 4, 5, 6]
        assert metadata[1]["redirect_target"] == "Alpha"
        assert metadata[2]["namespace_name"] == "Talk"
        assert metadata[4]["model"] == "json"

    def test_dictionary(self, run):
        _, output = run
        rows = [line.split("\t") for line in (output / "dictionary.tsv").read_text(encoding="utf-8").splitlines()]
        tokens = [token for token, _ in rows]
        counts = {token: int(count) for token, count in rows}
        assert tokens == natural_sorted(tokens)
        assert counts["alpha"] == 2
        assert counts["delta"] == 1
        assert "talk" not in counts

    def test_diagnostics(self, run):
        """The degraded page and the JSON page are each reported once."""
        _, output = run
        entries = read_jsonl(output / "diagnostics.jsonl")
        assert [(e["kind"], e["page_id"]) for e in entries] == [
            ("parse_degraded", 4),
            ("unsupported_model", 5),
        ]

    def test_run_state_file(self, run):
        _, output = run
        data = orjson.loads((output / "run_state.json").read_bytes())
        assert data["status"] == "completed"
        assert data["pages_processed"] == 6


class TestRunVariants:
    def test_deterministic_output(self, temp_dir, sample_archive):
        """Two runs over the same archive produce identical artifacts."""
        outputs = []
        for name in ("first", "second"):
            output = temp_dir / name
            Pipeline(make_settings(output), [local_archive(sample_archive)]).run()
            outputs.append(output)
        for artifact in ("wiki_text.jsonl", "redirects.tsv", "metadata.jsonl", "dictionary.tsv"):
            assert (outputs[0] / artifact).read_bytes() == (outputs[1] / artifact).read_bytes()

    def test_parse_workers_keep_order(self, temp_dir, sample_archive):
        """Parsing on a process pool yields the same output as parsing inline."""
        inline, pooled = temp_dir / "inline", temp_dir / "pooled"
        Pipeline(make_settings(inline), [local_archive(sample_archive)]).run()
        state = Pipeline(make_settings(pooled, parse_workers=2), [local_archive(sample_archive)]).run()
        assert state.status is RunStatus.COMPLETED
        for artifact in ("wiki_text.jsonl", "redirects.tsv", "dictionary.tsv"):
            assert (inline / artifact).read_bytes() == (pooled / artifact).read_bytes()

    def test_uncompressed_input(self, temp_dir, sample_dump):
        path = temp_dir / "dump.xml"
        path.write_bytes(sample_dump)
        state = Pipeline(make_settings(temp_dir / "out"), [local_archive(path)]).run()
        assert state.status is RunStatus.COMPLETED
        assert state.pages_written == 3

    def test_namespace_filter(self, temp_dir, sample_archive):
        output = temp_dir / "out"
        state = Pipeline(make_settings(output, namespaces=[0, 1]), [local_archive(sample_archive)]).run()
        ids = [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")]
        assert ids == [1, 3, 4, 6]
        assert state.pages_skipped == 1

    def test_page_limit(self, temp_dir, sample_archive):
        """A page limit ends the run early but completely."""
        output = temp_dir / "out"
        state = Pipeline(make_settings(output, max_pages=2), [local_archive(sample_archive)]).run()
        assert state.status is RunStatus.COMPLETED
        assert state.limited
        assert state.pages_processed == 2
        assert [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")] == [1]
        assert (output / "redirects.tsv").read_text(encoding="utf-8") == "Beta\tAlpha\n"
        assert (output / "dictionary.tsv").read_text(encoding="utf-8")

    def test_interrupt_keeps_partial_output(self, temp_dir, sample_archive):
        output = temp_dir / "out"

        def progress(state):
            if state.pages_processed == 1:
                raise KeyboardInterrupt

        state = Pipeline(make_settings(output), [local_archive(sample_archive)], progress=progress).run()
        assert state.status is RunStatus.INTERRUPTED
        assert state.exit_code == 130
        assert [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")] == [1]
        assert "alpha\t2" in (output / "dictionary.tsv").read_text(encoding="utf-8")
        assert orjson.loads((output / "run_state.json").read_bytes())["status"] == "interrupted"

    def test_sink_failure_names_the_page(self, temp_dir, sample_archive, monkeypatch):
        """A failed write stops the run and records which page it was writing."""
        def write_redirect(self, edge):
            raise SinkWriteError("disk full")

        monkeypatch.setattr(RedirectSink, "write_redirect", write_redirect)
        output = temp_dir / "out"
        state = Pipeline(make_settings(output), [local_archive(sample_archive)]).run()

        assert state.status is RunStatus.FAILED
        assert state.exit_code == 1
        failure = state.failure
        assert failure.stage == "sink"
        assert failure.message == "disk full"
        assert (failure.page_id, failure.title) == (2, "Beta")
        assert 0 < failure.offset <= sample_archive.stat().st_size

        assert [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")] == [1]
        assert "alpha\t2" in (output / "dictionary.tsv").read_text(encoding="utf-8")
        data = orjson.loads((output / "run_state.json").read_bytes())
        assert data["status"] == "failed"
        assert data["failure"]["stage"] == "sink"
        assert data["failure"]["page_id"] == 2
        assert data["failure"]["title"] == "Beta"

    def test_inline_parser_crash_degrades_page(self, temp_dir, sample_archive):
        """An unexpected parser exception degrades the page instead of ending the run."""
        output = temp_dir / "out"
        pipeline = Pipeline(make_settings(output), [local_archive(sample_archive)])
        parse = pipeline.parser.parse

        def crashing_parse(record):
            if record.page_id == 6:
                raise RuntimeError("grammar blew up")
            return parse(record)

        pipeline.parser.parse = crashing_parse
        state = pipeline.run()

        assert state.status is RunStatus.COMPLETED
        assert state.degraded_pages == 2
        assert [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")] == [1, 4, 6]
        entries = read_jsonl(output / "diagnostics.jsonl")
        assert ("parse_degraded", 6) in [(e["kind"], e["page_id"]) for e in entries]

    def test_queue_bounds_the_producer(self, temp_dir, sample_archive):
        """A stalled consumer leaves the producer blocked on a full queue."""
        capacity = 2
        sizes = []
        stalled = {}

        def progress(state):
            queue = pipeline._queue
            if state.pages_processed == 1:
                deadline = time.monotonic() + 5
                while queue.qsize() < capacity and time.monotonic() < deadline:
                    time.sleep(0.01)
                time.sleep(0.2)
                producers = [t for t in threading.enumerate() if t.name == "wikiextract-producer"]
                stalled["size"] = queue.qsize()
                stalled["producer_alive"] = any(t.is_alive() for t in producers)
            sizes.append(queue.qsize())

        pipeline = Pipeline(
            make_settings(temp_dir / "out", queue_capacity=capacity),
            [local_archive(sample_archive)],
            progress=progress,
        )
        state = pipeline.run()

        assert state.status is RunStatus.COMPLETED
        assert state.pages_processed == 6
        assert stalled == {"size": capacity, "producer_alive": True}
        assert max(sizes) <= capacity

    def test_malformed_page_is_skipped(self, temp_dir, make_page, make_dump):
        broken = make_page("Broken", 2, "body").replace("    </revision>\n", "")
        path = temp_dir / "dump.xml.bz2"
        path.write_bytes(bz2.compress(make_dump([
            make_page("One", 1, "First page."),
            broken,
            make_page("Three", 3, "Third page."),
        ])))
        output = temp_dir / "out"
        state = Pipeline(make_settings(output), [local_archive(path)]).run()

        assert state.status is RunStatus.COMPLETED
        assert state.segmentation_failures == 1
        assert [page["id"] for page in read_jsonl(output / "wiki_text.jsonl")] == [1, 3]
        [entry] = read_jsonl(output / "diagnostics.jsonl")
        assert entry["kind"] == "segmentation"
        assert entry["page_id"] == 2

    def test_corrupt_archive_fails(self, temp_dir, sample_dump):
        path = temp_dir / "dump.xml.bz2"
        path.write_bytes(bz2.compress(sample_dump)[:-20])
        output = temp_dir / "out"
        state = Pipeline(make_settings(output), [local_archive(path)]).run()

        assert state.status is RunStatus.FAILED
        assert state.exit_code == 1
        assert state.failure.stage == "decompress"
        data = orjson.loads((output / "run_state.json").read_bytes())
        assert data["status"] == "failed"
        assert data["failure"]["stage"] == "decompress"
        assert (output / "dictionary.tsv").exists()

    def test_not_a_dump_fails(self, temp_dir):
        path = temp_dir / "page.xml"
        path.write_bytes(b"<html><body>Not a dump</body></html>")
        state = Pipeline(make_settings(temp_dir / "out"), [local_archive(path)]).run()
        assert state.status is RunStatus.FAILED
        assert state.failure.stage == "segment"


class TestRemoteRun:
    """Test a run over a streamed archive."""

    def archive(self, sample_dump):
        return bz2.compress(sample_dump)

    def test_verified_download(self, temp_dir, sample_dump, fake_session, fake_response):
        body = self.archive(sample_dump)
        session = fake_session([fake_response(200, body, headers={"Content-Length": str(len(body))})])
        handle = remote_archive(
            "https://dumps.example.org/testwiki/latest/testwiki-latest-pages-articles.xml.bz2",
            "sha1:" + hashlib.sha1(body).hexdigest(),
        )
        state = Pipeline(make_settings(temp_dir / "out"), [handle], session=session).run()
        assert state.status is RunStatus.COMPLETED
        assert state.verified is True
        assert state.pages_written == 3

    def test_checksum_mismatch_is_not_fatal(self, temp_dir, sample_dump, fake_session, fake_response):
        body = self.archive(sample_dump)
        session = fake_session([fake_response(200, body)])
        handle = remote_archive("https://dumps.example.org/test.xml.bz2", "sha1:" + "0" * 40)
        output = temp_dir / "out"
        state = Pipeline(make_settings(output), [handle], session=session).run()

        assert state.status is RunStatus.COMPLETED
        assert state.verified is False
        assert len(read_jsonl(output / "wiki_text.jsonl")) == 3
        kinds = [entry["kind"] for entry in read_jsonl(output / "diagnostics.jsonl")]
        assert "checksum" in kinds
