"""
Tests for the wikiextract command line.
"""
from pathlib import Path

import orjson
import pytest

from wikiextract.cli.extract import build_parser, build_settings, main, resolve_handles
from wikiextract.errors import ConfigError


def settings_for(*argv):
    return build_settings(build_parser().parse_args(list(argv)))


class TestBuildSettings:
    """Test flag handling."""

    def test_local(self):
        settings = settings_for("-o", "out", "local", "dump.xml.bz2", "--digest", "sha1:" + "a" * 40)
        assert settings.source.path == Path("dump.xml.bz2")
        assert settings.source.url is None
        assert settings.source.expected_digest == "sha1:" + "a" * 40
        assert settings.output.directory == Path("out")

    def test_remote(self):
        settings = settings_for("remote", "--language", "simple", "--version", "20240601")
        assert settings.source.language == "simple"
        assert settings.source.version == "20240601"
        assert settings.source.path is None

    def test_generators(self):
        """Any generator flag replaces the default selection."""
        settings = settings_for("-T", "-M", "local", "dump.xml.bz2")
        assert settings.generate.text and settings.generate.metadata
        assert not settings.generate.dictionary and not settings.generate.redirects

    def test_default_generators(self):
        settings = settings_for("local", "dump.xml.bz2")
        assert settings.generate.text and settings.generate.dictionary and settings.generate.redirects

    def test_text_options(self):
        settings = settings_for("--markdown", "-H", "-P", "--no-tables", "--all-lines", "--layout", "txt",
                                "local", "dump.xml.bz2")
        text = settings.text
        assert text.markdown and text.include_headings and text.include_preformatted
        assert not text.include_tables
        assert not text.only_sentences
        assert settings.output.text_layout == "txt"

    def test_run_options(self):
        settings = settings_for("--workers", "3", "--max-pages", "50", "--namespace", "0", "--namespace", "14",
                                "local", "dump.xml.bz2")
        assert settings.pipeline.parse_workers == 3
        assert settings.pipeline.max_pages == 50
        assert settings.pipeline.namespaces == [0, 14]

    def test_negative_workers(self):
        with pytest.raises(ConfigError):
            settings_for("--workers", "-1", "local", "dump.xml.bz2")

    def test_config_file_with_overrides(self, temp_dir):
        config = temp_dir / "extract.yaml"
        config.write_text("text:\n  markdown: true\npipeline:\n  max_pages: 5\n", encoding="utf-8")
        settings = settings_for("-c", str(config), "--max-pages", "7", "local", "dump.xml.bz2")
        assert settings.text.markdown
        assert settings.pipeline.max_pages == 7

    def test_input_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestResolveHandles:
    def test_local_path(self, sample_archive):
        [handle] = resolve_handles(settings_for("local", str(sample_archive)))
        assert handle.location == str(sample_archive)
        assert handle.size == sample_archive.stat().st_size

    def test_direct_url(self):
        settings = settings_for("remote", "--url", "https://mirror.example.org/enwiki-latest-pages-articles.xml.bz2")
        [handle] = resolve_handles(settings)
        assert handle.is_remote
        assert handle.name == "enwiki-latest-pages-articles.xml.bz2"

    def test_mirror_status(self, fake_session, fake_response):
        status = {
            "jobs": {
                "articlesdump": {
                    "status": "done",
                    "files": {"simplewiki-latest-pages-articles.xml.bz2": {"size": 10, "sha1": "a" * 40}},
                }
            }
        }
        session = fake_session([fake_response(200, json_data=status)])
        settings = settings_for("remote", "--url", "https://mirror.example.org", "--language", "simple")
        [handle] = resolve_handles(settings, session)
        assert session.requests[0]["url"] == "https://mirror.example.org/simplewiki/latest/dumpstatus.json"
        assert handle.location == "https://mirror.example.org/simplewiki/latest/simplewiki-latest-pages-articles.xml.bz2"


class TestMain:
    """Test whole command runs."""

    def test_local_run(self, temp_dir, sample_archive):
        output = temp_dir / "out"
        assert main(["-o", str(output), "--no-progress", "local", str(sample_archive)]) == 0
        pages = [orjson.loads(line) for line in (output / "wiki_text.jsonl").read_bytes().splitlines()]
        assert [page["id"] for page in pages] == [1, 4, 6]
        assert (output / "dictionary.tsv").exists()

    def test_missing_archive(self, temp_dir):
        assert main(["-o", str(temp_dir / "out"), "--no-progress", "local", str(temp_dir / "missing.bz2")]) == 1

    def test_missing_config(self, temp_dir):
        assert main(["-c", str(temp_dir / "missing.yaml"), "local", "dump.xml.bz2"]) == 2

    def test_failed_run_exit_code(self, temp_dir):
        path = temp_dir / "page.xml"
        path.write_bytes(b"<html></html>")
        assert main(["-o", str(temp_dir / "out"), "--no-progress", "local", str(path)]) == 1
