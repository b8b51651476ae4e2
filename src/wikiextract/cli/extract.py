#!/usr/bin/env python3
"""
wikiextract - Wikipedia dump extractor CLI.

Streams a Wikipedia XML dump (bzip2, possibly multistream) from a mirror or
from disk and writes cleaned text, a word-frequency dictionary, a redirect
index and page metadata in a single pass.

Usage:
    wikiextract [options] remote [--language en] [--version latest]
    wikiextract [options] remote --url https://host/path/enwiki-...-pages-articles.xml.bz2
    wikiextract [options] local PATH

Example:
    wikiextract -o dump -T -D -R remote --language simple
    wikiextract --config extract.yaml --markdown -H local enwiki-latest-pages-articles.xml.bz2
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import requests

from wikiextract.config import DEFAULT_MIRROR, GeneratorOptions, Settings, load_settings
from wikiextract.errors import ConfigError, SourceError
from wikiextract.input.source import (
    ArchiveHandle,
    local_archive,
    make_session,
    remote_archive,
    resolve_remote_archives,
)
from wikiextract.pipeline import Pipeline
from wikiextract.progress_display import ProgressDisplay


logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".bz2", ".xml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wikiextract",
        description="Extract text, dictionary, redirects and metadata from Wikipedia dumps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Text and dictionary of the Simple English Wikipedia, latest dump
  wikiextract -T -D remote --language simple

  # Markdown with headings from a local archive
  wikiextract --markdown -H local enwiki-latest-pages-articles.xml.bz2

  # First 1000 pages only, no progress panel
  wikiextract --max-pages 1000 --no-progress local dump.xml.bz2
        """,
    )

    parser.add_argument("-c", "--config", type=Path, help="YAML settings file (flags override it)")
    parser.add_argument("-o", "--output", type=Path, help="Output directory (default: ./dump)")

    generators = parser.add_argument_group("generated files (default: text, dictionary, redirects)")
    generators.add_argument("-T", "--collect-text", action="store_true", help="Collect text content into a dump file")
    generators.add_argument("-D", "--build-dictionary", action="store_true", help="Collect all words into a dictionary")
    generators.add_argument("-R", "--collect-redirects", action="store_true", help="Collect redirects in a file")
    generators.add_argument("-M", "--collect-metadata", action="store_true", help="Collect page metadata")

    text = parser.add_argument_group("text dump")
    text.add_argument("--markdown", action="store_true", default=None, help="Produce Markdown instead of plain text")
    text.add_argument("-H", "--include-headings", action="store_true", default=None, help="Include headings")
    text.add_argument(
        "-P", "--include-preformatted", action="store_true", default=None, help="Include preformatted text"
    )
    text.add_argument("--no-tables", action="store_true", help="Exclude table content")
    text.add_argument(
        "--all-lines",
        action="store_true",
        help="Keep list items and table cells that do not end like a sentence",
    )
    text.add_argument("--layout", choices=["jsonl", "txt"], help="Text dump layout (default: jsonl)")

    run = parser.add_argument_group("run")
    run.add_argument("--workers", type=int, help="Parse worker processes (0 = parse inline)")
    run.add_argument("--max-pages", type=int, metavar="N", help="Stop after N pages")
    run.add_argument(
        "--namespace",
        type=int,
        action="append",
        metavar="NS",
        help="Extract text from this namespace (repeatable, default: 0)",
    )
    run.add_argument("--no-progress", action="store_true", help="Disable the live progress panel")
    run.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    inputs = parser.add_subparsers(dest="input", required=True, metavar="{remote,local}")

    remote = inputs.add_parser("remote", help="Stream from a dump mirror")
    remote.add_argument("--url", help=f"Mirror base URL or direct archive URL (default: {DEFAULT_MIRROR})")
    remote.add_argument("--language", help="Wiki language code (default: en)")
    remote.add_argument("--version", dest="dump_version", help="Dump version, e.g. 20240601 (default: latest)")
    remote.add_argument("--digest", help="Expected digest of a direct archive URL, e.g. sha1:<hex>")

    local = inputs.add_parser("local", help="Read an archive from disk")
    local.add_argument("path", type=Path, help="Path to a .xml.bz2 or .xml dump")
    local.add_argument("--digest", help="Expected digest, e.g. sha1:<hex>")

    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """Settings from the optional config file with command-line overrides applied."""
    settings = load_settings(args.config) if args.config else Settings()

    if args.output is not None:
        settings.output.directory = args.output
    if args.layout is not None:
        settings.output.text_layout = args.layout

    chosen = [
        name
        for name, flag in (
            ("text", args.collect_text),
            ("dictionary", args.build_dictionary),
            ("redirects", args.collect_redirects),
            ("metadata", args.collect_metadata),
        )
        if flag
    ]
    if chosen:
        settings.generate = GeneratorOptions.from_names(chosen)

    if args.markdown:
        settings.text.markdown = True
    if args.include_headings:
        settings.text.include_headings = True
    if args.include_preformatted:
        settings.text.include_preformatted = True
    if args.no_tables:
        settings.text.include_tables = False
    if args.all_lines:
        settings.text.only_sentences = False

    if args.workers is not None:
        if args.workers < 0:
            raise ConfigError("--workers must be >= 0")
        settings.pipeline.parse_workers = args.workers
    if args.max_pages is not None:
        settings.pipeline.max_pages = args.max_pages
    if args.namespace:
        settings.pipeline.namespaces = args.namespace

    source = settings.source
    if args.input == "remote":
        if args.url:
            source.url = args.url
        if args.language:
            source.language = args.language
        if args.dump_version:
            source.version = args.dump_version
        source.path = None
    else:
        source.path = args.path
        source.url = None
    if args.digest:
        source.expected_digest = args.digest

    return settings


def resolve_handles(settings: Settings, session: Optional[requests.Session] = None) -> list[ArchiveHandle]:
    """
    Turn source settings into archive handles.

    A local path or a URL ending in .bz2/.xml is a single archive; anything
    else is a mirror base resolved through its dumpstatus.json.
    """
    source = settings.source
    if source.path is not None:
        return [local_archive(Path(source.path), source.expected_digest)]

    url = source.url or DEFAULT_MIRROR
    if url.rstrip("/").endswith(ARCHIVE_SUFFIXES):
        return [remote_archive(url, source.expected_digest)]

    return resolve_remote_archives(
        url, source.language, source.version, session=session, timeout=source.connect_timeout
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        settings = build_settings(args)
    except (ConfigError, FileNotFoundError) as e:
        logger.error(str(e))
        return 2

    if not settings.generate.any():
        logger.info("Nothing to do. See `--help` for the list of generators.")
        return 0

    session = make_session(settings.source)
    try:
        handles = resolve_handles(settings, session)
    except (SourceError, ConfigError) as e:
        logger.error(str(e))
        return 1

    if not handles:
        logger.error("No archives to read")
        return 1

    known = [handle.size for handle in handles if handle.size is not None]
    if known:
        logger.info(f"Total download size: {sum(known) / 1024 ** 3:.3f} GiB in {len(handles)} file(s)")

    if args.no_progress:
        state = Pipeline(settings, handles, session=session).run()
    else:
        with ProgressDisplay(f"wikiextract: {handles[0].name}") as progress:
            state = Pipeline(settings, handles, session=session, progress=progress).run()

    return state.exit_code


if __name__ == "__main__":
    sys.exit(main())
