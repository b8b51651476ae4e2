"""Pytest configuration and shared fixtures."""
import bz2
import tempfile
from html import escape
from pathlib import Path

import pytest
import requests


EXPORT_HEADER = (
    '<mediawiki xmlns="http://www.mediawiki.org/xml/export-0.11/" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    'xsi:schemaLocation="http://www.mediawiki.org/xml/export-0.11/ '
    'http://www.mediawiki.org/xml/export-0.11.xsd" version="0.11" xml:lang="en">\n'
)

SITEINFO = """  <siteinfo>
    <sitename>Wikipedia</sitename>
    <dbname>testwiki</dbname>
    <base>https://test.wikipedia.org/wiki/Main_Page</base>
    <namespaces>
      <namespace key="0" case="first-letter" />
      <namespace key="1" case="first-letter">Talk</namespace>
      <namespace key="828" case="first-letter">Module</namespace>
    </namespaces>
  </siteinfo>
"""

ALPHA_TEXT = """'''Alpha''' is the first letter of the [[Greek alphabet]].<ref>{{cite book|title=Letters}}</ref>

== History ==
Alpha was derived from the Phoenician letter [[aleph]].

== See also ==
* [[Beta]]

[[Category:Greek letters]]"""

GAMMA_TEXT = """Gamma is {{Infobox letter
| name = Gamma
The third letter of the alphabet."""

DELTA_TEXT = "Delta is the fourth letter."


def page_xml(
    title,
    page_id,
    text="",
    ns=0,
    redirect=None,
    model="wikitext",
    fmt="text/x-wiki",
    revision_id=None,
    timestamp="2024-01-01T00:00:00Z",
):
    """One <page> element as it appears in an export, text escaped."""
    redirect_tag = f'    <redirect title="{escape(redirect)}" />\n' if redirect else ""
    return (
        "  <page>\n"
        f"    <title>{escape(title, quote=False)}</title>\n"
        f"    <ns>{ns}</ns>\n"
        f"    <id>{page_id}</id>\n"
        f"{redirect_tag}"
        "    <revision>\n"
        f"      <id>{revision_id or page_id * 10}</id>\n"
        f"      <timestamp>{timestamp}</timestamp>\n"
        "      <contributor>\n"
        "        <username>Editor</username>\n"
        "        <id>99</id>\n"
        "      </contributor>\n"
        f"      <model>{model}</model>\n"
        f"      <format>{fmt}</format>\n"
        f'      <text bytes="{len(text.encode("utf-8"))}" xml:space="preserve">{escape(text, quote=False)}</text>\n'
        "      <sha1>0123456789abcdef</sha1>\n"
        "    </revision>\n"
        "  </page>\n"
    )


def dump_xml(pages, siteinfo=True):
    """A complete export document from page_xml() strings."""
    body = EXPORT_HEADER + (SITEINFO if siteinfo else "") + "".join(pages) + "</mediawiki>\n"
    return body.encode("utf-8")


def sample_pages():
    return [
        page_xml("Alpha", 1, ALPHA_TEXT),
        page_xml("Beta", 2, "#REDIRECT [[Alpha]]", redirect="Alpha"),
        page_xml("Talk:Alpha", 3, "Talk text here.", ns=1),
        page_xml("Gamma", 4, GAMMA_TEXT),
        page_xml("Data.json", 5, "{}", model="json", fmt="application/json"),
        page_xml("Delta", 6, DELTA_TEXT),
    ]


class FakeResponse:
    """Streaming response stand-in; can drop the connection after `fail_after` bytes."""

    def __init__(self, status_code=200, body=b"", headers=None, fail_after=None, json_data=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.fail_after = fail_after
        self.json_data = json_data
        self.closed = False

    def iter_content(self, chunk_size=1):
        limit = len(self.body) if self.fail_after is None else self.fail_after
        for start in range(0, limit, chunk_size):
            yield self.body[start:min(start + chunk_size, limit)]
        if self.fail_after is not None:
            raise requests.ConnectionError("connection reset by peer")

    def json(self):
        if self.json_data is None:
            raise ValueError("no JSON body")
        return self.json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def close(self):
        self.closed = True


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) in order."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self.headers = {}

    def get(self, url, headers=None, stream=False, timeout=None):
        self.requests.append({"url": url, "headers": dict(headers or {}), "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_page():
    """Factory for <page> XML strings."""
    return page_xml


@pytest.fixture
def make_dump():
    """Factory for complete export documents (bytes)."""
    return dump_xml


@pytest.fixture
def sample_dump():
    """Six-page export: article, redirect, talk page, broken markup, JSON page, article."""
    return dump_xml(sample_pages())


@pytest.fixture
def sample_archive(temp_dir, sample_dump):
    """The sample export as a multistream bz2 archive on disk."""
    path = temp_dir / "testwiki-20240101-pages-articles-multistream.xml.bz2"
    middle = sample_dump.index(b"  <page>\n    <title>Gamma")
    path.write_bytes(bz2.compress(sample_dump[:middle]) + bz2.compress(sample_dump[middle:]))
    return path


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession
