"""
Byte sources for dump archives.

A byte source produces the raw (still compressed) archive as a lazy sequence
of chunks. Two implementations exist:

    LocalByteSource  - fixed-size reads from a file on disk
    HttpByteSource   - one streaming GET, retried with exponential backoff
                       and resumed with a Range request when the server
                       supports it

Both hash every delivered byte when the archive has a published digest and
compare at end of stream. A mismatch is reported, never raised: output
already written stays valid, the run is just flagged unverified.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from wikiextract import diagnostics
from wikiextract.config import SourceSettings
from wikiextract.errors import (
    ConfigError,
    DumpNotReadyError,
    RetriesExhaustedError,
    SourceError,
    TransientSourceError,
)
from wikiextract.natural_sort import natural_key


logger = logging.getLogger(__name__)

DUMP_STATUS_FILE = "dumpstatus.json"

# Status codes worth retrying
RETRY_STATUS = {408, 425, 429, 500, 502, 503, 504}

TRANSIENT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    TransientSourceError,
)


# =============================================================================
# Archive handles
# =============================================================================


@dataclass(frozen=True)
class ArchiveHandle:
    """Identifies one dump archive. Immutable for the whole run."""

    location: str  # URL or filesystem path
    name: str
    size: Optional[int] = None
    digest: Optional[tuple[str, str]] = None  # (algorithm, hexdigest)

    @property
    def is_remote(self) -> bool:
        return self.location.startswith(("http://", "https://"))

    @property
    def is_compressed(self) -> bool:
        return self.name.endswith(".bz2")


def parse_digest(value: Optional[str]) -> Optional[tuple[str, str]]:
    """Parse "sha1:<hex>" (or a bare 40-char sha1) into (algorithm, hex)."""
    if not value:
        return None
    if ":" in value:
        algorithm, _, hexdigest = value.partition(":")
    elif len(value) == 40:
        algorithm, hexdigest = "sha1", value
    elif len(value) == 32:
        algorithm, hexdigest = "md5", value
    else:
        raise ConfigError(f"cannot tell digest algorithm of {value!r}; use '<algorithm>:<hex>'")

    algorithm = algorithm.lower()
    if algorithm not in hashlib.algorithms_available:
        raise ConfigError(f"unsupported digest algorithm: {algorithm}")
    return algorithm, hexdigest.lower()


def local_archive(path: Path, expected_digest: Optional[str] = None) -> ArchiveHandle:
    """Build a handle for an archive on disk."""
    if not path.is_file():
        raise SourceError(f"provided path does not point to a file: {path}")
    return ArchiveHandle(
        location=str(path),
        name=path.name,
        size=path.stat().st_size,
        digest=parse_digest(expected_digest),
    )


def remote_archive(url: str, expected_digest: Optional[str] = None) -> ArchiveHandle:
    """Build a handle for a single archive URL."""
    name = url.rstrip("/").rsplit("/", 1)[-1]
    return ArchiveHandle(location=url, name=name, digest=parse_digest(expected_digest))


def dump_base_url(base: str, language: str, version: str) -> str:
    """Directory holding one dump version, e.g. .../enwiki/latest."""
    return f"{base.rstrip('/')}/{language}wiki/{version}"


def resolve_remote_archives(
    base: str,
    language: str,
    version: str,
    session: Optional[requests.Session] = None,
    timeout: float = 30.0,
) -> list[ArchiveHandle]:
    """
    Resolve the article dump files of one dump version.

    Reads dumpstatus.json from the mirror and returns one handle per file of
    the `articlesdump` job, with published size and sha1 (md5 as fallback),
    in natural file-name order.

    Raises:
        SourceError: If the status file cannot be fetched or understood
        DumpNotReadyError: If the mirror is still generating the dump
    """
    session = session or requests.Session()
    status_url = f"{dump_base_url(base, language, version)}/{DUMP_STATUS_FILE}"

    try:
        response = session.get(status_url, timeout=timeout)
        response.raise_for_status()
        status = response.json()
    except requests.RequestException as e:
        raise SourceError(f"cannot fetch {status_url}: {e}") from e
    except ValueError as e:
        raise SourceError(f"{status_url} is not valid JSON") from e

    try:
        job = status["jobs"]["articlesdump"]
        files = job["files"]
    except (KeyError, TypeError) as e:
        raise SourceError(f"unsupported '{DUMP_STATUS_FILE}' format") from e

    if job.get("status") != "done":
        raise DumpNotReadyError(
            "mirror is currently generating the dump; specify an older version or wait"
        )

    handles = []
    for name, entry in files.items():
        url = entry.get("url") or f"/{language}wiki/{version}/{name}"
        if entry.get("sha1"):
            digest = ("sha1", entry["sha1"].lower())
        elif entry.get("md5"):
            digest = ("md5", entry["md5"].lower())
        else:
            digest = None
        handles.append(
            ArchiveHandle(
                location=urljoin(base.rstrip("/") + "/", url.lstrip("/")),
                name=name,
                size=entry.get("size"),
                digest=digest,
            )
        )

    handles.sort(key=lambda h: natural_key(h.name))
    if job.get("updated"):
        logger.info(f"Dump creation date: {job['updated']}")
    return handles


# =============================================================================
# Byte sources
# =============================================================================


class ByteSource:
    """
    Lazy sequence of compressed chunks.

    Subclasses implement `_read_raw()`; this class keeps the delivered byte
    offset and the running digest.
    """

    def __init__(self, handle: ArchiveHandle, chunk_size: int = 256 * 1024):
        self.handle = handle
        self.chunk_size = chunk_size
        self.offset = 0
        self._finished = False
        self._hash = hashlib.new(handle.digest[0]) if handle.digest else None

    def _read_raw(self) -> Optional[bytes]:
        raise NotImplementedError

    def next_chunk(self) -> Optional[bytes]:
        """Return the next chunk, or None at end of stream."""
        if self._finished:
            return None
        chunk = self._read_raw()
        if chunk is None:
            self._finished = True
            self.close()
            return None
        self.offset += len(chunk)
        if self._hash is not None:
            self._hash.update(chunk)
        return chunk

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.next_chunk()
            if chunk is None:
                return
            yield chunk

    @property
    def finished(self) -> bool:
        return self._finished

    def verify(self) -> Optional[bool]:
        """
        Compare the running digest against the published one.

        Returns:
            None if there is nothing to verify (no digest, or stream not
            fully read), otherwise whether the digests matched
        """
        if self._hash is None or not self._finished:
            return None
        actual = self._hash.hexdigest()
        expected = self.handle.digest[1]
        if actual != expected:
            diagnostics.report(
                diagnostics.CHECKSUM,
                f"{self.handle.digest[0]} mismatch for {self.handle.name}: "
                f"expected {expected}, got {actual}; output is unverified",
                archive=self.handle.name,
                expected=expected,
                actual=actual,
            )
            return False
        logger.info(f"Verified {self.handle.digest[0]} of {self.handle.name}")
        return True

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class LocalByteSource(ByteSource):
    """Read an archive from disk in fixed-size blocks."""

    def __init__(self, handle: ArchiveHandle, chunk_size: int = 256 * 1024):
        super().__init__(handle, chunk_size)
        self._file = None

    def _read_raw(self) -> Optional[bytes]:
        try:
            if self._file is None:
                self._file = open(self.handle.location, "rb")
            chunk = self._file.read(self.chunk_size)
        except OSError as e:
            raise SourceError(f"cannot read {self.handle.location}: {e}", offset=self.offset) from e
        return chunk or None

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class HttpByteSource(ByteSource):
    """
    Stream an archive over HTTP(S).

    Transient failures (connection resets, read timeouts, 5xx answers, a body
    that ends before the declared size) are retried up to `max_retries`
    times with exponential backoff. The retry resumes at the last delivered
    byte with a Range request when the server advertised byte ranges;
    otherwise the whole fetch restarts and the already-delivered prefix is
    discarded. The attempt counter resets whenever new bytes arrive.
    """

    def __init__(
        self,
        handle: ArchiveHandle,
        settings: SourceSettings,
        chunk_size: int = 256 * 1024,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(handle, chunk_size)
        self.settings = settings
        self.session = session or make_session(settings)
        self.sleep = sleep
        self.attempt = 0
        self.restarts = 0
        self.expected_size = handle.size
        self._supports_ranges = False
        self._response = None
        self._chunks = None
        self._skip = 0

    def _open(self) -> None:
        headers = {}
        if self.offset and self._supports_ranges:
            headers["Range"] = f"bytes={self.offset}-"

        response = self.session.get(
            self.handle.location,
            headers=headers,
            stream=True,
            timeout=(self.settings.connect_timeout, self.settings.read_timeout),
        )
        status = response.status_code
        if status in RETRY_STATUS:
            response.close()
            raise TransientSourceError(f"HTTP {status} from {self.handle.location}", offset=self.offset)
        if status >= 400:
            response.close()
            raise SourceError(f"HTTP {status} from {self.handle.location}", offset=self.offset)

        if "Range" in headers and status == 206:
            self._skip = 0
        else:
            # Fresh body from byte zero; drop what was already delivered
            self._skip = self.offset
            if self.offset:
                self.restarts += 1
                logger.warning(
                    f"Server ignored resume for {self.handle.name}; "
                    f"re-reading {self.offset:,} bytes"
                )

        if response.headers.get("Accept-Ranges", "").lower() == "bytes":
            self._supports_ranges = True
        if self.expected_size is None and status == 200:
            length = response.headers.get("Content-Length")
            if length and length.isdigit():
                self.expected_size = int(length)

        self._response = response
        self._chunks = response.iter_content(chunk_size=self.chunk_size)

    def _read_raw(self) -> Optional[bytes]:
        while True:
            try:
                if self._chunks is None:
                    self._open()
                for chunk in self._chunks:
                    if not chunk:
                        continue
                    if self._skip:
                        if len(chunk) <= self._skip:
                            self._skip -= len(chunk)
                            continue
                        chunk = chunk[self._skip:]
                        self._skip = 0
                    self.attempt = 0
                    return chunk

                # Body exhausted
                if self.expected_size is not None and self.offset < self.expected_size:
                    raise TransientSourceError(
                        f"stream ended at {self.offset:,} of {self.expected_size:,} bytes",
                        offset=self.offset,
                    )
                self._close_response()
                return None
            except TRANSIENT_ERRORS as e:
                self._close_response()
                self.attempt += 1
                if self.attempt > self.settings.max_retries:
                    raise RetriesExhaustedError(
                        f"giving up on {self.handle.name} after {self.settings.max_retries} retries: {e}",
                        offset=self.offset,
                    ) from e
                delay = min(
                    self.settings.backoff_max,
                    self.settings.backoff_base * (2 ** (self.attempt - 1)),
                )
                logger.warning(
                    f"Transient error reading {self.handle.name} at byte {self.offset:,} "
                    f"({e}); retry {self.attempt}/{self.settings.max_retries} in {delay:.1f}s"
                )
                self.sleep(delay)

    def _close_response(self) -> None:
        if self._response is not None:
            self._response.close()
        self._response = None
        self._chunks = None

    def close(self) -> None:
        self._close_response()


RETRY_STATUSES = (429, 500, 502, 503, 504)


def make_session(settings: SourceSettings) -> requests.Session:
    """
    Session with a User-Agent and connection-level retries.

    The adapter retries failed connects and 5xx answers for small requests
    such as dumpstatus.json. Once retries run out the last response is
    returned as is, so HttpByteSource still sees the status and applies its
    own resume logic.
    """
    session = requests.Session()
    session.headers["User-Agent"] = settings.user_agent
    retry_strategy = Retry(
        total=settings.max_retries,
        backoff_factor=settings.backoff_base,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def open_source(
    handle: ArchiveHandle,
    settings: SourceSettings,
    chunk_size: int = 256 * 1024,
    session: Optional[requests.Session] = None,
) -> ByteSource:
    """Pick the byte source for a handle."""
    if handle.is_remote:
        return HttpByteSource(handle, settings, chunk_size=chunk_size, session=session)
    return LocalByteSource(handle, chunk_size=chunk_size)
