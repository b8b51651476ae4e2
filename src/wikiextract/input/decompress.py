"""
Incremental decompression of archive chunks.

Decompressors are fed compressed chunks in order and yield decompressed
pieces of at most `output_chunk_size` bytes, so a highly compressible block
never materializes as one huge buffer. State persists across feed() calls;
finish() tells the decompressor that no more input will arrive.
"""

import bz2
import logging
from typing import Iterator

from wikiextract.config import PipelineSettings
from wikiextract.errors import ArchiveCorruptionError


logger = logging.getLogger(__name__)


class Bz2BlockDecompressor:
    """
    Streaming bzip2 decompressor.

    Multistream archives (one bzip2 stream per batch of pages, as published
    on the dump mirrors) are handled by starting a fresh decompressor on the
    previous stream's unused data.
    """

    def __init__(self, output_chunk_size: int = 256 * 1024):
        self.output_chunk_size = output_chunk_size
        self.compressed_offset = 0  # compressed bytes fed so far
        self.total_decompressed = 0
        self.streams = 1
        self._decompressor = bz2.BZ2Decompressor()

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """
        Decompress one chunk.

        Raises:
            ArchiveCorruptionError: If the chunk does not decode; carries the
                compressed offset at which the chunk started
        """
        chunk_offset = self.compressed_offset
        self.compressed_offset += len(chunk)
        data = chunk

        while True:
            decompressor = self._decompressor
            if decompressor.eof:
                data = decompressor.unused_data + data
                if not data:
                    return
                self._decompressor = bz2.BZ2Decompressor()
                self.streams += 1
                continue

            if not data and decompressor.needs_input:
                return

            try:
                piece = decompressor.decompress(data, self.output_chunk_size)
            except (OSError, EOFError, ValueError) as e:
                raise ArchiveCorruptionError(
                    f"corrupt bzip2 data in stream {self.streams}: {e}",
                    offset=chunk_offset,
                ) from e
            data = b""

            if piece:
                self.total_decompressed += len(piece)
                yield piece

    def finish(self) -> None:
        """
        Raises:
            ArchiveCorruptionError: If input ended in the middle of a stream
        """
        if not self._decompressor.eof:
            raise ArchiveCorruptionError(
                "archive ended before the end-of-stream marker",
                offset=self.compressed_offset,
            )
        logger.debug(
            f"Decompressed {self.compressed_offset:,} -> {self.total_decompressed:,} bytes "
            f"in {self.streams} stream(s)"
        )


class PassthroughDecompressor:
    """Same contract for uncompressed XML input."""

    def __init__(self, output_chunk_size: int = 256 * 1024):
        self.output_chunk_size = output_chunk_size
        self.compressed_offset = 0
        self.total_decompressed = 0

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        self.compressed_offset += len(chunk)
        self.total_decompressed += len(chunk)
        size = self.output_chunk_size
        for start in range(0, len(chunk), size):
            yield chunk[start:start + size]

    def finish(self) -> None:
        pass


def make_decompressor(handle, settings: PipelineSettings):
    """Pick a decompressor from the archive name."""
    if handle.is_compressed:
        return Bz2BlockDecompressor(settings.decompressed_chunk_size)
    return PassthroughDecompressor(settings.decompressed_chunk_size)
