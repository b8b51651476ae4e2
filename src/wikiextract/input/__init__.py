"""
Input side of the pipeline: archive bytes -> decompressed bytes -> page records.

Modules:
    source: ArchiveHandle and byte sources (local file, HTTP with resume)
    decompress: Incremental block decompressors (bz2, passthrough)
    segmenter: Streaming <page> segmenter producing PageRecords
"""
