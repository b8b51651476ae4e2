"""
wikiextract: streaming Wikipedia dump extractor.

Reads MediaWiki XML dump archives from a mirror or from disk and produces a
cleaned text dump, a word-frequency dictionary, a redirect index and page
metadata in a single pass.
"""

__version__ = "0.3.0"
