"""
Command-line interface entry points for wikiextract.

Entry points:
- wikiextract: Extract text, dictionary, redirects and metadata from a dump
"""
