"""
Wiki markup parsing.

Modules:
    document: Block and inline node types of a ParsedDocument
    parser: DocumentParser (mwparserfromhell grammar, line-based block assembly)
"""
