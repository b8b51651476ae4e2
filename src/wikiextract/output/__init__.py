"""
Output side of the pipeline.

Modules:
    text: TextExtractor, redirect and metadata extraction
    dictionary: Tokenizer and DictionaryCounters
    sinks: Per-artifact file sinks and the SinkMultiplexer
"""
