"""
Word-frequency dictionary.

Tokens come from a single `str.translate` pass that maps a fixed set of
boundary characters to spaces, followed by lowercasing and whitespace
splitting. Apostrophes and hyphens survive inside words ("don't",
"well-known") but are stripped from token edges.
"""

from collections import Counter
from typing import Iterable, Iterator

from wikiextract.natural_sort import natural_key


# ASCII punctuation except ' and -
_ASCII_BOUNDARIES = "!\"#$%&()*+,./:;<=>?@[\\]^_`{|}~"

# Common Unicode punctuation: dashes, quotes, brackets, CJK and other marks
_UNICODE_BOUNDARIES = (
    "‒–—―−"  # figure dash, en/em dashes, minus
    "«»‹›“”„‟‘‚‛"  # quotes
    "¡¿·•…§¶†‡′″"
    "、。，！？：；（）"
    "「」『』【】《》"
    "\u200b"  # zero-width space
)

_TABLE = str.maketrans(
    {
        **{ch: " " for ch in _ASCII_BOUNDARIES + _UNICODE_BOUNDARIES},
        "’": "'",  # right single quote used as apostrophe
        "‐": "-",
        "‑": "-",
        "\u00ad": None,  # soft hyphen
    }
)

_EDGE = "'-"


class Tokenizer:
    """Split text into lowercase dictionary tokens."""

    def __init__(self, max_token_length: int = 64):
        self.max_token_length = max_token_length

    def tokens(self, text: str) -> Iterator[str]:
        for raw in text.translate(_TABLE).lower().split():
            token = raw.strip(_EDGE)
            if token and len(token) <= self.max_token_length:
                yield token

    def count(self, text: str) -> Counter:
        return Counter(self.tokens(text))


class DictionaryCounters:
    """
    Token counts for one run.

    Single writer: only the extractor on the consumer side adds to it.
    """

    def __init__(self):
        self.counts: Counter = Counter()

    def add(self, tokens: Iterable[str]) -> None:
        self.counts.update(tokens)

    def merge(self, counter: Counter) -> None:
        self.counts.update(counter)

    def sorted_items(self) -> list[tuple[str, int]]:
        """(token, count) pairs in natural token order."""
        return sorted(self.counts.items(), key=lambda item: natural_key(item[0]))

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __len__(self) -> int:
        return len(self.counts)
