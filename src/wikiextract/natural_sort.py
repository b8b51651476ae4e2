"""
Natural (numeric-aware) ordering for tokens and dump file names.

Digit runs compare by numeric value, so "item2" sorts before "item10".
Text runs compare accent- and case-insensitively first. Ties are broken
deterministically by the raw digit strings (so "07" < "7") and finally by the
raw string's code points (so "resume" < "résumé" and "Apple" < "apple").
The result is a total order, which keeps dictionary output byte-identical
across runs.
"""

import re
import unicodedata
from typing import Iterable


_DIGIT_RUN = re.compile(r"(\d+)")


def fold(text: str) -> str:
    """Accent- and case-insensitive form of a text run."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def natural_key(value: str) -> tuple:
    """
    Sort key implementing the natural collation described above.

    `_DIGIT_RUN.split` alternates text and digit runs starting with a text
    run, so keys of two values always compare like with like position by
    position.
    """
    primary = []
    secondary = []
    for i, part in enumerate(_DIGIT_RUN.split(value)):
        if i % 2:
            primary.append(int(part))
            secondary.append(part)
        else:
            primary.append(fold(part))
    return (tuple(primary), tuple(secondary), value)


def natural_sorted(values: Iterable[str]) -> list[str]:
    """Return values in natural order."""
    return sorted(values, key=natural_key)
