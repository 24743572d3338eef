"""Term vocabulary shared by the keyword and vector retrieval signals."""

from __future__ import annotations

import re
from collections import Counter

_TERM_SPLIT = re.compile(r"[\s\-_.,;:!?()\[\]{}\"'`/\\]+")

STOPWORDS = frozenset(
    """
    a an the is are was were be been being have has had do does did will would
    shall should may might can could must and but or nor not so yet both either
    neither each every all any few more most other some such no only own same
    than too very just because as until while of at by for with about against
    between through during before after above below to from up down in out on
    off over under again further then once here there when where why how what
    which who whom this that these those i me my myself we our ours ourselves
    you your yours yourself yourselves he him his himself she her hers herself
    it its itself they them their theirs themselves
    """.split()
)


def _terms(text: str) -> list[str]:
    return [
        token
        for token in _TERM_SPLIT.split(text.lower())
        if len(token) > 1 and token not in STOPWORDS
    ]


def tokenize_query(text: str) -> list[str]:
    """Lowercased unique query terms with stop words and 1-char tokens removed."""
    return list(dict.fromkeys(_terms(text)))


def term_counts(text: str) -> Counter[str]:
    """Occurrences of every non-stop-word term in a chunk."""
    return Counter(_terms(text))
