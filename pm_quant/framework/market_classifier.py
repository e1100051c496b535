"""Market text classification and keyword grouping.

Risk concentration and multi-market arbitrage pairing both need a coarse
view of what a market is "about". Both go through the ``MarketClassifier``
protocol so the keyword heuristic can be swapped without touching the
risk or arbitrage code.
"""

from __future__ import annotations

import re
from typing import List, Protocol, Sequence, Tuple

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

STOP_WORDS = frozenset(
    {"will", "the", "a", "an", "in", "on", "at", "by", "to", "of", "for"}
)

# Checked in order; first match wins.
DEFAULT_CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("crypto", ("bitcoin", "btc", "ethereum", "crypto")),
    ("politics", ("trump", "biden", "election", "president")),
    ("stocks", ("stock", "nvidia", "tesla", "apple")),
    ("sports", ("nfl", "nba", "super bowl")),
)

OTHER_CATEGORY = "other"


class MarketClassifier(Protocol):
    def classify(self, text: str) -> str:
        ...

    def grouping_key(self, text: str) -> str:
        ...


def extract_keywords(text: str, max_keywords: int = 5) -> List[str]:
    """Lower-cased significant tokens of ``text`` in order of appearance.

    Punctuation is stripped, stop-words and tokens of two characters or
    fewer are dropped.
    """
    cleaned = _NON_ALNUM_RE.sub("", text.lower())
    tokens = [
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS
    ]
    return tokens[:max_keywords]


class KeywordMarketClassifier:
    """Substring keyword classifier (crypto/politics/stocks/sports/other)."""

    def __init__(
        self,
        categories: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_CATEGORY_KEYWORDS,
        grouping_tokens: int = 3,
    ) -> None:
        self._categories = tuple((name, tuple(words)) for name, words in categories)
        self._grouping_tokens = grouping_tokens

    def classify(self, text: str) -> str:
        lowered = (text or "").lower()
        for name, words in self._categories:
            if any(word in lowered for word in words):
                return name
        return OTHER_CATEGORY

    def grouping_key(self, text: str) -> str:
        return "-".join(extract_keywords(text or "")[: self._grouping_tokens])
