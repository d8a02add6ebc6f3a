# src/core/similarity.py — v3
"""Text closeness by longest-common-subsequence ratio.

score(a, b) = LCS(a, b) / max(len(a), len(b)), computed with the classic
O(n*m) dynamic-programming table held in a numpy array. Comparison is
order, case and whitespace sensitive; no tokenization, no embeddings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Iterable, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _codes(text: str) -> np.ndarray:
    return np.fromiter((ord(ch) for ch in text), dtype=np.int64, count=len(text))


def lcs_length(a: str, b: str) -> int:
    """Length of the longest common subsequence of two strings.

    Fills the (n+1) x (m+1) table one anti-diagonal at a time: every cell
    on diagonal ``d`` depends only on diagonals ``d-1`` and ``d-2``, so each
    diagonal is a single vectorized numpy step.
    """
    n, m = len(a), len(b)
    if n == 0 or m == 0:
        return 0

    ca, cb = _codes(a), _codes(b)
    table = np.zeros((n + 1, m + 1), dtype=np.int32)

    for d in range(2, n + m + 1):
        i = np.arange(max(1, d - m), min(n, d - 1) + 1)
        j = d - i
        equal = ca[i - 1] == cb[j - 1]
        table[i, j] = np.where(
            equal,
            table[i - 1, j - 1] + 1,
            np.maximum(table[i - 1, j], table[i, j - 1]),
        )
    return int(table[n, m])


def score(a: str | None, b: str | None) -> float:
    """Similarity in [0, 1].

    Missing or empty input on either side scores 0.0, even when both sides
    are empty. Identical non-empty strings score 1.0.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return lcs_length(a, b) / max(len(a), len(b))


@dataclass
class RankedCandidate(Generic[T]):
    """A candidate that passed the threshold, with its score."""

    item: T
    score: float
    last_hit_time: datetime | None = None
    hit_count: int = 0


def rank(
    query: str,
    candidates: Iterable[tuple[str, T, datetime | None, int]],
    threshold: float,
) -> list[RankedCandidate[T]]:
    """Score candidates against ``query`` and keep those above ``threshold``.

    Args:
        query: Input text to match.
        candidates: ``(text, item, last_hit_time, hit_count)`` tuples.
        threshold: Minimum score (inclusive).

    Returns:
        Matches ordered by score desc, then most recent hit (never-hit
        last), then hit count desc.
    """
    matches: list[RankedCandidate[T]] = []
    scanned = 0
    for text, item, last_hit, hits in candidates:
        scanned += 1
        s = score(query, text)
        if s >= threshold:
            matches.append(RankedCandidate(item, s, last_hit, hits))

    def _sort_key(m: RankedCandidate[T]) -> tuple[float, int, float, int]:
        if m.last_hit_time is None:
            return (-m.score, 1, 0.0, -m.hit_count)
        return (-m.score, 0, -m.last_hit_time.timestamp(), -m.hit_count)

    matches.sort(key=_sort_key)
    logger.debug(
        "Similarity rank: %d/%d candidates >= %.2f", len(matches), scanned, threshold
    )
    return matches
