"""
Similarity measures used by the strategies.

- token-set Jaccard similarity for crude text overlap
- Pearson correlation between two users' ratings on commonly rated items
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

import numpy as np

from .catalog import RatedItem
from .config import PEER_MIN_COMMON_ITEMS

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


def tokenize(*texts: str | None) -> set[str]:
    """Lowercased word tokens across all given texts."""
    tokens: set[str] = set()
    for text in texts:
        if text:
            tokens.update(_TOKEN_RE.findall(text.lower()))
    return tokens


def jaccard(a: set[str], b: set[str]) -> float:
    """|a ∩ b| / |a ∪ b|, or 0.0 when both sets are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def pearson_correlation(pairs: Sequence[tuple[float, float]]) -> float:
    """
    Pearson correlation coefficient over paired ratings.

    r = (Σxy − ΣxΣy/n) / sqrt((Σx² − (Σx)²/n)(Σy² − (Σy)²/n))

    Returns 0.0 for an empty input or when either side has zero variance.
    """
    n = len(pairs)
    if n == 0:
        return 0.0

    values = np.asarray(pairs, dtype=np.float64)
    x, y = values[:, 0], values[:, 1]

    sum_x = x.sum()
    sum_y = y.sum()
    numerator = (x * y).sum() - (sum_x * sum_y) / n
    variance_product = ((x * x).sum() - sum_x ** 2 / n) * ((y * y).sum() - sum_y ** 2 / n)

    # Zero variance on either side; rounding can also push this slightly negative
    if variance_product <= 0:
        return 0.0

    r = float(numerator / np.sqrt(variance_product))
    return max(-1.0, min(1.0, r))


def _ratings_by_id(ratings: Iterable[RatedItem]) -> dict[str, float]:
    return {r.item_id: r.rating for r in ratings}


def user_similarity(
    target: Iterable[RatedItem] | dict[str, float],
    peer: Iterable[RatedItem] | dict[str, float],
    min_common: int = PEER_MIN_COMMON_ITEMS,
) -> float:
    """
    Pearson similarity between two rating histories.

    Fewer than `min_common` commonly rated items is not enough signal and
    yields 0.0. Pairs are summed in sorted item-id order so the result does
    not depend on argument order.
    """
    target_map = target if isinstance(target, dict) else _ratings_by_id(target)
    peer_map = peer if isinstance(peer, dict) else _ratings_by_id(peer)

    common = sorted(target_map.keys() & peer_map.keys())
    if len(common) < min_common:
        logger.debug(f"Only {len(common)} common items (need {min_common}); similarity = 0")
        return 0.0

    return pearson_correlation([(target_map[i], peer_map[i]) for i in common])
