"""
Blend weights for the attribute/content strategy.

Weights are loaded from a JSON file when one is configured. When no file
is available the built-in defaults apply, so behavior is unchanged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import DEFAULT_WEIGHTS, SCORING_WEIGHTS_PATH

logger = logging.getLogger(__name__)

# Weights are shares of a blend, never negative or above 1
MIN_WEIGHT = 0.0
MAX_WEIGHT = 1.0

TERMS = ("genre", "contributor", "decade", "content")


def _clamp_weight(value: float) -> float:
    return max(MIN_WEIGHT, min(MAX_WEIGHT, value))


@dataclass(frozen=True)
class ScoringWeights:
    """Per-term weights plus the share of the baseline-rating prior."""

    genre: float = DEFAULT_WEIGHTS['genre']
    contributor: float = DEFAULT_WEIGHTS['contributor']
    decade: float = DEFAULT_WEIGHTS['decade']
    content: float = DEFAULT_WEIGHTS['content']
    prior: float = DEFAULT_WEIGHTS['prior']
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        """Clamp values to keep the blend predictable."""
        for name in (*TERMS, "prior"):
            raw = getattr(self, name)
            try:
                value = _clamp_weight(float(raw))
            except (TypeError, ValueError):
                logger.warning(f"Invalid {name} weight {raw!r}; using default {DEFAULT_WEIGHTS[name]}")
                value = DEFAULT_WEIGHTS[name]
            object.__setattr__(self, name, value)

    def term(self, name: str) -> float:
        return getattr(self, name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata,
            "genre": self.genre,
            "contributor": self.contributor,
            "decade": self.decade,
            "content": self.content,
            "prior": self.prior,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScoringWeights":
        values = {
            name: payload.get(name, DEFAULT_WEIGHTS[name])
            for name in (*TERMS, "prior")
        }
        return cls(**values, metadata=payload.get("metadata", {}))


DEFAULT_SCORING_WEIGHTS = ScoringWeights()
CONTENT_ONLY_WEIGHTS = ScoringWeights(
    genre=0.0,
    contributor=0.0,
    decade=0.0,
    content=1.0,
    metadata={"preset": "content-only"},
)


def load_scoring_weights(path: str | Path | None = None) -> ScoringWeights | None:
    """Load weights from disk; return None if missing or invalid."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    if not weight_path.exists():
        logger.debug("Scoring weights file not found at %s; using defaults", weight_path)
        return None

    try:
        return ScoringWeights.from_dict(json.loads(weight_path.read_text()))
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("Failed to load scoring weights from %s: %s", weight_path, exc)
        return None


def save_scoring_weights(weights: ScoringWeights, path: str | Path | None = None) -> Path:
    """Persist weights to disk."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    weight_path.parent.mkdir(parents=True, exist_ok=True)
    weight_path.write_text(json.dumps(weights.to_dict(), indent=2))
    return weight_path
