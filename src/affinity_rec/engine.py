"""
Recommendation engine.

Owns strategy selection, input validation and all post-processing:
sorting, truncation, ranking, attribute views and diversification.

The engine is immutable once built. Swapping strategies returns a new
engine (`with_strategy`), or a strategy can be passed per call, so one
instance can be shared across concurrent callers.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Sequence

from .cache import ProfileCache
from .catalog import CatalogItem, RatedItem, index_by_id
from .errors import RecommendationTimeout, StrategyFailure, ValidationError
from .profile import AffinityProfile, build_profile
from .recommender import (
    AttributeContentStrategy,
    PeerCorrelationStrategy,
    Recommendation,
    RecommendationStrategy,
)
from .utils import Deadline, clamp
from .config import (
    MIN_RATING,
    MAX_RATING,
    DEFAULT_LIMIT,
    DEFAULT_VIEW_LIMIT,
    DIVERSITY_CANDIDATE_MULTIPLIER,
    MAX_PER_GENRE,
    MAX_PER_CONTRIBUTOR,
    UNKNOWN_CONTRIBUTOR,
    PEER_DEADLINE_SECONDS,
)

logger = logging.getLogger(__name__)


@contextmanager
def _stage(name: str):
    """Wrap unexpected failures in a stage with StrategyFailure."""
    try:
        yield
    except (ValidationError, RecommendationTimeout):
        raise
    except Exception as exc:
        logger.error(f"Recommendation stage '{name}' failed: {exc}")
        raise StrategyFailure(name, exc) from exc


def diversify(
    recommendations: Iterable[Recommendation],
    limit: int = DEFAULT_LIMIT,
    max_per_genre: int = MAX_PER_GENRE,
    max_per_contributor: int = MAX_PER_CONTRIBUTOR,
) -> list[Recommendation]:
    """
    Greedy single pass over an already ranked list.

    Skips any item that would push a genre past `max_per_genre` or a
    contributor past `max_per_contributor`; kept items stay in their
    original order and are re-ranked 1..N.
    """
    results: list[Recommendation] = []
    genre_counts: dict[str, int] = defaultdict(int)
    contributor_counts: dict[str, int] = defaultdict(int)

    for rec in recommendations:
        if len(results) >= limit:
            break

        contributor = rec.contributor or UNKNOWN_CONTRIBUTOR
        if any(genre_counts[g] >= max_per_genre for g in rec.genres):
            continue
        if contributor_counts[contributor] >= max_per_contributor:
            continue

        results.append(rec)
        for g in rec.genres:
            genre_counts[g] += 1
        contributor_counts[contributor] += 1

    if len(results) < limit:
        logger.debug(
            f"Diversity caps (genre {max_per_genre}, contributor {max_per_contributor}) "
            f"left {len(results)}/{limit} results"
        )

    return [replace(rec, rank=i) for i, rec in enumerate(results, 1)]


class RecommendationEngine:
    """Validates inputs, delegates scoring to a strategy and ranks the result."""

    def __init__(
        self,
        strategy: RecommendationStrategy | None = None,
        *,
        catalog: Iterable[CatalogItem] | None = None,
        profile_cache: ProfileCache | None = None,
    ):
        """
        Args:
            strategy: Default strategy for calls that do not pass one
            catalog: Metadata for rated items that may not be in the pool
            profile_cache: Optional cache for profiles keyed by
                (user_id, ratings_version) from the call preferences
        """
        self._strategy = strategy
        self._catalog = index_by_id(catalog or [])
        self._profile_cache = profile_cache

    @property
    def strategy(self) -> RecommendationStrategy | None:
        return self._strategy

    def with_strategy(self, strategy: RecommendationStrategy) -> "RecommendationEngine":
        """Return an engine that uses `strategy`; this engine is left untouched."""
        engine = copy.copy(self)
        engine._strategy = strategy
        return engine

    def _resolve_strategy(self, strategy: RecommendationStrategy | None) -> RecommendationStrategy:
        resolved = strategy or self._strategy
        if resolved is None:
            raise ValidationError("No recommendation strategy set")
        return resolved

    def algorithm_info(self, strategy: RecommendationStrategy | None = None) -> dict[str, Any]:
        return self._resolve_strategy(strategy).describe()

    # -- validation ---------------------------------------------------------

    @staticmethod
    def _validate_ratings(ratings: Sequence[RatedItem] | None) -> list[RatedItem]:
        if not ratings:
            raise ValidationError("User ratings are required for recommendations")
        ratings = list(ratings)
        for rated in ratings:
            if not MIN_RATING <= rated.rating <= MAX_RATING:
                raise ValidationError(
                    f"Rating for {rated.item_id} must be in [{MIN_RATING}, {MAX_RATING}], got {rated.rating}"
                )
        return ratings

    @staticmethod
    def _validate_pool(pool: Sequence[CatalogItem] | None) -> list[CatalogItem]:
        if not pool:
            raise ValidationError("Candidate pool is required for recommendations")
        return list(pool)

    @staticmethod
    def _limit(preferences: Mapping[str, Any]) -> int:
        limit = preferences.get("limit", DEFAULT_LIMIT)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        return limit

    # -- pipeline -----------------------------------------------------------

    def _profile_for(
        self,
        ratings: list[RatedItem],
        join_pool: list[CatalogItem],
        preferences: Mapping[str, Any],
    ) -> AffinityProfile:
        metadata = {**self._catalog, **index_by_id(join_pool)}

        def _build() -> AffinityProfile:
            return build_profile(ratings, metadata)

        user_id = preferences.get("user_id")
        version = preferences.get("ratings_version")
        if self._profile_cache is not None and user_id is not None and version is not None:
            return self._profile_cache.get_or_build((user_id, version), _build)
        return _build()

    @staticmethod
    def _rank(raw: Iterable[Recommendation], ratings: list[RatedItem], limit: int) -> list[Recommendation]:
        """Drop rated and duplicate items, sort by score, truncate, assign ranks."""
        rated = {r.item_id for r in ratings}
        # Stable: equal scores keep the strategy's order
        ordered = sorted(raw, key=lambda r: -r.score)

        seen: set[str] = set()
        results: list[Recommendation] = []
        for rec in ordered:
            if rec.item_id in rated or rec.item_id in seen:
                continue
            seen.add(rec.item_id)
            results.append(rec)
            if len(results) >= limit:
                break

        return [
            replace(rec, score=clamp(rec.score, MIN_RATING, MAX_RATING), rank=i)
            for i, rec in enumerate(results, 1)
        ]

    def _generate(
        self,
        ratings: list[RatedItem],
        candidates: list[CatalogItem],
        join_pool: list[CatalogItem],
        preferences: Mapping[str, Any],
        strategy: RecommendationStrategy,
    ) -> list[Recommendation]:
        preferences = dict(preferences)
        limit = self._limit(preferences)
        preferences["limit"] = limit

        with _stage("profile"):
            profile = self._profile_for(ratings, join_pool, preferences)

        deadline = Deadline(preferences.get("deadline_seconds", PEER_DEADLINE_SECONDS))
        with _stage("scoring"):
            raw = strategy.recommend(ratings, candidates, profile, preferences, deadline)

        with _stage("ranking"):
            if preferences.get("restrict_to_pool"):
                allowed = {item.item_id for item in candidates}
                raw = [rec for rec in raw if rec.item_id in allowed]
            return self._rank(raw, ratings, limit)

    def generate_recommendations(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        preferences: Mapping[str, Any] | None = None,
        *,
        strategy: RecommendationStrategy | None = None,
    ) -> list[Recommendation]:
        """
        Rank unrated candidates from `pool` for a user.

        Raises:
            ValidationError: no strategy, empty ratings or pool, bad rating or limit
            StrategyFailure: the strategy raised unexpectedly (wrapped with its stage)
            RecommendationTimeout: the peer scan overran its deadline
        """
        strategy = self._resolve_strategy(strategy)
        ratings = self._validate_ratings(ratings)
        pool = self._validate_pool(pool)
        return self._generate(ratings, pool, pool, preferences or {}, strategy)

    # -- views --------------------------------------------------------------

    def _filtered_view(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        predicate: Callable[[CatalogItem], bool],
        limit: int,
        strategy: RecommendationStrategy | None,
        label: str,
    ) -> list[Recommendation]:
        strategy = self._resolve_strategy(strategy)
        ratings = self._validate_ratings(ratings)
        pool = self._validate_pool(pool)

        candidates = [item for item in pool if predicate(item)]
        if not candidates:
            logger.debug(f"No candidates match {label}")
            return []

        # Rated items are joined against the full pool, not just the filtered view;
        # results may only come from the filtered view
        preferences = {"limit": limit, "restrict_to_pool": True}
        return self._generate(ratings, candidates, pool, preferences, strategy)

    def by_genre(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        genre: str,
        limit: int = DEFAULT_VIEW_LIMIT,
        *,
        strategy: RecommendationStrategy | None = None,
    ) -> list[Recommendation]:
        """Recommendations restricted to items whose genres contain `genre`."""
        target = genre.strip().lower()
        return self._filtered_view(
            ratings, pool,
            lambda item: any(target in g.lower() for g in item.genres),
            limit, strategy, f"genre '{genre}'",
        )

    def by_contributor(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        contributor: str,
        limit: int = DEFAULT_VIEW_LIMIT,
        *,
        strategy: RecommendationStrategy | None = None,
    ) -> list[Recommendation]:
        """Recommendations restricted to one contributor (case-insensitive substring)."""
        target = contributor.strip().lower()
        return self._filtered_view(
            ratings, pool,
            lambda item: bool(item.contributor) and target in item.contributor.lower(),
            limit, strategy, f"contributor '{contributor}'",
        )

    def by_decade(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        decade: int,
        limit: int = DEFAULT_VIEW_LIMIT,
        *,
        strategy: RecommendationStrategy | None = None,
    ) -> list[Recommendation]:
        """Recommendations restricted to items released in `decade` (e.g. 1990)."""
        return self._filtered_view(
            ratings, pool,
            lambda item: item.decade == decade,
            limit, strategy, f"decade {decade}s",
        )

    def diversify(self, recommendations: Iterable[Recommendation], limit: int = DEFAULT_LIMIT) -> list[Recommendation]:
        return diversify(recommendations, limit)

    def diverse_recommendations(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        limit: int = DEFAULT_LIMIT,
        *,
        strategy: RecommendationStrategy | None = None,
    ) -> list[Recommendation]:
        """Rank a wider base list, then cap genre and contributor repetition."""
        base = self.generate_recommendations(
            ratings, pool, {"limit": limit * DIVERSITY_CANDIDATE_MULTIPLIER}, strategy=strategy
        )
        return diversify(base, limit)

    def peer_recommendations(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        peer_corpus: Iterable[Iterable[RatedItem]],
        limit: int = DEFAULT_LIMIT,
        deadline_seconds: float | None = None,
    ) -> list[Recommendation]:
        """
        Recommend what correlated peers rated highly.

        Falls back to this engine's own strategy (or the attribute strategy)
        when the corpus is too small to correlate against.
        """
        fallback = self._strategy
        if fallback is None or isinstance(fallback, PeerCorrelationStrategy):
            fallback = AttributeContentStrategy()

        preferences: dict[str, Any] = {"limit": limit}
        if deadline_seconds is not None:
            preferences["deadline_seconds"] = deadline_seconds

        return self.generate_recommendations(
            ratings, pool, preferences,
            strategy=PeerCorrelationStrategy(peer_corpus, fallback=fallback),
        )
