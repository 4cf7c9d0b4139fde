import logging
from collections import defaultdict
from dataclasses import dataclass, field
from statistics import mean
from typing import Iterable, Mapping

from .catalog import CatalogItem, RatedItem
from .config import (
    MIN_RATING,
    MAX_RATING,
    FAVORITES_MIN_COUNT,
    FAVORITES_TOP_N,
)

logger = logging.getLogger(__name__)


@dataclass
class AffinityProfile:
    """Mean historical rating per attribute value, from one user's ratings."""
    overall_average: float = 0.0
    n_ratings: int = 0

    genre_affinity: dict[str, float] = field(default_factory=dict)
    contributor_affinity: dict[str, float] = field(default_factory=dict)
    decade_affinity: dict[int, float] = field(default_factory=dict)

    # Observation counts behind each affinity
    genre_counts: dict[str, int] = field(default_factory=dict)
    contributor_counts: dict[str, int] = field(default_factory=dict)
    decade_counts: dict[int, int] = field(default_factory=dict)

    @property
    def is_cold(self) -> bool:
        """True when no rating could be joined to any attribute."""
        return not (self.genre_affinity or self.contributor_affinity or self.decade_affinity)


@dataclass
class FavoriteAttribute:
    name: str
    average_rating: float
    count: int


@dataclass
class PreferenceSummary:
    """Human-facing breakdown of a user's rating history."""
    total_ratings: int = 0
    average_rating: float = 0.0
    favorite_genres: list[FavoriteAttribute] = field(default_factory=list)
    favorite_contributors: list[FavoriteAttribute] = field(default_factory=list)
    favorite_decades: list[FavoriteAttribute] = field(default_factory=list)
    rating_distribution: dict[int, int] = field(default_factory=dict)


def _accumulate(buckets: dict, keys: Iterable, rating: int) -> None:
    """Append a rating to every bucket it belongs to."""
    for key in keys:
        buckets[key].append(rating)


def _collect_buckets(
    ratings: list[RatedItem],
    metadata: Mapping[str, CatalogItem],
) -> tuple[dict[str, list[int]], dict[str, list[int]], dict[int, list[int]], int]:
    genres = defaultdict(list)
    contributors = defaultdict(list)
    decades = defaultdict(list)
    missing = 0

    for rated in ratings:
        meta = metadata.get(rated.item_id)
        if meta is None:
            missing += 1
            continue

        _accumulate(genres, meta.genres, rated.rating)
        if meta.contributor:
            contributors[meta.contributor].append(rated.rating)
        if meta.decade is not None:
            decades[meta.decade].append(rated.rating)

    return genres, contributors, decades, missing


def build_profile(
    ratings: Iterable[RatedItem],
    metadata: Mapping[str, CatalogItem] | None = None,
) -> AffinityProfile:
    """
    Build an affinity profile from a user's ratings.

    Args:
        ratings: The user's rated items
        metadata: item_id -> CatalogItem for the rated items (the catalog join)

    Every rating counts toward overall_average. Ratings with no metadata are
    skipped for genre/contributor/decade accumulation. Attribute values with
    no observations are left out of the maps rather than set to zero.
    """
    ratings = list(ratings)
    metadata = metadata or {}

    genres, contributors, decades, missing = _collect_buckets(ratings, metadata)
    if missing:
        logger.debug(f"{missing}/{len(ratings)} ratings have no catalog metadata")

    return AffinityProfile(
        overall_average=float(mean(r.rating for r in ratings)) if ratings else 0.0,
        n_ratings=len(ratings),
        genre_affinity={g: float(mean(v)) for g, v in genres.items()},
        contributor_affinity={c: float(mean(v)) for c, v in contributors.items()},
        decade_affinity={d: float(mean(v)) for d, v in decades.items()},
        genre_counts={g: len(v) for g, v in genres.items()},
        contributor_counts={c: len(v) for c, v in contributors.items()},
        decade_counts={d: len(v) for d, v in decades.items()},
    )


def _favorites(buckets: dict, min_count: int, top_n: int | None) -> list[FavoriteAttribute]:
    favorites = [
        FavoriteAttribute(name=str(key), average_rating=float(mean(values)), count=len(values))
        for key, values in buckets.items()
        if len(values) >= min_count
    ]
    favorites.sort(key=lambda f: (-f.average_rating, f.name))
    return favorites[:top_n] if top_n is not None else favorites


def analyze_preferences(
    ratings: Iterable[RatedItem],
    metadata: Mapping[str, CatalogItem] | None = None,
) -> PreferenceSummary:
    """
    Summarize a rating history: favorite genres/contributors/decades and the
    rating distribution.

    Favorite genres and contributors need at least FAVORITES_MIN_COUNT ratings
    and are capped at FAVORITES_TOP_N. Decades are all listed, labelled "1990s".
    """
    ratings = list(ratings)
    distribution = {value: 0 for value in range(MIN_RATING, MAX_RATING + 1)}
    if not ratings:
        return PreferenceSummary(rating_distribution=distribution)

    for rated in ratings:
        distribution[rated.rating] = distribution.get(rated.rating, 0) + 1

    genres, contributors, decades, _ = _collect_buckets(ratings, metadata or {})
    decade_labels = {f"{decade}s": values for decade, values in decades.items()}

    return PreferenceSummary(
        total_ratings=len(ratings),
        average_rating=round(mean(r.rating for r in ratings), 1),
        favorite_genres=_favorites(genres, FAVORITES_MIN_COUNT, FAVORITES_TOP_N),
        favorite_contributors=_favorites(contributors, FAVORITES_MIN_COUNT, FAVORITES_TOP_N),
        favorite_decades=_favorites(decade_labels, 1, None),
        rating_distribution=distribution,
    )
