"""Input records for the recommendation core: rated items and catalog items."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from .config import MIN_RATING, MAX_RATING
from .errors import ValidationError
from .utils import clamp

logger = logging.getLogger(__name__)


def parse_timestamp_naive(timestamp_str: str) -> datetime:
    """
    Parse ISO format timestamp string to naive datetime.

    Always returns a naive datetime so ratings imported from different
    sources compare cleanly.
    """
    dt = datetime.fromisoformat(timestamp_str)
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def split_list(val: Any) -> tuple[str, ...]:
    """Normalize a comma-separated string or a list into a tuple of stripped values."""
    if not val:
        return ()
    if isinstance(val, str):
        parts = val.split(",")
    else:
        parts = list(val)
    return tuple(g.strip() for g in parts if isinstance(g, str) and g.strip())


def decade_of(year: int | None) -> int | None:
    """Return the decade a year falls in (1994 -> 1990)."""
    if year is None:
        return None
    return (year // 10) * 10


def _first(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-integer value {value!r}")
        return None


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric value {value!r}")
        return None


@dataclass(frozen=True)
class RatedItem:
    """One of the user's own ratings."""
    item_id: str
    title: str
    rating: int
    rated_at: datetime | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RatedItem":
        item_id = _first(payload, "item_id", "itemId", "imdbId")
        if not item_id:
            raise ValidationError(f"Rating is missing an item id: {dict(payload)!r}")

        raw_rating = _first(payload, "rating")
        try:
            rating_value = float(raw_rating)
        except (TypeError, ValueError):
            raise ValidationError(f"Rating for {item_id} is not a number: {raw_rating!r}") from None
        if not rating_value.is_integer() or not MIN_RATING <= rating_value <= MAX_RATING:
            raise ValidationError(
                f"Rating for {item_id} must be a whole number in [{MIN_RATING}, {MAX_RATING}], got {raw_rating!r}"
            )

        rated_at = _first(payload, "rated_at", "ratedAt", "dateRated")
        if isinstance(rated_at, str):
            try:
                rated_at = parse_timestamp_naive(rated_at)
            except ValueError:
                logger.warning(f"Unparseable timestamp {rated_at!r} for {item_id}; ignoring it")
                rated_at = None

        return cls(
            item_id=str(item_id),
            title=str(_first(payload, "title", default="")),
            rating=int(rating_value),
            rated_at=rated_at,
            note=_first(payload, "note", "review"),
        )


@dataclass(frozen=True)
class CatalogItem:
    """A candidate (or rated) item with the metadata the strategies score on."""
    item_id: str
    title: str
    year: int | None = None
    genres: tuple[str, ...] = field(default_factory=tuple)
    contributor: str | None = None
    synopsis: str | None = None
    baseline_rating: float | None = None

    def __post_init__(self) -> None:
        # Frozen, so normalize through object.__setattr__
        object.__setattr__(self, "genres", split_list(self.genres))
        if self.contributor is not None:
            object.__setattr__(self, "contributor", self.contributor.strip() or None)
        if self.baseline_rating is not None:
            object.__setattr__(
                self, "baseline_rating", clamp(float(self.baseline_rating), MIN_RATING, MAX_RATING)
            )

    @property
    def decade(self) -> int | None:
        return decade_of(self.year)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CatalogItem":
        item_id = _first(payload, "item_id", "itemId", "imdbId")
        if not item_id:
            raise ValidationError(f"Catalog item is missing an item id: {dict(payload)!r}")
        return cls(
            item_id=str(item_id),
            title=str(_first(payload, "title", default="")),
            year=_optional_int(_first(payload, "year", "releaseYear")),
            genres=split_list(_first(payload, "genres", "genre")),
            contributor=_first(payload, "contributor", "director"),
            synopsis=_first(payload, "synopsis", "plot"),
            baseline_rating=_optional_float(_first(payload, "baseline_rating", "baselineRating", "imdbRating")),
        )


def index_by_id(items: Iterable[CatalogItem]) -> dict[str, CatalogItem]:
    """Map item_id -> CatalogItem, keeping the first occurrence of each id."""
    index: dict[str, CatalogItem] = {}
    for item in items:
        index.setdefault(item.item_id, item)
    return index
