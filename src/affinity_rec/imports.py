"""
Parse IMDb-style rating exports into rated items and catalog metadata.

IMDb's CSV export carries the user's rating plus the title's genres,
directors, year and IMDb rating, so one file gives both the ratings and
the metadata join the profile builder needs.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .catalog import CatalogItem, RatedItem, split_list
from .config import MIN_IMPORT_RATING, MAX_RATING

logger = logging.getLogger(__name__)

_URL_ID_RE = re.compile(r"title/(tt\d+)")


@dataclass
class ImportResult:
    ratings: list[RatedItem] = field(default_factory=list)
    catalog: list[CatalogItem] = field(default_factory=list)
    skipped: int = 0


def _pick(row: dict, *keys: str) -> str | None:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


def _parse_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Unparseable rating date {value!r}")
        return None
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def pseudo_item_id(title: str, year: int | None = None) -> str:
    """Deterministic stand-in id for rows that carry no IMDb id."""
    digest = hashlib.sha1(f"{title}{year or ''}".encode("utf-8")).hexdigest()
    return f"tt{int(digest, 16) % 9_999_999:07d}"


def _item_id(row: dict, title: str, year: int | None) -> str:
    url = _pick(row, "URL", "url")
    if url:
        match = _URL_ID_RE.search(url)
        if match:
            return match.group(1)
    const = _pick(row, "Const", "const")
    if const and const.startswith("tt"):
        return const
    return pseudo_item_id(title, year)


def parse_imdb_export(text: str) -> ImportResult:
    """
    Parse the CSV text of an IMDb ratings export.

    Rows without a title or with a rating outside [1, 10] are skipped and
    counted. Dates that do not parse are dropped rather than guessed.
    """
    result = ImportResult()
    reader = csv.DictReader(io.StringIO(text), skipinitialspace=True)

    for line_no, row in enumerate(reader, start=2):
        title = _pick(row, "Title", "title", "movie_title")
        rating = _parse_int(_pick(row, "Your Rating", "rating", "user_rating"))
        if not title or rating is None or not MIN_IMPORT_RATING <= rating <= MAX_RATING:
            logger.warning(f"Skipping line {line_no}: missing title or invalid rating ({title or 'unknown'})")
            result.skipped += 1
            continue

        year = _parse_int(_pick(row, "Year", "year", "release_year"))
        item_id = _item_id(row, title, year)

        result.ratings.append(RatedItem(
            item_id=item_id,
            title=title,
            rating=rating,
            rated_at=_parse_date(_pick(row, "Date Rated", "date", "date_rated")),
        ))

        directors = split_list(_pick(row, "Directors", "director"))
        result.catalog.append(CatalogItem(
            item_id=item_id,
            title=title,
            year=year,
            genres=split_list(_pick(row, "Genres", "genres")),
            contributor=directors[0] if directors else None,
            baseline_rating=_parse_float(_pick(row, "IMDb Rating", "imdb_rating")),
        ))

    logger.info(f"Imported {len(result.ratings)} ratings ({result.skipped} skipped)")
    return result


def load_imdb_export(path: str | Path) -> ImportResult:
    """Read and parse an export file from disk."""
    return parse_imdb_export(Path(path).read_text(encoding="utf-8-sig"))
