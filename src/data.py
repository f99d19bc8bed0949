from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

import pandas as pd

from .lowrank.errors import DataError


@dataclass(frozen=True)
class RawRatingData:
    ratings: pd.DataFrame
    movies: pd.DataFrame


@dataclass(frozen=True)
class ItemMetadata:
    item_id: int
    title: str
    year: Optional[int] = None
    genres: Optional[str] = None


REQUIRED_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "ratings": ("userId", "movieId", "rating"),
    "movies": ("movieId", "title"),
}

_TITLE_YEAR_RE = re.compile(r"\((\d{4})\)\s*$")


def split_title_and_year(title: str) -> tuple[str, Optional[int]]:
    """Split a MovieLens `title` into (title_clean, year) when it ends with '(YYYY)'."""
    title = "" if title is None else str(title)
    title = title.strip()

    match = _TITLE_YEAR_RE.search(title)
    if not match:
        return title, None

    year = int(match.group(1))
    title_clean = title[: match.start()].rstrip()
    return title_clean, year


def parse_item_row(row: Sequence[Any]) -> ItemMetadata:
    """Parse an (itemId, title[, genres]) row into ItemMetadata."""
    if row is None or len(row) < 2:
        raise DataError(f"item row too short: {row!r}", reason="short_row")
    try:
        item_id = int(str(row[0]).strip())
    except (TypeError, ValueError) as exc:
        raise DataError(f"non-numeric item id in row {row!r}", reason="bad_id") from exc

    title, year = split_title_and_year(row[1])
    genres = None
    if len(row) > 2 and row[2] is not None and str(row[2]).strip():
        genres = str(row[2]).strip()
    return ItemMetadata(item_id=item_id, title=title, year=year, genres=genres)


def _read_csv(path: Path) -> pd.DataFrame:
    # Everything is read as text; row-level parsing happens in the rating index
    # so that one bad row does not fail the whole load.
    try:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise DataError(f"cannot read {path}: {exc}", reason="unreadable") from exc


def load_raw_data(
    raw_dir: Path,
    *,
    ratings_file: str = "ratings.csv",
    movies_file: str = "movies.csv",
) -> RawRatingData:
    """Load the ratings and movies CSV files from a directory.

    Notes
    -----
    Columns are kept as strings: IDs and ratings are parsed per row later, and
    malformed rows are skipped and counted rather than rejected here.
    A missing movies file yields an empty metadata table.
    """
    raw_dir = Path(raw_dir)
    ratings = _read_csv(raw_dir / ratings_file)

    movies_path = raw_dir / movies_file
    if movies_path.exists():
        movies = _read_csv(movies_path)
    else:
        movies = pd.DataFrame(columns=list(REQUIRED_COLUMNS["movies"]))

    data = RawRatingData(ratings=ratings, movies=movies)
    validate_schema(data)
    return data


def validate_schema(data: RawRatingData) -> None:
    """Validate that all required columns exist."""
    for name, cols in REQUIRED_COLUMNS.items():
        df = getattr(data, name)
        missing = [c for c in cols if c not in df.columns]
        if missing:
            raise DataError(f"{name} table missing columns: {missing}", reason="missing_columns")


def iter_rating_rows(ratings: pd.DataFrame) -> Iterator[tuple[Any, Any, Any]]:
    """Yield (userId, movieId, rating) triples in file order."""
    cols = list(REQUIRED_COLUMNS["ratings"])
    yield from ratings[cols].itertuples(index=False, name=None)


def iter_item_rows(movies: pd.DataFrame) -> Iterator[tuple[Any, ...]]:
    """Yield (movieId, title[, genres]) rows in file order."""
    cols = list(REQUIRED_COLUMNS["movies"])
    if "genres" in movies.columns:
        cols.append("genres")
    yield from movies[cols].itertuples(index=False, name=None)
