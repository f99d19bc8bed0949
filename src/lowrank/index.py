"""Rating index: raw (user, item, rating) rows -> dense matrix coordinates.

Index assignment follows the order in which IDs are first seen in the rating
stream, not their numeric order, so the mapping depends on the input order but
is fixed once built.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import numpy as np

from ..data import ItemMetadata, parse_item_row
from .errors import DataError


logger = logging.getLogger(__name__)


class IndexMap:
    """Bijection between external integer IDs and dense 0-based indices."""

    def __init__(self) -> None:
        self._id_to_index: dict[int, int] = {}
        self._index_to_id: list[int] = []

    def add(self, external_id: int) -> int:
        idx = self._id_to_index.get(external_id)
        if idx is None:
            idx = len(self._index_to_id)
            self._id_to_index[external_id] = idx
            self._index_to_id.append(external_id)
        return idx

    def index_of(self, external_id: int) -> int:
        return self._id_to_index[int(external_id)]

    def id_of(self, index: int) -> int:
        return self._index_to_id[int(index)]

    def get(self, external_id: int, default: int | None = None) -> int | None:
        return self._id_to_index.get(int(external_id), default)

    @property
    def ids(self) -> list[int]:
        return list(self._index_to_id)

    def __len__(self) -> int:
        return len(self._index_to_id)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._id_to_index

    def __repr__(self) -> str:
        return f"IndexMap(size={len(self)})"


class ItemPopularity:
    """Running rating count and running average per item index (reporting only)."""

    def __init__(self) -> None:
        self.num_rating: list[int] = []
        self.average_rating: list[float] = []

    def observe(self, item_index: int, rating: float) -> None:
        while len(self.num_rating) <= item_index:
            self.num_rating.append(0)
            self.average_rating.append(0.0)
        self.num_rating[item_index] += 1
        n = self.num_rating[item_index]
        self.average_rating[item_index] += (rating - self.average_rating[item_index]) / n

    def __len__(self) -> int:
        return len(self.num_rating)


@dataclass
class BuildSummary:
    rows_read: int = 0
    rows_used: int = 0
    duplicates: int = 0
    item_rows_read: int = 0
    skipped: Counter = field(default_factory=Counter)

    @property
    def skipped_total(self) -> int:
        return int(sum(self.skipped.values()))

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_used": self.rows_used,
            "duplicates": self.duplicates,
            "item_rows_read": self.item_rows_read,
            "skipped": dict(self.skipped),
        }


def parse_rating_row(row: Sequence[Any]) -> tuple[int, int, float]:
    """Parse a (userId, itemId, rating, ...) row; raises DataError when malformed."""
    if row is None or len(row) < 3:
        raise DataError(f"rating row too short: {row!r}", reason="short_row")

    try:
        user_id = _parse_id(row[0])
        item_id = _parse_id(row[1])
    except (TypeError, ValueError) as exc:
        raise DataError(f"non-numeric id in row {row!r}", reason="bad_id") from exc

    return user_id, item_id, parse_rating(row[2])


def parse_rating(value: Any) -> float:
    """Parse one rating value; it must be finite and strictly positive."""
    try:
        rating = float(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise DataError(f"non-numeric rating {value!r}", reason="bad_rating") from exc

    if not math.isfinite(rating):
        raise DataError(f"non-finite rating {value!r}", reason="bad_rating")
    # 0 marks an unobserved cell in the rating matrix.
    if rating <= 0.0:
        raise DataError(f"rating must be positive, got {rating}", reason="non_positive")
    return rating


def _parse_id(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not an id")
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        if not float(value).is_integer():
            raise ValueError(f"fractional id: {value}")
        return int(value)
    return int(str(value).strip())


@dataclass
class RatingIndex:
    """Training matrix, held-out ratings and ID maps for one dataset load.

    Attributes:
        rating_matrix: (num_users x num_items) training ratings, 0 where unobserved.
            None when built with `dense=False`.
        user_index / item_index: external ID <-> matrix row / column.
        train_ratings: userId -> itemId -> rating for entries placed in the matrix.
        test_ratings: userId -> itemId -> rating held out for RMSE, disjoint from train.
        popularity: per item index rating count / average over all retained ratings.
        item_metadata: itemId -> metadata parsed from the item rows.
    """

    rating_matrix: np.ndarray | None
    user_index: IndexMap
    item_index: IndexMap
    train_ratings: dict[int, dict[int, float]]
    test_ratings: dict[int, dict[int, float]]
    popularity: ItemPopularity
    item_metadata: dict[int, ItemMetadata]
    summary: BuildSummary

    @classmethod
    def build(
        cls,
        rating_rows: Iterable[Sequence[Any]],
        item_rows: Iterable[Sequence[Any]] = (),
        *,
        test_ratio: float = 0.1,
        rng: np.random.Generator | None = None,
        dense: bool = True,
    ) -> "RatingIndex":
        """Build the index from raw rows.

        Each user's ratings are held out independently with probability
        `test_ratio`; a user whose ratings would all be held out keeps the last
        one in training. `rng` drives the split; None uses a generator seeded
        with 0 so repeated builds of the same input agree.
        """
        if not 0.0 <= float(test_ratio) < 1.0:
            raise ValueError(f"test_ratio must be in [0, 1), got {test_ratio}")
        if rng is None:
            rng = np.random.default_rng(0)

        summary = BuildSummary()
        user_index = IndexMap()
        item_index = IndexMap()

        # Later rows for the same (user, item) overwrite earlier ones.
        observed: dict[int, dict[int, float]] = {}
        for row in rating_rows:
            summary.rows_read += 1
            try:
                user_id, item_id, rating = parse_rating_row(row)
            except DataError as exc:
                summary.skipped[exc.reason] += 1
                logger.debug("Skipping rating row: %s", exc)
                continue

            user_index.add(user_id)
            item_index.add(item_id)
            per_user = observed.setdefault(user_id, {})
            if item_id in per_user:
                summary.duplicates += 1
            per_user[item_id] = rating
            summary.rows_used += 1

        item_metadata: dict[int, ItemMetadata] = {}
        for row in item_rows:
            summary.item_rows_read += 1
            try:
                meta = parse_item_row(row)
            except DataError as exc:
                summary.skipped["item_" + exc.reason] += 1
                continue
            item_metadata[meta.item_id] = meta

        popularity = ItemPopularity()
        train_ratings: dict[int, dict[int, float]] = {}
        test_ratings: dict[int, dict[int, float]] = {}
        for user_id, per_user in observed.items():
            item_ids = list(per_user)
            held_out = rng.random(len(item_ids)) < float(test_ratio)
            if held_out.all():
                held_out[-1] = False

            for item_id, is_test in zip(item_ids, held_out):
                rating = per_user[item_id]
                popularity.observe(item_index.index_of(item_id), rating)
                target = test_ratings if is_test else train_ratings
                target.setdefault(user_id, {})[item_id] = rating

        rating_matrix = None
        if dense:
            rating_matrix = np.zeros((len(user_index), len(item_index)), dtype=np.float64)
            for user_id, per_user in train_ratings.items():
                i = user_index.index_of(user_id)
                for item_id, rating in per_user.items():
                    rating_matrix[i, item_index.index_of(item_id)] = rating

        index = cls(
            rating_matrix=rating_matrix,
            user_index=user_index,
            item_index=item_index,
            train_ratings=train_ratings,
            test_ratings=test_ratings,
            popularity=popularity,
            item_metadata=item_metadata,
            summary=summary,
        )

        logger.info(
            "RatingIndex: users=%d items=%d train=%d test=%d skipped=%d duplicates=%d",
            index.num_users,
            index.num_items,
            index.num_train,
            index.num_test,
            summary.skipped_total,
            summary.duplicates,
        )
        if summary.skipped_total:
            logger.warning("RatingIndex skipped %d malformed rows: %s", summary.skipped_total, dict(summary.skipped))
        return index

    @property
    def num_users(self) -> int:
        return len(self.user_index)

    @property
    def num_items(self) -> int:
        return len(self.item_index)

    @property
    def num_train(self) -> int:
        return sum(len(v) for v in self.train_ratings.values())

    @property
    def num_test(self) -> int:
        return sum(len(v) for v in self.test_ratings.values())

    def _coordinates(self, ratings: dict[int, dict[int, float]]) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        rows: list[int] = []
        cols: list[int] = []
        values: list[float] = []
        for user_id, per_user in ratings.items():
            i = self.user_index.index_of(user_id)
            for item_id, rating in per_user.items():
                rows.append(i)
                cols.append(self.item_index.index_of(item_id))
                values.append(rating)
        return (
            np.asarray(rows, dtype=np.int64),
            np.asarray(cols, dtype=np.int64),
            np.asarray(values, dtype=np.float64),
        )

    def train_coordinates(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(row, col, rating) arrays for every training entry."""
        return self._coordinates(self.train_ratings)

    def test_coordinates(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(row, col, rating) arrays for every held-out entry."""
        return self._coordinates(self.test_ratings)
