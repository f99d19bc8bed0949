"""Approximate a new user's latent vector against a frozen item matrix."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np

from .errors import ConstructionError, DataError, ShapeError
from .factorizer import EpochReport, Factorizer, Reporter
from .index import IndexMap, parse_rating


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApproximatedUser:
    latent: np.ndarray  # (K,)
    predicted: np.ndarray  # (J,) predicted rating for every item
    history: list[EpochReport]


def ratings_to_row(ratings: Mapping[int, float], item_index: IndexMap) -> tuple[np.ndarray, list[int]]:
    """Turn {itemId: rating} into a dense row aligned with `item_index`.

    Returns the row and the item IDs that were ignored because the index does
    not know them. A rating that is not finite and strictly positive raises
    DataError, since 0 already means unrated.
    """
    row = np.zeros(len(item_index), dtype=np.float64)
    unknown: list[int] = []
    for item_id, rating in ratings.items():
        j = item_index.get(int(item_id))
        if j is None:
            unknown.append(int(item_id))
            continue
        try:
            row[j] = parse_rating(rating)
        except DataError as exc:
            raise DataError(f"invalid rating for item {item_id}: {exc}", reason=exc.reason) from exc
    return row, unknown


def _avg_loss_reporter(num_cells: int) -> Reporter:
    def _report(report: EpochReport) -> None:
        logger.info(
            "iteration %3d: net loss %5.2f, avg loss %1.8f on %d movies",
            report.step,
            report.loss,
            report.loss / num_cells,
            num_cells,
        )

    return _report


def approximate_user_latent(
    item_latent: np.ndarray,
    rating_row: np.ndarray,
    *,
    steps: int,
    epoch_size: int,
    reg: float,
    learning_rate: float,
    rng: np.random.Generator | None = None,
    reporter: Reporter | None = None,
) -> ApproximatedUser:
    """Fit only the user row; `item_latent` is never written to.

    `rating_row` has one entry per item row of `item_latent`, 0 meaning unrated.
    """
    item_latent = np.asarray(item_latent, dtype=np.float64)
    if item_latent.ndim != 2:
        raise ShapeError(f"item latent must be 2-D, got shape {item_latent.shape}")
    num_items, latent_dim = item_latent.shape

    rating_row = np.asarray(rating_row, dtype=np.float64)
    if rating_row.ndim != 1 or rating_row.shape[0] != num_items:
        raise ConstructionError(
            f"rating row must have length {num_items} to match the item matrix, got shape {rating_row.shape}"
        )
    if not np.isfinite(rating_row).all() or (rating_row < 0.0).any():
        raise DataError("rating row must hold finite non-negative values (0 means unrated)", reason="bad_rating")

    factorizer = Factorizer(latent_dim, rating_matrix=rating_row.reshape(1, -1), rng=rng)
    factorizer.item_latent = item_latent
    frozen = factorizer.item_latent
    frozen.flags.writeable = False

    if reporter is None:
        reporter = _avg_loss_reporter(num_items)
    history = factorizer.train(
        steps,
        epoch_size,
        reg,
        learning_rate,
        reporter=reporter,
        update_items=False,
    )

    latent = factorizer.user_latent[0].copy()
    return ApproximatedUser(latent=latent, predicted=frozen @ latent, history=history)
