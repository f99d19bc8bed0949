"""Dense low-rank factorization of a partially observed rating matrix.

R (I x J) is approximated by U (I x K) times M (J x K) transposed, learned by
full-batch gradient descent on

    0.5 * sum over observed (i, j) of (U_i . M_j - R_ij)^2
        + reg / 2 * (|U|^2 + |M|^2)

Cells equal to 0 in R are unobserved and contribute neither loss nor gradient.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from sklearn.metrics import mean_squared_error

from .errors import ConstructionError, ShapeError
from .index import RatingIndex
from .numeric import check_inner_dims, check_same_shape, observed_mask, rand_matrix


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LossReport:
    loss: float
    rmse: Optional[float]  # None when no held-out ratings are attached


@dataclass(frozen=True)
class EpochReport:
    step: int
    loss: float
    rmse: Optional[float]


Reporter = Callable[[EpochReport], None]


def log_epoch_report(report: EpochReport) -> None:
    if report.rmse is None:
        logger.info("iteration %3d: net loss %5.2f", report.step, report.loss)
    else:
        logger.info("iteration %3d: net loss %5.2f and RMSE %1.8f", report.step, report.loss, report.rmse)


class Factorizer:
    """Owns the user and item latent matrices for one training run.

    Exactly one of `rating_matrix` or `rating_index` must be given. A rating
    index is needed for training with held-out evaluation; a bare rating
    matrix is enough to approximate preferences for new users.
    """

    def __init__(
        self,
        latent_dim: int,
        *,
        rating_matrix: np.ndarray | None = None,
        rating_index: RatingIndex | None = None,
        observed: np.ndarray | None = None,
        rng: np.random.Generator | None = None,
        init_scale: float = 1.0,
    ) -> None:
        if (rating_matrix is None) == (rating_index is None):
            raise ConstructionError("exactly one of rating_matrix or rating_index is required")
        if int(latent_dim) < 1:
            raise ConstructionError(f"latent_dim must be >= 1, got {latent_dim}")

        if rating_index is not None:
            if rating_index.rating_matrix is None:
                raise ConstructionError("rating index was built without a dense matrix; use SparseFactorizer")
            rating_matrix = rating_index.rating_matrix

        rating = np.asarray(rating_matrix, dtype=np.float64)
        if rating.ndim != 2:
            raise ConstructionError(f"rating matrix must be 2-D, got shape {rating.shape}")
        num_users, num_items = rating.shape
        if num_users == 0 or num_items == 0:
            raise ConstructionError(f"rating matrix is empty: shape {rating.shape}")

        if observed is None:
            mask = observed_mask(rating)
        else:
            mask = np.asarray(observed, dtype=bool)
            check_same_shape(mask, rating, what="observed mask and rating matrix")

        if rng is None:
            rng = np.random.default_rng()

        self.latent_dim = int(latent_dim)
        self.rating = rating
        self.rating_index = rating_index
        # The mask is fixed here; later writes into unobserved cells are ignored.
        self._observed = mask
        self._user_latent = rand_matrix(num_users, self.latent_dim, rng, scale=init_scale)
        self._item_latent = rand_matrix(num_items, self.latent_dim, rng, scale=init_scale)
        self.steps_taken = 0

        self._test_coords = None
        if rating_index is not None and rating_index.num_test > 0:
            self._test_coords = rating_index.test_coordinates()

    # ------------------------------------------------------------------
    # Latent matrices
    # ------------------------------------------------------------------

    @property
    def user_latent(self) -> np.ndarray:
        return self._user_latent

    @user_latent.setter
    def user_latent(self, value: np.ndarray) -> None:
        self._user_latent = self._own_latent(value, self.rating.shape[0], "user")

    @property
    def item_latent(self) -> np.ndarray:
        return self._item_latent

    @item_latent.setter
    def item_latent(self, value: np.ndarray) -> None:
        self._item_latent = self._own_latent(value, self.rating.shape[1], "item")

    def _own_latent(self, value: np.ndarray, rows: int, what: str) -> np.ndarray:
        # Copied so training never writes into the caller's array.
        value = np.array(value, dtype=np.float64, copy=True)
        if value.ndim != 2 or value.shape[0] != rows:
            raise ShapeError(f"{what} latent must have {rows} rows and K columns, got shape {value.shape}")
        if value.shape[1] != self.latent_dim:
            raise ConstructionError(
                f"{what} latent has inner dimension {value.shape[1]}, factorizer was built with K={self.latent_dim}"
            )
        return value

    @property
    def observed(self) -> np.ndarray:
        return self._observed

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    def predict(self) -> np.ndarray:
        """Full (I x J) prediction U @ M.T."""
        check_inner_dims(self._user_latent, self._item_latent)
        return self._user_latent @ self._item_latent.T

    def _residual(self, prediction: np.ndarray) -> np.ndarray:
        check_same_shape(prediction, self.rating, what="prediction and rating matrix")
        return np.where(self._observed, prediction - self.rating, 0.0)

    def test_rmse(self, prediction: np.ndarray | None = None) -> Optional[float]:
        """RMSE over the held-out ratings, or None when there are none."""
        if self._test_coords is None:
            return None
        if prediction is None:
            prediction = self.predict()
        rows, cols, actual = self._test_coords
        return float(np.sqrt(mean_squared_error(actual, prediction[rows, cols])))

    def loss(self, reg: float) -> LossReport:
        prediction = self.predict()
        residual = self._residual(prediction)

        total = 0.5 * float(np.sum(residual * residual))
        total += float(reg) * float(np.sum(self._user_latent ** 2)) / 2.0
        total += float(reg) * float(np.sum(self._item_latent ** 2)) / 2.0
        return LossReport(loss=total, rmse=self.test_rmse(prediction))

    def gradients(self, reg: float) -> tuple[np.ndarray, np.ndarray]:
        """Return (dL/dU, dL/dM) evaluated at the current latents."""
        grad_rating = self._residual(self.predict())

        grad_user = grad_rating @ self._item_latent + float(reg) * self._user_latent
        grad_item = grad_rating.T @ self._user_latent + float(reg) * self._item_latent
        return grad_user, grad_item

    def train(
        self,
        steps: int,
        epoch_size: int,
        reg: float,
        learning_rate: float,
        *,
        reporter: Reporter | None = None,
        update_items: bool = True,
    ) -> list[EpochReport]:
        """Run `steps` full-batch gradient descent updates.

        Every `epoch_size` steps (starting at step 0) the loss is computed and
        passed to `reporter`; reports never stop training early. With
        `update_items=False` the item latent matrix is held fixed.
        """
        if int(steps) < 0:
            raise ValueError(f"steps must be >= 0, got {steps}")
        if int(epoch_size) < 1:
            raise ValueError(f"epoch_size must be >= 1, got {epoch_size}")
        if reporter is None:
            reporter = log_epoch_report

        history: list[EpochReport] = []
        for step in range(int(steps)):
            if step % int(epoch_size) == 0:
                current = self.loss(reg)
                report = EpochReport(step=step, loss=current.loss, rmse=current.rmse)
                history.append(report)
                reporter(report)

            # Both gradients come from the pre-update state.
            grad_user, grad_item = self.gradients(reg)
            self._user_latent -= float(learning_rate) * grad_user
            if update_items:
                self._item_latent -= float(learning_rate) * grad_item
            self.steps_taken += 1

        return history
