from __future__ import annotations

import numpy as np

from .errors import ShapeError


def rand_matrix(rows: int, cols: int, rng: np.random.Generator, *, scale: float = 1.0) -> np.ndarray:
    """Random float64 matrix with entries drawn uniformly from [0, scale).

    Rows that come out all zero are redrawn; a zero latent row gets no gradient.
    """
    if float(scale) <= 0.0:
        raise ValueError(f"scale must be positive, got {scale}")
    mat = rng.random((int(rows), int(cols))) * float(scale)
    if cols > 0:
        dead = ~mat.any(axis=1)
        while dead.any():
            mat[dead] = rng.random((int(dead.sum()), int(cols))) * float(scale)
            dead = ~mat.any(axis=1)
    return mat


def check_inner_dims(left: np.ndarray, right: np.ndarray) -> int:
    """Return the shared inner dimension of two latent matrices."""
    if left.ndim != 2 or right.ndim != 2:
        raise ShapeError(f"latent matrices must be 2-D, got {left.ndim}-D and {right.ndim}-D")
    if left.shape[1] != right.shape[1]:
        raise ShapeError(f"inner dimensions disagree: {left.shape} vs {right.shape}")
    return int(left.shape[1])


def check_same_shape(a: np.ndarray, b: np.ndarray, *, what: str = "matrices") -> None:
    if a.shape != b.shape:
        raise ShapeError(f"{what} have incompatible shapes: {a.shape} vs {b.shape}")


def observed_mask(rating: np.ndarray) -> np.ndarray:
    """Boolean mask of observed cells; 0 is the missing-rating sentinel."""
    return rating != 0
