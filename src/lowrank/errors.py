from __future__ import annotations


class LowRankError(Exception):
    """Base class for low-rank factorization errors."""


class ConstructionError(LowRankError, ValueError):
    """Raised when a factorizer cannot be built from the given inputs."""


class ShapeError(LowRankError, ValueError):
    """Raised when matrix dimensions are incompatible for an operation."""


class DataError(LowRankError, ValueError):
    """Raised for malformed input rows or an unreadable input source.

    `reason` is a short machine-friendly tag used to aggregate skipped rows.
    """

    def __init__(self, message: str, *, reason: str = "malformed") -> None:
        super().__init__(message)
        self.reason = reason
