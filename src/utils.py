from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TextIO

import numpy as np


@dataclass(frozen=True)
class ReproducibilityConfig:
    seed: int | None = 42

    def rng(self) -> np.random.Generator:
        """Fresh generator for this seed; None gives OS entropy."""
        return np.random.default_rng(self.seed)


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int | str = "INFO", *, stream: TextIO | None = None) -> None:
    """Install one stderr (or `stream`) handler on the root logger.

    Calling again only changes the level, so the build pipeline and the CLI can
    both call it in one process without doubling every training report.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.addHandler(handler)
