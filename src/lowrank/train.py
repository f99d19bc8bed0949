from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ..data import RawRatingData, iter_item_rows, iter_rating_rows
from ..features import (
    build_item_feature_table,
    build_popularity_table,
    save_item_features,
    save_popularity,
)
from ..utils import ReproducibilityConfig
from .factorizer import EpochReport, Factorizer, Reporter
from .index import RatingIndex
from .sparse import SparseFactorizer


logger = logging.getLogger(__name__)

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class LowRankTrainConfig:
    latent_dim: int = 10
    steps: int = 100
    epoch_size: int = 10
    regularization: float = 0.03
    learning_rate: float = 1e-5
    test_ratio: float = 0.1
    seed: int | None = 42
    sparse: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None, **overrides: Any) -> "LowRankTrainConfig":
        """Build from a YAML section; non-None keyword overrides win."""
        raw = dict(raw or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            logger.warning("Ignoring unknown lowrank config keys: %s", unknown)

        values = {k: v for k, v in raw.items() if k in known}
        values.update({k: v for k, v in overrides.items() if v is not None})
        cfg = cls(**values)
        return cls(
            latent_dim=int(cfg.latent_dim),
            steps=int(cfg.steps),
            epoch_size=int(cfg.epoch_size),
            regularization=float(cfg.regularization),
            learning_rate=float(cfg.learning_rate),
            test_ratio=float(cfg.test_ratio),
            seed=None if cfg.seed is None else int(cfg.seed),
            sparse=_as_bool(cfg.sparse, "sparse"),
        )


@dataclass(frozen=True)
class LowRankArtifacts:
    features_path: Path
    popularity_path: Path
    meta_path: Path


@dataclass
class FitResult:
    index: RatingIndex
    model: Factorizer | SparseFactorizer
    history: list[EpochReport]


def fit_lowrank(
    rating_rows: Iterable[Sequence[Any]],
    item_rows: Iterable[Sequence[Any]] = (),
    *,
    cfg: LowRankTrainConfig,
    reporter: Reporter | None = None,
) -> FitResult:
    """Index the ratings and train a factorizer on them."""
    rng = ReproducibilityConfig(seed=cfg.seed).rng()
    index = RatingIndex.build(
        rating_rows,
        item_rows,
        test_ratio=cfg.test_ratio,
        rng=rng,
        dense=not cfg.sparse,
    )

    if cfg.sparse:
        model: Factorizer | SparseFactorizer = SparseFactorizer(cfg.latent_dim, index, rng=rng)
    else:
        model = Factorizer(cfg.latent_dim, rating_index=index, rng=rng)

    logger.info(
        "LowRank training: K=%d steps=%d epoch_size=%d reg=%g lr=%g sparse=%s",
        cfg.latent_dim,
        cfg.steps,
        cfg.epoch_size,
        cfg.regularization,
        cfg.learning_rate,
        cfg.sparse,
    )
    history = model.train(
        cfg.steps,
        cfg.epoch_size,
        cfg.regularization,
        cfg.learning_rate,
        reporter=reporter,
    )
    return FitResult(index=index, model=model, history=history)


def save_lowrank_artifacts(result: FitResult, *, out_dir: Path, cfg: LowRankTrainConfig) -> LowRankArtifacts:
    out_dir = Path(out_dir).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    features_path = save_item_features(
        build_item_feature_table(result.model.item_latent, result.index.item_index),
        out_dir / "features.csv",
    )
    popularity_path = save_popularity(build_popularity_table(result.index), out_dir / "popularity.csv")

    final = result.model.loss(cfg.regularization)
    meta = {
        "n_users": result.index.num_users,
        "n_items": result.index.num_items,
        "n_train": result.index.num_train,
        "n_test": result.index.num_test,
        "latent_dim": cfg.latent_dim,
        "final_loss": final.loss,
        "final_rmse": final.rmse,
        "index_summary": result.index.summary.as_dict(),
        "train_config": asdict(cfg),
    }
    meta_path = out_dir / "lowrank_meta.json"
    meta_path.write_text(json.dumps(meta, indent=2, sort_keys=True) + "\n")

    logger.info("LowRank artifacts written to %s (final loss %.4f)", out_dir, final.loss)
    return LowRankArtifacts(features_path=features_path, popularity_path=popularity_path, meta_path=meta_path)


def train_lowrank(
    data: RawRatingData,
    *,
    out_dir: Path,
    cfg: LowRankTrainConfig,
    reporter: Reporter | None = None,
) -> LowRankArtifacts:
    """Train from loaded CSV tables and persist features, popularity and metadata.

    Expected ratings columns: userId, movieId, rating
    """
    result = fit_lowrank(
        iter_rating_rows(data.ratings),
        iter_item_rows(data.movies),
        cfg=cfg,
        reporter=reporter,
    )
    return save_lowrank_artifacts(result, out_dir=out_dir, cfg=cfg)
