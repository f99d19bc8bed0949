"""Per-movie latent features and popularity tables for the serving layer."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .lowrank.index import IndexMap, RatingIndex


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemFeatures:
    item_ids: list[int]
    matrix: np.ndarray  # (num_items, K), row j belongs to item_ids[j]

    @property
    def latent_dim(self) -> int:
        return int(self.matrix.shape[1]) if self.matrix.ndim == 2 else 0

    def index_map(self) -> IndexMap:
        index = IndexMap()
        for item_id in self.item_ids:
            index.add(item_id)
        return index


def build_item_feature_table(item_latent: np.ndarray, item_index: IndexMap) -> pd.DataFrame:
    """One row per item: movieId followed by K latent feature columns."""
    item_latent = np.asarray(item_latent, dtype=np.float64)
    if item_latent.shape[0] != len(item_index):
        raise ValueError(
            f"item latent has {item_latent.shape[0]} rows but the index has {len(item_index)} items"
        )
    cols = [f"f{k + 1}" for k in range(item_latent.shape[1])]
    df = pd.DataFrame(item_latent, columns=cols)
    df.insert(0, "movieId", np.asarray(item_index.ids, dtype=np.int64))
    return df


def save_item_features(df: pd.DataFrame, path: Path) -> Path:
    """Write features headerless: `movieId,f1,...,fK` per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, header=False, index=False)
    return path


def load_item_features(path: Path) -> ItemFeatures:
    """Load a features CSV, skipping rows whose id or any feature fails to parse.

    Rows wider than the first line are dropped by the parser; narrower rows
    come back with empty cells and are dropped here.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"features file not found: {path}")

    try:
        raw = pd.read_csv(path, header=None, dtype=str, keep_default_na=False, on_bad_lines="skip")
    except pd.errors.EmptyDataError:
        return ItemFeatures(item_ids=[], matrix=np.zeros((0, 0), dtype=np.float64))

    ids = pd.to_numeric(raw.iloc[:, 0], errors="coerce")
    feats = raw.iloc[:, 1:].apply(pd.to_numeric, errors="coerce")
    if raw.shape[1] < 2:
        ok = pd.Series(False, index=raw.index)
    else:
        ok = ids.notna() & (ids % 1 == 0) & feats.notna().all(axis=1)

    skipped = int((~ok).sum())
    if skipped:
        logger.warning("Skipped %d malformed feature rows in %s", skipped, path)

    item_ids = [int(x) for x in ids[ok].tolist()]
    matrix = feats[ok].to_numpy(dtype=np.float64)
    return ItemFeatures(item_ids=item_ids, matrix=matrix)


def build_popularity_table(index: RatingIndex) -> pd.DataFrame:
    """Rating count and average per item, with title/year when metadata exists."""
    rows = []
    for j, item_id in enumerate(index.item_index.ids):
        meta = index.item_metadata.get(item_id)
        rows.append(
            {
                "movieId": int(item_id),
                "num_rating": int(index.popularity.num_rating[j]),
                "average_rating": float(index.popularity.average_rating[j]),
                "title": None if meta is None else meta.title,
                "year": None if meta is None else meta.year,
            }
        )
    df = pd.DataFrame(rows, columns=["movieId", "num_rating", "average_rating", "title", "year"])
    df["year"] = pd.to_numeric(df["year"], errors="coerce").astype("Int64")
    return df


def save_popularity(df: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
