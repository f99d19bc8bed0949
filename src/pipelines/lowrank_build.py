from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from ..data import load_raw_data
from ..lowrank.errors import LowRankError
from ..lowrank.train import LowRankTrainConfig, train_lowrank
from ..paths import ProjectPaths, get_repo_root
from ..utils import setup_logging


logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train low-rank movie features and export them for serving.")
    p.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to config YAML.")
    p.add_argument("--out-dir", type=Path, default=None, help="Output directory for artifacts")
    p.add_argument("--latent-dim", type=int, default=None, help="Override latent dimension K")
    p.add_argument("--steps", type=int, default=None, help="Override gradient descent steps")
    p.add_argument("--epoch-size", type=int, default=None, help="Override steps between loss reports")
    p.add_argument("--reg", type=float, default=None, help="Override regularization strength")
    p.add_argument("--lr", type=float, default=None, help="Override learning rate")
    p.add_argument("--test-ratio", type=float, default=None, help="Override held-out ratio per user")
    p.add_argument("--seed", type=int, default=None, help="Override random seed")
    p.add_argument("--sparse", action="store_true", help="Train without a dense rating matrix")
    return p


def load_config(config_path: Path) -> dict:
    cfg_yaml = yaml.safe_load(config_path.read_text())
    if not isinstance(cfg_yaml, dict):
        raise ValueError("config.yaml must be a mapping")
    return cfg_yaml


def main(argv: list[str] | None = None) -> None:
    setup_logging("INFO")
    args = build_arg_parser().parse_args(argv)
    repo_root = get_repo_root()
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = (repo_root / config_path).resolve()

    cfg_yaml = load_config(config_path)
    dataset_cfg = cfg_yaml.get("dataset", {}) if isinstance(cfg_yaml.get("dataset"), dict) else {}
    raw_dir = Path(str(dataset_cfg.get("raw_dir", "data/raw")))
    paths = ProjectPaths.from_repo_root(repo_root, raw_dir=raw_dir)

    lowrank_cfg_raw = cfg_yaml.get("lowrank", {}) if isinstance(cfg_yaml.get("lowrank"), dict) else {}
    cfg = LowRankTrainConfig.from_mapping(
        lowrank_cfg_raw,
        latent_dim=args.latent_dim,
        steps=args.steps,
        epoch_size=args.epoch_size,
        regularization=args.reg,
        learning_rate=args.lr,
        test_ratio=args.test_ratio,
        seed=args.seed,
        sparse=True if args.sparse else None,
    )

    out_dir = Path(args.out_dir) if args.out_dir is not None else paths.lowrank_dir
    if not out_dir.is_absolute():
        out_dir = (repo_root / out_dir).resolve()

    try:
        data = load_raw_data(
            paths.raw_dir,
            ratings_file=str(dataset_cfg.get("ratings_file", "ratings.csv")),
            movies_file=str(dataset_cfg.get("movies_file", "movies.csv")),
        )
        logger.info("Building LowRank artifacts to %s", out_dir)
        train_lowrank(data, out_dir=out_dir, cfg=cfg)
    except LowRankError as exc:
        logger.error("LowRank build failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
