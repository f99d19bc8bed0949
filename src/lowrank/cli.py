from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
import pandas as pd

from ..features import load_item_features
from ..paths import ProjectPaths, get_repo_root
from ..utils import ReproducibilityConfig, setup_logging
from .approximator import approximate_user_latent, ratings_to_row
from .errors import DataError, LowRankError
from .index import parse_rating


logger = logging.getLogger(__name__)


def parse_rating_arg(text: str) -> tuple[int, float]:
    """Parse `MOVIE_ID=RATING`; the rating must be finite and positive."""
    try:
        movie_id, rating = text.split("=", 1)
        return int(movie_id), parse_rating(rating)
    except DataError as exc:
        raise argparse.ArgumentTypeError(f"bad rating in {text!r}: {exc}") from exc
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected MOVIE_ID=RATING, got {text!r}") from exc


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Approximate a new user's preferences from a few movie ratings")
    p.add_argument(
        "--rating",
        type=parse_rating_arg,
        action="append",
        required=True,
        metavar="MOVIE_ID=RATING",
        help="A rating by the new user; repeat for several movies",
    )
    p.add_argument("--k", type=int, default=10, help="How many unseen movies to show")
    p.add_argument("--features", type=Path, default=None, help="features.csv from the build pipeline")
    p.add_argument("--popularity", type=Path, default=None, help="popularity.csv for titles")
    p.add_argument("--steps", type=int, default=200, help="Gradient descent steps")
    p.add_argument("--epoch-size", type=int, default=50, help="Steps between loss reports")
    p.add_argument("--reg", type=float, default=0.03, help="Regularization strength")
    p.add_argument("--lr", type=float, default=1e-3, help="Learning rate")
    p.add_argument("--seed", type=int, default=42, help="Seed for the initial user vector")
    return p


def recommend_for_new_user(args: argparse.Namespace) -> pd.DataFrame:
    features_path = args.features
    popularity_path = args.popularity
    if features_path is None or popularity_path is None:
        lowrank_dir = ProjectPaths.from_repo_root(get_repo_root()).lowrank_dir
        features_path = features_path or (lowrank_dir / "features.csv")
        popularity_path = popularity_path or (lowrank_dir / "popularity.csv")

    features = load_item_features(features_path)
    ratings = dict(args.rating)
    row, unknown = ratings_to_row(ratings, features.index_map())
    if unknown:
        logger.warning("Ignoring %d movies without features: %s", len(unknown), unknown)

    approx = approximate_user_latent(
        features.matrix,
        row,
        steps=args.steps,
        epoch_size=args.epoch_size,
        reg=args.reg,
        learning_rate=args.lr,
        rng=ReproducibilityConfig(seed=args.seed).rng(),
    )

    df = pd.DataFrame({"movieId": features.item_ids, "score": approx.predicted})
    df = df[~df["movieId"].isin(list(ratings))]
    if Path(popularity_path).exists():
        pop = pd.read_csv(popularity_path)
        df = df.merge(pop[["movieId", "title", "num_rating"]], on="movieId", how="left")
    df = df.sort_values("score", ascending=False, kind="stable").head(int(args.k))
    df["score"] = np.round(df["score"].astype(float), 4)
    return df.reset_index(drop=True)


def main(argv: list[str] | None = None) -> None:
    setup_logging("INFO")
    args = build_arg_parser().parse_args(argv)
    try:
        recs = recommend_for_new_user(args)
    except (LowRankError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    print("\n=== Recommended Movies ===")
    if recs.empty:
        print("No recommendations found.")
    else:
        print(recs.to_string(index=False))


if __name__ == "__main__":
    main()
