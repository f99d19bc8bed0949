from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from src.data import load_raw_data, split_title_and_year
from src.features import load_item_features
from src.lowrank import cli
from src.lowrank.errors import DataError
from src.lowrank.sparse import SparseFactorizer
from src.lowrank.train import LowRankTrainConfig, fit_lowrank, train_lowrank
from src.pipelines import lowrank_build


RATINGS_CSV = """userId,movieId,rating,timestamp
1,1,5.0,964982703
1,2,3.0,964981247
1,3,4.0,964982224
2,1,4.0,964982931
2,3,1.0,964982400
2,4,2.5,964980868
3,2,4.5,964982176
3,4,3.5,964984041
3,5,5.0,964984100
4,1,2.0,964983815
4,5,4.0,964982931
x,5,4.0,964982931
5,3,oops,964982931
"""

MOVIES_CSV = """movieId,title,genres
1,Toy Story (1995),Adventure|Animation
2,Jumanji (1995),Adventure|Children
3,Grumpier Old Men (1995),Comedy|Romance
4,Heat (1995),Action|Crime
5,Sabrina,Comedy
"""


@pytest.fixture()
def raw_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data" / "raw"
    d.mkdir(parents=True)
    (d / "ratings.csv").write_text(RATINGS_CSV)
    (d / "movies.csv").write_text(MOVIES_CSV)
    return d


def _small_cfg(**kw) -> LowRankTrainConfig:
    base = dict(latent_dim=2, steps=30, epoch_size=10, regularization=0.01, learning_rate=0.01, test_ratio=0.2, seed=0)
    base.update(kw)
    return LowRankTrainConfig(**base)


def test_split_title_and_year() -> None:
    assert split_title_and_year("Heat (1995)") == ("Heat", 1995)
    assert split_title_and_year("Sabrina") == ("Sabrina", None)


def test_load_raw_data_errors(tmp_path: Path) -> None:
    with pytest.raises(DataError):
        load_raw_data(tmp_path)

    (tmp_path / "ratings.csv").write_text("user,movie\n1,2\n")
    with pytest.raises(DataError):
        load_raw_data(tmp_path)


def test_load_raw_data_without_movies_file(tmp_path: Path) -> None:
    (tmp_path / "ratings.csv").write_text("userId,movieId,rating\n1,2,3.0\n")
    data = load_raw_data(tmp_path)
    assert len(data.ratings) == 1
    assert data.movies.empty


def test_train_lowrank_writes_artifacts(raw_dir: Path, tmp_path: Path) -> None:
    data = load_raw_data(raw_dir)
    out_dir = tmp_path / "artifacts"

    artifacts = train_lowrank(data, out_dir=out_dir, cfg=_small_cfg())

    meta = json.loads(artifacts.meta_path.read_text())
    assert meta["n_users"] == 4
    assert meta["n_items"] == 5
    assert meta["n_train"] + meta["n_test"] == 11
    assert meta["latent_dim"] == 2
    assert meta["index_summary"]["skipped"] == {"bad_id": 1, "bad_rating": 1}
    assert meta["train_config"]["steps"] == 30

    features = load_item_features(artifacts.features_path)
    assert features.item_ids == [1, 2, 3, 4, 5]
    assert features.matrix.shape == (5, 2)

    popularity = artifacts.popularity_path.read_text().splitlines()
    assert popularity[0] == "movieId,num_rating,average_rating,title,year"
    assert popularity[1].startswith("1,3,")


def test_fit_lowrank_sparse_mode(raw_dir: Path) -> None:
    rows = [(1, 1, 5.0), (1, 2, 3.0), (2, 1, 4.0), (2, 2, 1.0), (3, 2, 2.0)]
    result = fit_lowrank(rows, cfg=_small_cfg(sparse=True, test_ratio=0.0), reporter=lambda _r: None)

    assert isinstance(result.model, SparseFactorizer)
    assert result.index.rating_matrix is None
    assert [r.step for r in result.history] == [0, 10, 20]


def test_config_from_mapping_with_overrides() -> None:
    cfg = LowRankTrainConfig.from_mapping(
        {"latent_dim": "4", "steps": 10, "learning_rate": "1e-3", "unknown": 1},
        steps=20,
        seed=None,
    )
    assert cfg.latent_dim == 4
    assert cfg.steps == 20
    assert cfg.learning_rate == pytest.approx(1e-3)
    assert cfg.seed == 42


@pytest.mark.parametrize("raw, expected", [("false", False), ("True", True), ("no", False), (1, True), (False, False)])
def test_config_sparse_flag_parses_yaml_strings(raw, expected: bool) -> None:
    assert LowRankTrainConfig.from_mapping({"sparse": raw}).sparse is expected


def test_config_sparse_flag_rejects_unknown_values() -> None:
    with pytest.raises(ValueError):
        LowRankTrainConfig.from_mapping({"sparse": "maybe"})


def test_build_pipeline_and_new_user_cli(raw_dir: Path, tmp_path: Path, monkeypatch, capsys) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "dataset:\n"
        f"  raw_dir: {raw_dir.as_posix()}\n"
        "lowrank:\n"
        "  latent_dim: 2\n"
        "  steps: 20\n"
        "  epoch_size: 10\n"
        "  learning_rate: 0.01\n"
        "  seed: 1\n"
    )
    monkeypatch.chdir(tmp_path)
    out_dir = tmp_path / "artifacts" / "lowrank"

    lowrank_build.main(["--config", str(config), "--out-dir", str(out_dir), "--steps", "15"])

    meta = json.loads((out_dir / "lowrank_meta.json").read_text())
    assert meta["train_config"]["steps"] == 15
    assert meta["train_config"]["latent_dim"] == 2

    cli.main(
        [
            "--rating",
            "1=5",
            "--rating",
            "2=1.5",
            "--features",
            str(out_dir / "features.csv"),
            "--popularity",
            str(out_dir / "popularity.csv"),
            "--k",
            "2",
            "--steps",
            "20",
            "--epoch-size",
            "10",
        ]
    )
    out = capsys.readouterr().out
    assert "=== Recommended Movies ===" in out
    assert "Toy Story" not in out
    assert "Jumanji" not in out


def test_build_pipeline_exits_on_unreadable_data(tmp_path: Path, monkeypatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(f"dataset:\n  raw_dir: {(tmp_path / 'missing').as_posix()}\n")
    monkeypatch.chdir(tmp_path)

    with pytest.raises(SystemExit):
        lowrank_build.main(["--config", str(config)])


def test_parse_rating_arg() -> None:
    assert cli.parse_rating_arg("12=4.5") == (12, 4.5)
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_rating_arg("12:4.5")


@pytest.mark.parametrize("text", ["2=nan", "2=0", "2=-3", "2=inf"])
def test_parse_rating_arg_rejects_unusable_ratings(text: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_rating_arg(text)
