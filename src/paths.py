from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ProjectPaths:
    raw_dir: Path
    artifacts_dir: Path
    lowrank_dir: Path

    @classmethod
    def from_repo_root(
        cls,
        repo_root: Path,
        *,
        raw_dir: Path | str = "data/raw",
        artifacts_dir: Path | str = "artifacts",
    ) -> "ProjectPaths":
        def _resolve(p: Path | str) -> Path:
            p_path = Path(p) if isinstance(p, str) else p
            if not p_path.is_absolute():
                p_path = repo_root / p_path
            return p_path.resolve()

        raw_dir_p = _resolve(raw_dir)
        artifacts_dir_p = _resolve(artifacts_dir)
        return cls(
            raw_dir=raw_dir_p,
            artifacts_dir=artifacts_dir_p,
            lowrank_dir=artifacts_dir_p / "lowrank",
        )


ROOT_MARKERS = ("config.yaml", "pyproject.toml", ".git")


def _find_root(start: Path) -> Path | None:
    if start.is_file():
        start = start.parent
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in ROOT_MARKERS):
            return candidate
    return None


def get_repo_root(start: Path | None = None) -> Path:
    """Nearest directory at or above `start` holding one of ROOT_MARKERS.

    Without `start` the working directory is tried first, then the directory
    of this module, so the CLIs still find their artifacts when run from
    elsewhere.
    """
    starts = [Path(start)] if start is not None else [Path.cwd(), Path(__file__).parent]
    for s in starts:
        root = _find_root(s.resolve())
        if root is not None:
            return root
    raise FileNotFoundError(f"No {', '.join(ROOT_MARKERS)} found above {', '.join(str(s) for s in starts)}")
