"""Version string for the CLI.

Installed distributions report their metadata version. A source checkout run
with ``PYTHONPATH=src`` has no metadata, so the version comes from the nearest
``pyproject.toml`` above this file instead.
"""

from __future__ import annotations

from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version as _dist_version
from pathlib import Path

import tomllib

DEFAULT_VERSION = "0.0.0"


@lru_cache(maxsize=1)
def find_pyproject() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


def _source_version(pyproject: Path | None) -> str:
    if pyproject is None:
        return DEFAULT_VERSION
    try:
        with pyproject.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return DEFAULT_VERSION
    return str(data.get("project", {}).get("version", DEFAULT_VERSION))


def get_app_version(package_name: str = "chatrelay") -> str:
    try:
        return _dist_version(package_name)
    except PackageNotFoundError:
        return _source_version(find_pyproject())
