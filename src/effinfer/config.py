"""TOML config loading for effinfer.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_NAME = "effinfer.toml"


@dataclass
class PackageConfig:
    name: str = "untitled"


@dataclass
class CheckConfig:
    show_types: bool = False


@dataclass
class OutputConfig:
    color: bool = True


@dataclass
class InferenceConfig:
    workers: int = 1


@dataclass
class EffinferConfig:
    package: PackageConfig = field(default_factory=PackageConfig)
    check: CheckConfig = field(default_factory=CheckConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)


def find_config(start_path: Path | None = None) -> Path:
    """Walk up directories to find effinfer.toml. Raises FileNotFoundError."""
    path = (start_path or Path.cwd()).resolve()
    if path.is_file():
        path = path.parent
    while True:
        candidate = path / CONFIG_NAME
        if candidate.exists():
            return candidate
        parent = path.parent
        if parent == path:
            raise FileNotFoundError(f"No {CONFIG_NAME} found in any parent directory")
        path = parent


def load_config(path: Path) -> EffinferConfig:
    """Parse an effinfer.toml file into an EffinferConfig."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = EffinferConfig()

    if "package" in data:
        pkg = data["package"]
        config.package = PackageConfig(name=pkg.get("name", "untitled"))

    if "check" in data:
        config.check = CheckConfig(show_types=bool(data["check"].get("show_types", False)))

    if "output" in data:
        config.output = OutputConfig(color=bool(data["output"].get("color", True)))

    if "inference" in data:
        workers = data["inference"].get("workers", 1)
        if not isinstance(workers, int) or workers < 1:
            raise ValueError(f"{path}: [inference] workers must be a positive integer")
        config.inference = InferenceConfig(workers=workers)

    return config


def config_for(path: Path) -> EffinferConfig:
    """Config governing *path*, or the defaults when there is none."""
    try:
        return load_config(find_config(path))
    except FileNotFoundError:
        return EffinferConfig()
