"""Pipeline configuration loaded from YAML.

Each component accepts its parameters as constructor keyword arguments.
These dataclasses group the same parameters so a whole pipeline can be
described in one file:

    detector:
      harris_k: 0.06
    tracker:
      search_fraction: 0.1
    ransac:
      num_hypotheses: 500
      seed: 42
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class DetectorConfig:
    """Harris corner detector parameters."""

    harris_k: float = 0.06
    window_size: int = 5  # Non-max suppression window (odd)
    row_buckets: int = 5
    col_buckets: int = 10
    bucket_capacity: int = 100


@dataclass(frozen=True)
class TrackerConfig:
    """SAD patch tracker parameters."""

    patch_radius: int = 5  # 11x11 patches
    search_fraction: float = 0.1  # Search +/- this fraction of H and W


@dataclass(frozen=True)
class RansacConfig:
    """Preemptive RANSAC and refinement parameters."""

    num_hypotheses: int = 500
    sample_size: int = 4
    group_size: int = 10
    preemptive: bool = False
    max_iterations: int = 100
    damping: float = 0.1
    epsilon: float = 0.01
    inlier_threshold: float | None = 3.0
    seed: int | None = None
    num_workers: int = 1


@dataclass(frozen=True)
class VOConfig:
    """Complete visual odometry configuration."""

    detector: DetectorConfig = field(default_factory=DetectorConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    ransac: RansacConfig = field(default_factory=RansacConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VOConfig:
        """Build a configuration from a nested dictionary.

        Missing sections and keys fall back to defaults.

        Raises:
            ValueError: If a section or key is not recognised
        """
        data = data or {}
        sections = {
            "detector": DetectorConfig,
            "tracker": TrackerConfig,
            "ransac": RansacConfig,
        }

        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        kwargs = {}
        for name, section_cls in sections.items():
            kwargs[name] = _build_section(section_cls, data.get(name), name)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> VOConfig:
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file content is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ValueError(f"Configuration must be a mapping: {yaml_path}")

        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration as a nested dictionary."""
        return asdict(self)


def _build_section(section_cls: type, values: dict[str, Any] | None, name: str):
    if values is None:
        return section_cls()
    if not isinstance(values, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")

    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")

    return section_cls(**values)
