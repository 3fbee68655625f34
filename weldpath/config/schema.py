from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.errors import InvalidInput
from ..motion.kinematics import RobotPreset
from ..motion.path import DEFAULT_WEAVE_AMPLITUDE, DEFAULT_WEAVE_FREQUENCY, WeavePattern

CONFIG_VERSION = 1
CONFIG_SUFFIX = ".yaml"

PresetName = Literal["default", "high_quality", "fast_preview"]


class PipelineConfig(BaseModel):
    """Processing parameters for one pipeline run. Lengths are in metres."""

    model_config = ConfigDict(extra="forbid", use_enum_values=False)

    voxel_size: float = Field(0.002, ge=0.0)
    normal_knn: int = Field(30, ge=3)
    outlier_neighbors: int = Field(20, ge=0)
    outlier_std_ratio: float = Field(2.0, gt=0.0)
    reconstruction_depth: int = Field(8, ge=1, le=16)
    density_threshold: float = Field(0.01, ge=0.0, lt=1.0)
    simplify_target: int = Field(0, ge=0)
    path_step_size: float = Field(0.005, gt=0.0)
    standoff_distance: float = Field(0.015, ge=0.0)
    weave_pattern: WeavePattern = WeavePattern.NONE
    weave_amplitude: float = Field(DEFAULT_WEAVE_AMPLITUDE, ge=0.0)
    weave_frequency: float = Field(DEFAULT_WEAVE_FREQUENCY, ge=0.0)
    smooth_window: int = Field(5, ge=0)
    robot_preset: RobotPreset = RobotPreset.UR5

    @model_validator(mode="after")
    def _check_weave(self) -> "PipelineConfig":
        if self.weave_pattern != WeavePattern.NONE and self.weave_frequency <= 0.0:
            raise ValueError("weave_frequency must be positive when a weave pattern is set")
        return self

    @classmethod
    def preset(cls, name: str) -> "PipelineConfig":
        if name not in PRESETS:
            raise InvalidInput(f"Unknown preset '{name}'. Choose from {sorted(PRESETS)}")
        return cls(**PRESETS[name])

    def to_record(self) -> Dict[str, Any]:
        """Flat, versioned mapping suitable for YAML."""
        record: Dict[str, Any] = {"version": CONFIG_VERSION}
        record.update(self.model_dump(mode="json"))
        return record

    @classmethod
    def from_record(cls, record: Any) -> "PipelineConfig":
        if not isinstance(record, dict):
            raise InvalidInput("Configuration root must be a mapping.")
        data = dict(record)
        version = data.pop("version", None)
        if version != CONFIG_VERSION:
            raise InvalidInput(f"Unsupported configuration version {version!r} (expected {CONFIG_VERSION})")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidInput(str(exc)) from exc


PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {},
    "high_quality": {
        "voxel_size": 0.001,
        "normal_knn": 50,
        "outlier_neighbors": 30,
        "outlier_std_ratio": 1.5,
        "reconstruction_depth": 10,
        "density_threshold": 0.005,
        "path_step_size": 0.002,
        "smooth_window": 7,
    },
    "fast_preview": {
        "voxel_size": 0.005,
        "normal_knn": 15,
        "outlier_neighbors": 0,
        "reconstruction_depth": 6,
        "density_threshold": 0.02,
        "simplify_target": 5000,
        "path_step_size": 0.01,
        "smooth_window": 3,
    },
}


def export_config(cfg: PipelineConfig) -> str:
    return yaml.safe_dump(cfg.to_record(), sort_keys=False)


def import_config(text: str) -> PipelineConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidInput(f"Malformed configuration: {exc}") from exc
    return PipelineConfig.from_record(data)


def save_config(cfg: PipelineConfig, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(export_config(cfg))
    return path


def load_config(path: str | Path) -> PipelineConfig:
    path = Path(path)
    if not path.exists():
        raise InvalidInput(f"file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return import_config(f.read())


class ConfigStore:
    """Named configurations kept as ``<name>.yaml`` files in one directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name or name.startswith("."):
            raise InvalidInput(f"Invalid configuration name '{name}'")
        return self.directory / f"{name}{CONFIG_SUFFIX}"

    def save(self, name: str, cfg: PipelineConfig) -> Path:
        return save_config(cfg, self._path(name))

    def load(self, name: str) -> PipelineConfig:
        path = self._path(name)
        if not path.exists():
            raise InvalidInput(f"No configuration named '{name}'")
        return load_config(path)

    def list(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{CONFIG_SUFFIX}"))

    def delete(self, name: str) -> bool:
        path = self._path(name)
        if not path.exists():
            return False
        path.unlink()
        return True
