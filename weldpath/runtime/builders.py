from __future__ import annotations

from ..config import PipelineConfig
from ..core.errors import EngineFailure
from ..core.utils import get_logger
from ..engine.base import GeometryEngine, PathSettings, ReconstructionSettings
from ..engine.open3d_engine import Open3DEngine, open3d_available
from ..engine.reference import ReferenceEngine

_log = get_logger()

ENGINE_CHOICES = ("auto", "reference", "open3d")


def build_engine(name: str = "auto") -> GeometryEngine:
    key = (name or "auto").lower()
    if key == "auto":
        if open3d_available():
            try:
                return Open3DEngine()
            except EngineFailure as exc:
                _log.warning("Open3D engine unavailable (%s); using reference engine", exc)
        return ReferenceEngine()
    if key == "reference":
        return ReferenceEngine()
    if key == "open3d":
        return Open3DEngine()
    raise ValueError(f"Unsupported engine: {name}")


def build_reconstruction_settings(cfg: PipelineConfig) -> ReconstructionSettings:
    return ReconstructionSettings(
        depth=cfg.reconstruction_depth,
        density_threshold=cfg.density_threshold,
    )


def build_path_settings(cfg: PipelineConfig) -> PathSettings:
    return PathSettings(
        step_size=cfg.path_step_size,
        weave_pattern=cfg.weave_pattern,
        weave_amplitude=cfg.weave_amplitude,
        weave_frequency=cfg.weave_frequency,
    )
