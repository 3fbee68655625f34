"""Configuration loading utilities for weldpath."""

from .schema import (
    CONFIG_VERSION,
    PRESETS,
    ConfigStore,
    PipelineConfig,
    export_config,
    import_config,
    load_config,
    save_config,
)

__all__ = [
    "CONFIG_VERSION",
    "PRESETS",
    "ConfigStore",
    "PipelineConfig",
    "export_config",
    "import_config",
    "load_config",
    "save_config",
]
