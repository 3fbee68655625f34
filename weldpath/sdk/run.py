from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Union

import numpy as np

from ..config import PipelineConfig, load_config
from ..core.exporter import (
    RunReport,
    export_krl,
    export_npz,
    export_path_csv,
    export_path_json,
    export_report,
    export_trajectory_csv,
    export_urscript,
)
from ..engine.base import GeometryEngine
from ..pipeline import PipelineOrchestrator, PipelineResult, PipelineState, ProgressEvent
from ..pipeline.orchestrator import PointSource
from ..runtime.builders import build_engine

OUTPUT_FILES = {
    "mesh": "mesh.ply",
    "mesh_stl": "mesh.stl",
    "path": "path.csv",
    "path_json": "path.json",
    "trajectory": "trajectory.csv",
    "urscript": "program.script",
    "krl": "program.src",
    "bundle": "results.npz",
    "report": "report.txt",
    "report_json": "report.json",
}


@dataclass(frozen=True)
class PipelineRunSummary:
    """Outcome of a synchronous pipeline run."""

    state: PipelineState
    engine: str
    input_points: int
    processed_points: int
    vertex_count: int
    triangle_count: int
    waypoint_count: int
    reachable_count: int
    config: PipelineConfig
    result: PipelineResult
    outputs: Dict[str, Path] = field(default_factory=dict)


def build_report(result: PipelineResult, input_file: str = "") -> RunReport:
    positions = result.path_positions
    length = float(np.linalg.norm(np.diff(positions, axis=0), axis=1).sum()) if len(positions) > 1 else 0.0
    return RunReport(
        input_file=input_file,
        input_points=result.input_points,
        processed_points=result.processed_points,
        voxel_size=result.config.voxel_size,
        vertex_count=result.mesh.vertex_count,
        triangle_count=result.mesh.triangle_count,
        path_points=len(positions),
        path_length=length,
        robot=result.config.robot_preset.value,
        trajectory_points=len(result.joints),
        reachable_points=int(np.count_nonzero(result.reachability)),
        timings=dict(result.timings),
    )


def export_results(
    result: PipelineResult, output_dir: Union[str, Path], input_file: str = ""
) -> Dict[str, Path]:
    """Write meshes, path, trajectory, robot programs, an NPZ bundle and run reports."""

    out = Path(output_dir).resolve()
    out.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}
    written["mesh"] = result.mesh.save(out / OUTPUT_FILES["mesh"])
    written["mesh_stl"] = result.mesh.save(out / OUTPUT_FILES["mesh_stl"])
    written["path"] = export_path_csv(out / OUTPUT_FILES["path"], result.path_positions, result.path_normals)
    written["path_json"] = export_path_json(
        out / OUTPUT_FILES["path_json"], result.path_positions, result.path_normals
    )
    written["trajectory"] = export_trajectory_csv(out / OUTPUT_FILES["trajectory"], result.joints, result.reachability)
    written["urscript"] = export_urscript(out / OUTPUT_FILES["urscript"], result.joints, result.reachability)
    written["krl"] = export_krl(out / OUTPUT_FILES["krl"], result.joints, result.reachability)
    written["bundle"] = export_npz(
        out / OUTPUT_FILES["bundle"],
        {
            "mesh_vertices": result.mesh.vertices,
            "mesh_triangles": result.mesh.triangles,
            "path_positions": result.path_positions,
            "path_normals": result.path_normals,
            "joints": result.joints,
            "reachable": result.reachability,
        },
    )
    report = build_report(result, input_file)
    written["report"] = export_report(out / OUTPUT_FILES["report"], report)
    written["report_json"] = export_report(out / OUTPUT_FILES["report_json"], report)
    return written


def run_pipeline(
    source: PointSource,
    config: Union[str, Path, PipelineConfig, None] = None,
    *,
    engine: Union[str, GeometryEngine, None] = None,
    output_dir: Optional[Union[str, Path]] = None,
    listener: Optional[Callable[[ProgressEvent], None]] = None,
    poll_interval: float = 0.05,
) -> PipelineRunSummary:
    """Run the full pipeline and wait for it to finish.

    Parameters
    ----------
    source:
        Point file path (``.ply``, ``.pcd`` or ``.xyz``), a
        :class:`~weldpath.core.pointset.PointSet` or an ``(N, 3)`` array.
    config:
        Path to a YAML configuration or a :class:`~weldpath.config.PipelineConfig`.
        Defaults to ``PipelineConfig()``.
    engine:
        Engine name (``auto``, ``reference``, ``open3d``) or an engine instance.
    output_dir:
        When given, results are written there (see :data:`OUTPUT_FILES`).
    listener:
        Receives every progress event, in order, on the calling thread.

    Returns
    -------
    PipelineRunSummary
        Counts, the resolved configuration, the read-only result and any
        written output paths.

    Raises the original pipeline error if the run ends in the Error state.
    """

    if config is None:
        cfg = PipelineConfig()
    elif isinstance(config, PipelineConfig):
        cfg = config.model_copy(deep=True)
    else:
        cfg = load_config(config)

    eng = engine if engine is not None and not isinstance(engine, str) else build_engine(engine or "auto")

    with PipelineOrchestrator(engine=eng, config=cfg) as orchestrator:
        if listener is not None:
            orchestrator.subscribe(listener)
        run = orchestrator.run(source, cfg)
        while not run.wait(poll_interval):
            orchestrator.drain_events()
        orchestrator.drain_events()
        result = run.result()
        state = orchestrator.state

    input_file = str(source) if isinstance(source, (str, Path)) else type(source).__name__
    outputs = export_results(result, output_dir, input_file) if output_dir is not None else {}
    return PipelineRunSummary(
        state=state,
        engine=eng.name,
        input_points=result.input_points,
        processed_points=result.processed_points,
        vertex_count=result.mesh.vertex_count,
        triangle_count=result.mesh.triangle_count,
        waypoint_count=len(result.waypoints),
        reachable_count=int(np.count_nonzero(result.reachability)),
        config=cfg,
        result=result,
        outputs=outputs,
    )
