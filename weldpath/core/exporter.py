from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime
import json
import pathlib
from typing import Dict, Optional, Tuple

import numpy as np

from .errors import InvalidInput
from .utils import get_logger

_log = get_logger()

TRAJECTORY_TIME_STEP = 0.01  # s, 100 Hz nominal


def _prepare(path: str | pathlib.Path) -> pathlib.Path:
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _joint_table(joints: np.ndarray, reachable: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    q = np.asarray(joints, dtype=np.float64)
    if q.ndim != 2 or q.shape[1] != 6:
        raise InvalidInput(f"joints must have shape (N, 6), got {q.shape}")
    if reachable is None:
        flags = np.ones(len(q), dtype=bool)
    else:
        flags = np.asarray(reachable, dtype=bool)
        if flags.shape != (len(q),):
            raise InvalidInput(f"reachable has {flags.shape[0] if flags.ndim else 0} entries for {len(q)} joint rows")
    return q, flags


def export_path_csv(path: str | pathlib.Path, positions: np.ndarray, normals: np.ndarray) -> pathlib.Path:
    pos = np.asarray(positions, dtype=np.float64)
    nrm = np.asarray(normals, dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3 or nrm.shape != pos.shape:
        raise InvalidInput(f"positions {pos.shape} and normals {nrm.shape} must both be (N, 3)")
    path = _prepare(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write("Index,X,Y,Z,NormalX,NormalY,NormalZ\n")
        for i, (p, n) in enumerate(zip(pos, nrm)):
            f.write(f"{i},{p[0]:.6f},{p[1]:.6f},{p[2]:.6f},{n[0]:.6f},{n[1]:.6f},{n[2]:.6f}\n")
    _log.info("Wrote %d path points to %s", len(pos), path.name)
    return path


def export_path_json(
    path: str | pathlib.Path,
    positions: np.ndarray,
    normals: Optional[np.ndarray] = None,
) -> pathlib.Path:
    """``{"weldingPath": {"pointCount": N, "points": [{x, y, z[, nx, ny, nz]}, ...]}}``.

    Normals are included only when there is one per position.
    """
    pos = np.asarray(positions, dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise InvalidInput(f"positions must have shape (N, 3), got {pos.shape}")
    nrm = None if normals is None else np.asarray(normals, dtype=np.float64)
    if nrm is not None and nrm.shape != pos.shape:
        nrm = None
    points = []
    for i, p in enumerate(pos):
        entry = {"x": round(float(p[0]), 6), "y": round(float(p[1]), 6), "z": round(float(p[2]), 6)}
        if nrm is not None:
            n = nrm[i]
            entry.update(nx=round(float(n[0]), 6), ny=round(float(n[1]), 6), nz=round(float(n[2]), 6))
        points.append(entry)
    path = _prepare(path)
    document = {"weldingPath": {"pointCount": len(points), "points": points}}
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    _log.info("Wrote %d path points to %s", len(pos), path.name)
    return path


def export_trajectory_csv(
    path: str | pathlib.Path,
    joints: np.ndarray,
    reachable: Optional[np.ndarray] = None,
    time_step: float = TRAJECTORY_TIME_STEP,
) -> pathlib.Path:
    """Joint trajectory with radians, degrees and the reachable flag per row."""
    q, flags = _joint_table(joints, reachable)
    path = _prepare(path)
    header = ["Index", "Time"]
    header += [f"Joint{j + 1}_rad" for j in range(6)]
    header += [f"Joint{j + 1}_deg" for j in range(6)]
    header.append("Reachable")
    deg = np.rad2deg(q)
    with open(path, "w", encoding="utf-8") as f:
        f.write(",".join(header) + "\n")
        for i in range(len(q)):
            cols = [str(i), f"{i * time_step:.4f}"]
            cols += [f"{v:.6f}" for v in q[i]]
            cols += [f"{v:.4f}" for v in deg[i]]
            cols.append("1" if flags[i] else "0")
            f.write(",".join(cols) + "\n")
    _log.info("Wrote %d trajectory rows to %s", len(q), path.name)
    return path


def export_urscript(
    path: str | pathlib.Path,
    joints: np.ndarray,
    reachable: Optional[np.ndarray] = None,
    acceleration: float = 1.2,
    velocity: float = 0.25,
    tcp: Tuple[float, ...] = (0.0, 0.0, 0.15, 0.0, 0.0, 0.0),
    payload: float = 2.0,
) -> pathlib.Path:
    """Universal Robots program with one ``movej`` per reachable row."""
    q, flags = _joint_table(joints, reachable)
    path = _prepare(path)
    rows = q[flags]
    tcp_txt = ",".join(f"{v:g}" for v in tcp)
    with open(path, "w", encoding="utf-8") as f:
        f.write("# weldpath robot program\n")
        f.write(f"# Generated: {datetime.now():%Y-%m-%d %H:%M:%S}\n")
        f.write(f"# Points: {len(rows)}\n\n")
        f.write("def weldpath_program():\n")
        f.write(f"  set_tcp(p[{tcp_txt}])\n")
        f.write(f"  set_payload({payload:g})\n\n")
        for j in rows:
            values = ",".join(f"{v:.6f}" for v in j)
            f.write(f"  movej([{values}], a={acceleration:g}, v={velocity:g})\n")
        f.write("end\n\nweldpath_program()\n")
    _log.info("Wrote URScript with %d moves to %s", len(rows), path.name)
    return path


def export_krl(
    path: str | pathlib.Path,
    joints: np.ndarray,
    reachable: Optional[np.ndarray] = None,
    velocity_cp: float = 0.2,
    approximation_mm: float = 5.0,
) -> pathlib.Path:
    """KUKA KRL program with one ``PTP`` per reachable row (axis values in degrees)."""
    q, flags = _joint_table(joints, reachable)
    path = _prepare(path)
    rows = np.rad2deg(q[flags])
    with open(path, "w", encoding="utf-8") as f:
        f.write("&ACCESS RVP\n&REL 1\n")
        f.write("DEF WELDPATH()\n\n")
        f.write("; weldpath robot program\n")
        f.write(f"; Generated: {datetime.now():%Y-%m-%d %H:%M:%S}\n")
        f.write(f"; Points: {len(rows)}\n\n")
        f.write(f"$VEL.CP = {velocity_cp:g}\n")
        f.write(f"$APO.CDIS = {approximation_mm:g}\n\n")
        for a in rows:
            axes = ", ".join(f"A{k + 1} {a[k]:.2f}" for k in range(6))
            f.write(f"PTP {{{axes}}}\n")
        f.write("\nEND\n")
    _log.info("Wrote KRL with %d moves to %s", len(rows), path.name)
    return path


def export_npz(path: str | pathlib.Path, arrays: Dict[str, np.ndarray]) -> pathlib.Path:
    if not arrays:
        raise InvalidInput("nothing to export")
    path = _prepare(path)
    np.savez_compressed(path, **{k: np.asarray(v) for k, v in arrays.items()})
    return path


@dataclass(frozen=True)
class RunReport:
    """Summary of one pipeline run. Times are milliseconds."""

    input_file: str
    input_points: int
    processed_points: int
    voxel_size: float
    vertex_count: int
    triangle_count: int
    path_points: int
    path_length: float
    robot: str
    trajectory_points: int
    reachable_points: int
    success: bool = True
    error: str = ""
    timings: Dict[str, float] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: f"{datetime.now():%Y-%m-%d %H:%M:%S}")

    @property
    def ik_success_rate(self) -> float:
        return self.reachable_points / self.trajectory_points if self.trajectory_points else 0.0


def _report_text(report: RunReport) -> str:
    t = report.timings
    rule = "=" * 40
    lines = [
        rule,
        "   WELDPATH PIPELINE REPORT",
        rule,
        "",
        f"Generated: {report.timestamp}",
        "",
        "--- INPUT ---",
        f"Point Cloud Points: {report.input_points:,}",
        f"Input File: {report.input_file}",
        "",
        "--- PROCESSING ---",
        f"Filtered Points: {report.processed_points:,}",
        f"Voxel Size: {report.voxel_size:.4f} m",
        f"Processing Time: {t.get('processing', 0.0):.1f} ms",
        "",
        "--- MESH ---",
        f"Vertices: {report.vertex_count:,}",
        f"Triangles: {report.triangle_count:,}",
        f"Mesh Generation Time: {t.get('mesh', 0.0):.1f} ms",
        "",
        "--- PATH ---",
        f"Path Points: {report.path_points:,}",
        f"Path Length: {report.path_length:.3f} m",
        f"Path Planning Time: {t.get('path', 0.0):.1f} ms",
        "",
        "--- ROBOT ---",
        f"Robot Type: {report.robot}",
        f"Trajectory Points: {report.trajectory_points:,}",
        f"IK Success Rate: {report.ik_success_rate:.1%}",
        f"Trajectory Calculation Time: {t.get('trajectory', 0.0):.1f} ms",
        "",
        "--- TOTALS ---",
        f"Total Processing Time: {t.get('total', 0.0):.1f} ms",
        f"Status: {'SUCCESS' if report.success else 'FAILED'}",
    ]
    if report.error:
        lines.append(f"Error: {report.error}")
    lines += ["", rule, ""]
    return "\n".join(lines)


def export_report(path: str | pathlib.Path, report: RunReport) -> pathlib.Path:
    """Plain-text run report, or JSON when ``path`` ends in ``.json``."""
    path = _prepare(path)
    if path.suffix.lower() == ".json":
        data = asdict(report)
        data["ik_success_rate"] = report.ik_success_rate
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    else:
        path.write_text(_report_text(report), encoding="utf-8")
    _log.info("Wrote run report to %s", path.name)
    return path
