from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np

from ..core.pointset import PointSet
from ..core.utils import ensure_unit_vectors


def _jitter(rng: np.random.Generator, points: np.ndarray, noise: float) -> np.ndarray:
    if noise <= 0.0:
        return points
    return points + rng.uniform(-noise, noise, size=points.shape)


def hemisphere(count: int = 1000, radius: float = 0.5, noise: float = 0.0, seed: Optional[int] = 0) -> PointSet:
    """Upper hemisphere (z >= 0) centred at the origin, uniform over area."""
    rng = np.random.default_rng(seed)
    theta = 2.0 * np.pi * rng.random(count)
    phi = np.arccos(rng.random(count))
    dirs = np.column_stack([
        np.sin(phi) * np.cos(theta),
        np.sin(phi) * np.sin(theta),
        np.cos(phi),
    ])
    return PointSet(points=_jitter(rng, radius * dirs, noise), normals=dirs)


def cylinder(count: int = 1000, radius: float = 0.3, height: float = 1.0, noise: float = 0.0,
             seed: Optional[int] = 0) -> PointSet:
    """Open cylinder along z, centred at the origin."""
    rng = np.random.default_rng(seed)
    theta = 2.0 * np.pi * rng.random(count)
    z = rng.random(count) * height - height / 2.0
    ring = np.column_stack([np.cos(theta), np.sin(theta), np.zeros(count)])
    pts = radius * ring
    pts[:, 2] = z
    return PointSet(points=_jitter(rng, pts, noise), normals=ring)


def vessel_segment(count: int = 2000, outer_radius: float = 0.5, thickness: float = 0.05,
                   height: float = 0.8, noise: float = 0.002, seed: Optional[int] = 0) -> PointSet:
    """Wall section of a reactor vessel: coaxial outer and inner cylinders along z.

    Half the points lie on each surface. Normals point out of the wall, so the
    inner surface faces the axis.
    """
    if thickness <= 0.0 or thickness >= outer_radius:
        raise ValueError("thickness must lie between 0 and the outer radius")
    rng = np.random.default_rng(seed)
    half = count // 2
    theta = 2.0 * np.pi * rng.random(count)
    z = rng.random(count) * height - height / 2.0
    ring = np.column_stack([np.cos(theta), np.sin(theta), np.zeros(count)])
    radius = np.full(count, outer_radius - thickness)
    radius[:half] = outer_radius
    pts = ring * radius[:, None]
    pts[:, 2] = z
    nrm = ring.copy()
    nrm[half:] *= -1.0
    return PointSet(points=_jitter(rng, pts, noise), normals=nrm)

def torus(count: int = 2000, major_radius: float = 0.4, minor_radius: float = 0.1, noise: float = 0.0,
          seed: Optional[int] = 0) -> PointSet:
    rng = np.random.default_rng(seed)
    u = 2.0 * np.pi * rng.random(count)
    v = 2.0 * np.pi * rng.random(count)
    ring = major_radius + minor_radius * np.cos(v)
    pts = np.column_stack([ring * np.cos(u), ring * np.sin(u), minor_radius * np.sin(v)])
    nrm = np.column_stack([np.cos(v) * np.cos(u), np.cos(v) * np.sin(u), np.sin(v)])
    return PointSet(points=_jitter(rng, pts, noise), normals=ensure_unit_vectors(nrm))


def weld_seam(count: int = 2000, length: float = 1.0, width: float = 0.1, noise: float = 0.0,
              seed: Optional[int] = 0) -> PointSet:
    """Fillet joint: a floor plate (z = 0, y >= 0) and a wall plate (y = 0, z >= 0)
    meeting along the x axis."""
    rng = np.random.default_rng(seed)
    half = count // 2
    x = rng.random(count) * length - length / 2.0
    s = rng.random(count) * width
    pts = np.zeros((count, 3))
    nrm = np.zeros((count, 3))
    pts[:, 0] = x
    pts[:half, 1] = s[:half]
    nrm[:half, 2] = 1.0
    pts[half:, 2] = s[half:]
    nrm[half:, 1] = 1.0
    return PointSet(points=_jitter(rng, pts, noise), normals=nrm)


SHAPES: Dict[str, Callable[..., PointSet]] = {
    "hemisphere": hemisphere,
    "cylinder": cylinder,
    "torus": torus,
    "vessel_segment": vessel_segment,
    "weld_seam": weld_seam,
}


def _write_ascii_ply(path: Path, cloud: PointSet) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    has_normals = cloud.normals is not None
    with open(path, "w", encoding="utf-8") as f:
        f.write("ply\n")
        f.write("format ascii 1.0\n")
        f.write(f"element vertex {len(cloud)}\n")
        f.write("property float x\nproperty float y\nproperty float z\n")
        if has_normals:
            f.write("property float nx\nproperty float ny\nproperty float nz\n")
        f.write("end_header\n")
        if has_normals:
            for (x, y, z), (nx, ny, nz) in zip(cloud.points, cloud.normals):
                f.write(f"{x:.6f} {y:.6f} {z:.6f} {nx:.6f} {ny:.6f} {nz:.6f}\n")
        else:
            for x, y, z in cloud.points:
                f.write(f"{x:.6f} {y:.6f} {z:.6f}\n")


def generate_points(shape: str, count: int, path: Path, noise: float = 0.0, seed: Optional[int] = 0) -> PointSet:
    shape = shape.lower()
    if shape not in SHAPES:
        raise ValueError(f"Unknown synthetic shape '{shape}'.")
    cloud = SHAPES[shape](count=count, noise=noise, seed=seed)
    _write_ascii_ply(Path(path), cloud)
    return cloud
