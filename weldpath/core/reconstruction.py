from __future__ import annotations
from dataclasses import dataclass
from typing import Union

import numpy as np

from .errors import InvalidInput
from .mesh import SurfaceMesh
from .pointset import PointSet
from .utils import get_logger

_log = get_logger()

# Corner order and edge table of one grid cube; corner i sits at base + offset.
CUBE_CORNERS = np.array(
    [
        (0, 0, 0),
        (1, 0, 0),
        (1, 0, 1),
        (0, 0, 1),
        (0, 1, 0),
        (1, 1, 0),
        (1, 1, 1),
        (0, 1, 1),
    ],
    dtype=np.int64,
)
CUBE_EDGES = (
    (0, 1), (1, 2), (2, 3), (3, 0),
    (4, 5), (5, 6), (6, 7), (7, 4),
    (0, 4), (1, 5), (2, 6), (3, 7),
)


@dataclass
class DistanceField:
    """Unsigned distance samples on the nodes of a regular grid."""
    values: np.ndarray      # (nx, ny, nz), +inf where no point reached
    origin: np.ndarray      # (3,) position of node (0, 0, 0)
    voxel_size: float

    @property
    def shape(self) -> tuple[int, int, int]:
        return tuple(int(s) for s in self.values.shape)  # type: ignore[return-value]

    def node_positions(self, idx: np.ndarray) -> np.ndarray:
        return self.origin + np.asarray(idx, dtype=np.float64) * self.voxel_size


class SurfaceReconstructor:
    """Coarse iso-surface reconstruction from an unsigned distance field.

    Every point lowers the distance of the grid nodes within ``neighborhood``
    cells of its own node. Cubes straddling ``iso_factor * voxel_size`` are
    triangulated as a fan around the centroid of their inside corners. Fan
    winding is not made consistent across cubes.
    """

    def __init__(self, resolution: int = 32, neighborhood: int = 3, iso_factor: float = 1.5) -> None:
        if resolution < 1:
            raise InvalidInput("resolution must be >= 1")
        if neighborhood < 0:
            raise InvalidInput("neighborhood must be >= 0")
        self.resolution = int(resolution)
        self.neighborhood = int(neighborhood)
        self.iso_factor = float(iso_factor)

    def distance_field(self, points: np.ndarray) -> DistanceField:
        pts = _as_points(points)
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        extent = float((hi - lo).max())
        if extent <= 0.0:
            raise InvalidInput("points have zero spatial extent")
        voxel = extent / self.resolution
        dims = np.ceil((hi - lo) / voxel).astype(np.int64) + 2
        origin = lo - voxel
        values = np.full(tuple(dims), np.inf, dtype=np.float64)

        cells = np.rint((pts - origin) / voxel).astype(np.int64)
        cells = np.clip(cells, 0, dims - 1)
        r = self.neighborhood
        span = range(-r, r + 1)
        for dx in span:
            for dy in span:
                for dz in span:
                    nb = cells + np.array((dx, dy, dz), dtype=np.int64)
                    valid = np.all((nb >= 0) & (nb < dims), axis=1)
                    if not valid.any():
                        continue
                    nb = nb[valid]
                    d = np.linalg.norm(origin + nb * voxel - pts[valid], axis=1)
                    np.minimum.at(values, (nb[:, 0], nb[:, 1], nb[:, 2]), d)

        _log.debug("Distance field %s at voxel %.5f", tuple(dims), voxel)
        return DistanceField(values=values, origin=origin, voxel_size=voxel)

    def extract(self, field: DistanceField) -> SurfaceMesh:
        """Fan-triangulate every cube that straddles the iso-level.

        Each active cube contributes the centroid of its inside corners plus
        one vertex per crossed edge. Fan triangles whose area is numerically
        zero (crossings that landed on their inside corner) are dropped, as
        are the vertices only they referenced.
        """
        vals = field.values
        iso = self.iso_factor * field.voxel_size
        nx, ny, nz = field.shape
        if min(nx, ny, nz) < 2:
            raise InvalidInput("no surface: distance field has no cubes")
        inside = vals < iso

        cube_index = np.zeros((nx - 1, ny - 1, nz - 1), dtype=np.int64)
        for bit, (cx, cy, cz) in enumerate(CUBE_CORNERS):
            flag = inside[cx:nx - 1 + cx, cy:ny - 1 + cy, cz:nz - 1 + cz]
            cube_index |= flag.astype(np.int64) << bit
        active = np.argwhere((cube_index != 0) & (cube_index != 255))

        vertices: list[np.ndarray] = []
        triangles: list[tuple[int, int, int]] = []
        for base in active:
            corners = base + CUBE_CORNERS
            cvals = vals[corners[:, 0], corners[:, 1], corners[:, 2]]
            cin = cvals < iso
            cpos = field.node_positions(corners)

            crossings = []
            for a, b in CUBE_EDGES:
                if cin[a] == cin[b]:
                    continue
                va, vb = cvals[a], cvals[b]
                if np.isinf(vb):
                    t = 0.0
                elif np.isinf(va):
                    t = 1.0
                else:
                    t = (iso - va) / (vb - va)
                crossings.append(cpos[a] + t * (cpos[b] - cpos[a]))

            start = len(vertices)
            vertices.append(cpos[cin].mean(axis=0))
            vertices.extend(crossings)
            for i in range(len(crossings) - 1):
                triangles.append((start, start + 1 + i, start + 2 + i))

        if not triangles:
            raise InvalidInput("no surface: iso-level never crossed")

        verts = np.asarray(vertices, dtype=np.float64)
        tris = np.asarray(triangles, dtype=np.int64)
        # drop zero-area fans (crossings collapsed onto their inside corner)
        area2 = np.linalg.norm(
            np.cross(verts[tris[:, 1]] - verts[tris[:, 0]], verts[tris[:, 2]] - verts[tris[:, 0]]),
            axis=1,
        )
        tris = tris[area2 > 1e-12 * field.voxel_size ** 2]
        mesh = SurfaceMesh(vertices=verts, triangles=tris).remove_unreferenced_vertices()
        if mesh.vertex_count < 3:
            raise InvalidInput("no surface: fewer than 3 vertices extracted")
        return mesh

    def reconstruct(self, source: Union[PointSet, np.ndarray]) -> SurfaceMesh:
        """Distance field + extraction, with per-vertex point support as density."""
        pts = source.points if isinstance(source, PointSet) else _as_points(source)
        field = self.distance_field(pts)
        mesh = self.extract(field)

        from scipy.spatial import cKDTree

        tree = cKDTree(pts)
        support = tree.query_ball_point(
            mesh.vertices, r=self.neighborhood * field.voxel_size, return_length=True
        )
        mesh.densities = np.asarray(support, dtype=np.float64)
        _log.info(
            "Reconstructed %d vertices / %d triangles from %d points",
            mesh.vertex_count,
            mesh.triangle_count,
            len(pts),
        )
        return mesh


def _as_points(points: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise InvalidInput(f"points must have shape (N, 3), got {pts.shape}")
    if len(pts) < 4:
        raise InvalidInput(f"surface reconstruction needs at least 4 points, got {len(pts)}")
    if not np.isfinite(pts).all():
        raise InvalidInput("points contain non-finite coordinates")
    return pts
