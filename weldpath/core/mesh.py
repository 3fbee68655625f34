from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import trimesh  # type: ignore

from .errors import InvalidInput, UnsupportedFormat
from .utils import get_logger

_log = get_logger()

SUPPORTED_MESH_FORMATS = (".ply", ".obj", ".stl")


@dataclass
class SurfaceMesh:
    """Triangle mesh produced by surface reconstruction.

    ``densities`` is an optional per-vertex support metric used to trim
    sparsely supported regions. Triangles with repeated indices are dropped on
    construction.
    """
    vertices: np.ndarray                       # (N, 3)
    triangles: np.ndarray                      # (M, 3) int
    normals: Optional[np.ndarray] = None       # (N, 3)
    uvs: Optional[np.ndarray] = None           # (N, 2)
    densities: Optional[np.ndarray] = None     # (N,)

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        tris = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)
        n = len(self.vertices)
        if tris.size and (tris.min() < 0 or tris.max() >= n):
            raise InvalidInput(f"triangle index out of range for {n} vertices")
        keep = (tris[:, 0] != tris[:, 1]) & (tris[:, 1] != tris[:, 2]) & (tris[:, 0] != tris[:, 2])
        self.triangles = tris[keep]
        for name, width in (("normals", 3), ("uvs", 2)):
            v = getattr(self, name)
            if v is not None:
                v = np.asarray(v, dtype=np.float64).reshape(-1, width)
                if len(v) != n:
                    raise InvalidInput(f"{name} length {len(v)} != {n}")
                setattr(self, name, v)
        if self.densities is not None:
            d = np.asarray(self.densities, dtype=np.float64).reshape(-1)
            if len(d) != n:
                raise InvalidInput(f"densities length {len(d)} != {n}")
            self.densities = d

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def copy(self) -> "SurfaceMesh":
        return SurfaceMesh(
            vertices=self.vertices.copy(),
            triangles=self.triangles.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            uvs=None if self.uvs is None else self.uvs.copy(),
            densities=None if self.densities is None else self.densities.copy(),
        )

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.vertex_count == 0:
            raise InvalidInput("mesh has no vertices")
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def _face_cross(self) -> np.ndarray:
        v = self.vertices
        t = self.triangles
        return np.cross(v[t[:, 1]] - v[t[:, 0]], v[t[:, 2]] - v[t[:, 0]])

    def recalculate_normals(self) -> np.ndarray:
        """Area-weighted vertex normals; untouched vertices stay zero.

        When a vertex's accumulated normal cancels out, the normal of its
        largest incident face is used instead.
        """
        n = self.vertex_count
        acc = np.zeros((n, 3), dtype=np.float64)
        if self.triangle_count:
            cross = self._face_cross()
            for corner in range(3):
                np.add.at(acc, self.triangles[:, corner], cross)
            lengths = np.linalg.norm(acc, axis=1)
            touched = np.zeros(n, dtype=bool)
            touched[self.triangles.reshape(-1)] = True
            vanished = touched & (lengths == 0.0)
            if vanished.any():
                face_len = np.linalg.norm(cross, axis=1)
                for vi in np.nonzero(vanished)[0]:
                    faces = np.nonzero((self.triangles == vi).any(axis=1))[0]
                    acc[vi] = cross[faces[np.argmax(face_len[faces])]]
                lengths = np.linalg.norm(acc, axis=1)
            nz = lengths > 0.0
            acc[nz] /= lengths[nz, None]
        self.normals = acc
        return acc

    def surface_area(self) -> float:
        if self.triangle_count == 0:
            return 0.0
        return float(0.5 * np.linalg.norm(self._face_cross(), axis=1).sum())

    def simplify(self, merge_distance: float) -> "SurfaceMesh":
        """Weld vertices that quantise to the same grid cell of size ``merge_distance``.

        The first vertex seen in a cell represents it; triangles collapsing onto
        repeated indices disappear.
        """
        if merge_distance <= 0:
            raise InvalidInput("merge_distance must be positive")
        if self.vertex_count == 0:
            return self.copy()
        keys = np.rint(self.vertices / merge_distance).astype(np.int64)
        _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
        inverse = inverse.reshape(-1)
        order = np.argsort(first, kind="stable")
        group_to_new = np.empty(len(first), dtype=np.int64)
        group_to_new[order] = np.arange(len(first))
        remap = group_to_new[inverse]
        reps = first[order]

        mesh = SurfaceMesh(
            vertices=self.vertices[reps],
            triangles=remap[self.triangles],
            uvs=None if self.uvs is None else self.uvs[reps],
            densities=None if self.densities is None else self.densities[reps],
        )
        mesh.recalculate_normals()
        _log.debug("Simplify %.5f: %d -> %d vertices", merge_distance, self.vertex_count, mesh.vertex_count)
        return mesh

    def decimate(self, target_triangles: int, max_rounds: int = 64) -> "SurfaceMesh":
        """Repeat :meth:`simplify` with a growing merge distance until at most
        ``target_triangles`` remain."""
        if target_triangles <= 0 or self.triangle_count <= target_triangles:
            return self.copy()
        v = self.vertices
        t = self.triangles
        edges = np.linalg.norm(v[t[:, 1]] - v[t[:, 0]], axis=1)
        merge = max(float(edges.mean()) * 0.5, 1e-9)
        mesh = self
        for _ in range(max_rounds):
            mesh = mesh.simplify(merge)
            if mesh.triangle_count <= target_triangles:
                break
            merge *= 1.5
        else:
            _log.warning("Decimation stopped at %d triangles (target %d)", mesh.triangle_count, target_triangles)
        return mesh.remove_unreferenced_vertices()

    def remove_unreferenced_vertices(self) -> "SurfaceMesh":
        used = np.zeros(self.vertex_count, dtype=bool)
        used[self.triangles.reshape(-1)] = True
        return self._keep_vertices(used)

    def remove_low_density(self, quantile: float) -> "SurfaceMesh":
        """Keep vertices whose density reaches the given quantile of all densities.

        Quantiles outside (0, 1) leave the mesh untouched.
        """
        if quantile <= 0.0 or quantile >= 1.0:
            return self.copy()
        if self.densities is None:
            raise InvalidInput("mesh carries no density values")
        if self.vertex_count == 0:
            return self.copy()
        ordered = np.sort(self.densities)
        threshold = ordered[int(len(ordered) * quantile)]
        mesh = self._keep_vertices(self.densities >= threshold)
        _log.debug("Density trim q=%.3f: %d -> %d vertices", quantile, self.vertex_count, mesh.vertex_count)
        return mesh

    def _keep_vertices(self, keep: np.ndarray) -> "SurfaceMesh":
        new_index = np.full(self.vertex_count, -1, dtype=np.int64)
        new_index[keep] = np.arange(int(keep.sum()))
        tris = new_index[self.triangles]
        tris = tris[(tris >= 0).all(axis=1)]
        mesh = SurfaceMesh(
            vertices=self.vertices[keep],
            triangles=tris,
            uvs=None if self.uvs is None else self.uvs[keep],
            densities=None if self.densities is None else self.densities[keep],
        )
        mesh.recalculate_normals()
        return mesh

    # -- export --
    def to_trimesh(self) -> "trimesh.Trimesh":
        return trimesh.Trimesh(
            vertices=self.vertices,
            faces=self.triangles,
            vertex_normals=self.normals,
            process=False,
        )

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_MESH_FORMATS:
            raise UnsupportedFormat(f"Unsupported mesh format '{suffix}'")
        if self.normals is None:
            self.recalculate_normals()
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_trimesh().export(str(path), file_type=suffix.lstrip("."))
        _log.info("Wrote mesh (%d vertices, %d triangles) to %s", self.vertex_count, self.triangle_count, path.name)
        return path
