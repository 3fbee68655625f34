from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import trimesh  # type: ignore

from .errors import InvalidInput, UnsupportedFormat
from .utils import ensure_unit_vectors, get_logger

_log = get_logger()

SUPPORTED_POINT_FORMATS = (".ply", ".pcd", ".xyz")


@dataclass
class PointSet:
    """Ordered point sample with optional per-point normals and colors.

    Colors are floats in [0, 1]. Duplicated positions are allowed.
    """
    points: np.ndarray                        # (N, 3)
    normals: Optional[np.ndarray] = None      # (N, 3)
    colors: Optional[np.ndarray] = None       # (N, 3)

    def __post_init__(self) -> None:
        pts = np.asarray(self.points, dtype=np.float64)
        if pts.size == 0:
            pts = np.zeros((0, 3), dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 3:
            raise InvalidInput(f"points must have shape (N, 3), got {pts.shape}")
        self.points = pts
        n = len(self.points)
        for name in ("normals", "colors"):
            v = getattr(self, name)
            if v is None:
                continue
            v = np.asarray(v, dtype=np.float64)
            if v.ndim != 2 or v.shape != (n, 3):
                raise InvalidInput(f"{name} shape {v.shape} does not match {n} points")
            setattr(self, name, v)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def has_colors(self) -> bool:
        return self.colors is not None

    def copy(self) -> "PointSet":
        return PointSet(
            points=self.points.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            colors=None if self.colors is None else self.colors.copy(),
        )

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if len(self) == 0:
            raise InvalidInput("point set is empty")
        return self.points.min(axis=0), self.points.max(axis=0)

    def subset(self, mask_or_index: np.ndarray) -> "PointSet":
        sel = np.asarray(mask_or_index)
        return PointSet(
            points=self.points[sel],
            normals=None if self.normals is None else self.normals[sel],
            colors=None if self.colors is None else self.colors[sel],
        )

    def transform(self, matrix: np.ndarray) -> "PointSet":
        """Apply a 4x4 homogeneous transform; normals are rotated only."""
        m = np.asarray(matrix, dtype=np.float64)
        if m.shape != (4, 4):
            raise InvalidInput("transform must be a 4x4 matrix")
        R = m[:3, :3]
        pts = self.points @ R.T + m[:3, 3]
        nrm = None
        if self.normals is not None:
            nrm = ensure_unit_vectors(self.normals @ R.T)
        colors = None if self.colors is None else self.colors.copy()
        return PointSet(points=pts, normals=nrm, colors=colors)

    # -- filtering --
    def voxel_downsample(self, voxel_size: float) -> "PointSet":
        """Merge all points sharing a voxel into their average.

        Normals are averaged and renormalised, colors are averaged. Output order
        follows the lexicographic order of the voxel keys.
        """
        if voxel_size <= 0:
            raise InvalidInput("voxel_size must be positive")
        if len(self) == 0:
            return self.copy()
        keys = np.floor(self.points / voxel_size).astype(np.int64)
        _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)
        m = len(counts)

        def _average(values: np.ndarray) -> np.ndarray:
            acc = np.zeros((m, values.shape[1]), dtype=np.float64)
            np.add.at(acc, inverse, values)
            return acc / counts[:, None]

        pts = _average(self.points)
        nrm = None
        if self.normals is not None:
            nrm = ensure_unit_vectors(_average(self.normals))
        col = None if self.colors is None else _average(self.colors)
        _log.debug("Voxel downsample %.4f: %d -> %d points", voxel_size, len(self), m)
        return PointSet(points=pts, normals=nrm, colors=col)

    def remove_statistical_outliers(self, nb_neighbors: int, std_ratio: float) -> Tuple["PointSet", np.ndarray]:
        """Drop points whose mean k-neighbour distance exceeds mean + ratio*std.

        Returns the filtered set and the boolean keep mask. Sets with no more
        points than ``nb_neighbors`` are returned unchanged.
        """
        n = len(self)
        keep = np.ones(n, dtype=bool)
        if nb_neighbors <= 0 or n <= nb_neighbors:
            return self.copy(), keep
        from scipy.spatial import cKDTree

        tree = cKDTree(self.points)
        dists, _ = tree.query(self.points, k=nb_neighbors + 1)
        mean_d = dists[:, 1:].mean(axis=1)
        threshold = mean_d.mean() + std_ratio * mean_d.std()
        keep = mean_d <= threshold
        return self.subset(keep), keep

    def estimate_normals(self, k: Optional[int] = 30, radius: Optional[float] = None) -> None:
        """PCA normals from the k nearest neighbours (or all neighbours within ``radius``).

        The smallest-eigenvalue eigenvector of each neighbourhood covariance is
        used. Orientation is arbitrary until :meth:`orient_normals_towards`.
        """
        n = len(self)
        if n < 3:
            raise InvalidInput("normal estimation needs at least 3 points")
        from scipy.spatial import cKDTree

        tree = cKDTree(self.points)
        normals = np.zeros((n, 3), dtype=np.float64)
        if radius is not None:
            if radius <= 0:
                raise InvalidInput("radius must be positive")
            neighbourhoods: Sequence[Sequence[int]] = tree.query_ball_point(self.points, r=radius)
        else:
            kk = min(int(k or 30), n)
            if kk < 3:
                raise InvalidInput("k must be at least 3")
            _, idx = tree.query(self.points, k=kk)
            neighbourhoods = idx

        for i, nb in enumerate(neighbourhoods):
            nb = np.asarray(nb, dtype=np.int64)
            if len(nb) < 3:
                normals[i] = (0.0, 0.0, 1.0)
                continue
            local = self.points[nb]
            cov = np.cov(local - local.mean(axis=0), rowvar=False)
            _, vecs = np.linalg.eigh(cov)
            normals[i] = vecs[:, 0]
        self.normals = ensure_unit_vectors(normals)

    def orient_normals_towards(self, viewpoint: Sequence[float]) -> None:
        if self.normals is None:
            raise InvalidInput("point set has no normals to orient")
        vp = np.asarray(viewpoint, dtype=np.float64).reshape(3)
        flip = np.einsum("ij,ij->i", self.normals, vp - self.points) < 0.0
        self.normals[flip] *= -1.0

    # -- IO --
    @classmethod
    def from_file(cls, path: str | Path) -> "PointSet":
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_POINT_FORMATS:
            raise UnsupportedFormat(f"Unsupported point file format '{suffix}'")
        if not path.exists():
            raise InvalidInput(f"file not found: {path}")
        if suffix == ".ply":
            cloud = _load_ply(path)
        elif suffix == ".pcd":
            cloud = _load_ascii_pcd(path)
        else:
            cloud = _load_xyz(path)
        if len(cloud) == 0:
            raise InvalidInput(f"{path.name} contains no points")
        _log.info("Loaded %d points from %s", len(cloud), path.name)
        return cloud


def _columns(props: list[str], names: Sequence[str]) -> Optional[list[int]]:
    if all(nm in props for nm in names):
        return [props.index(nm) for nm in names]
    return None


def _cloud_from_table(table: np.ndarray, props: list[str]) -> PointSet:
    xyz = _columns(props, ("x", "y", "z"))
    if xyz is None:
        raise InvalidInput("point records need x, y and z fields")
    normals = None
    cols = _columns(props, ("nx", "ny", "nz")) or _columns(props, ("normal_x", "normal_y", "normal_z"))
    if cols is not None:
        normals = table[:, cols]
    colors = None
    cols = _columns(props, ("red", "green", "blue")) or _columns(props, ("r", "g", "b"))
    if cols is not None:
        colors = table[:, cols]
        if colors.size and colors.max() > 1.0:
            colors = colors / 255.0
    return PointSet(points=table[:, xyz], normals=normals, colors=colors)


def _load_ply(path: Path) -> PointSet:
    with open(path, "rb") as f:
        magic = f.readline().strip()
        fmt = f.readline().decode("ascii", errors="replace").strip()
    if magic != b"ply":
        raise InvalidInput(f"{path.name} is not a PLY file")
    if "format ascii" not in fmt:
        loaded = trimesh.load(str(path), process=False)
        vertices = np.asarray(loaded.vertices, dtype=np.float64)
        colors = None
        raw_colors = getattr(loaded, "colors", None)
        if raw_colors is not None and len(raw_colors) == len(vertices):
            colors = np.asarray(raw_colors, dtype=np.float64)[:, :3] / 255.0
        return PointSet(points=vertices, colors=colors)

    with open(path, "r", encoding="utf-8") as f:
        header: list[str] = []
        while True:
            line = f.readline()
            if not line:
                raise InvalidInput("Unexpected EOF while reading PLY header.")
            line = line.strip()
            header.append(line)
            if line == "end_header":
                break

        n_vertices = 0
        vertex_props: list[str] = []
        current_element = None
        for line in header[2:]:
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "element":
                current_element = parts[1]
                if current_element == "vertex":
                    n_vertices = int(parts[2])
            elif parts[0] == "property" and current_element == "vertex":
                vertex_props.append(parts[-1])

        rows = []
        for _ in range(n_vertices):
            parts = f.readline().split()
            if len(parts) < len(vertex_props):
                raise InvalidInput("Vertex line is shorter than the declared properties.")
            rows.append([float(v) for v in parts[: len(vertex_props)]])

    table = np.asarray(rows, dtype=np.float64).reshape(-1, len(vertex_props))
    return _cloud_from_table(table, vertex_props)


def _load_ascii_pcd(path: Path) -> PointSet:
    fields: list[str] = []
    n_points = None
    with open(path, "r", encoding="utf-8") as f:
        while True:
            line = f.readline()
            if not line:
                raise InvalidInput("Unexpected EOF while reading PCD header.")
            parts = line.split()
            if not parts or parts[0].startswith("#"):
                continue
            key = parts[0].upper()
            if key == "FIELDS":
                fields = [p.lower() for p in parts[1:]]
            elif key == "POINTS":
                n_points = int(parts[1])
            elif key == "DATA":
                if parts[1].lower() != "ascii":
                    raise UnsupportedFormat("Only ASCII PCD data is supported.")
                break
        rows = []
        for line in f:
            parts = line.split()
            if not parts:
                continue
            rows.append([float(v) for v in parts[: len(fields)]])
            if n_points is not None and len(rows) >= n_points:
                break
    if not fields:
        raise InvalidInput("PCD header has no FIELDS line")
    table = np.asarray(rows, dtype=np.float64).reshape(-1, len(fields))
    return _cloud_from_table(table, fields)


def _load_xyz(path: Path) -> PointSet:
    table = np.loadtxt(path, dtype=np.float64, ndmin=2, comments="#")
    if table.size == 0:
        return PointSet(points=np.zeros((0, 3)))
    if table.shape[1] < 3:
        raise InvalidInput("XYZ rows need at least three columns")
    normals = table[:, 3:6] if table.shape[1] >= 6 else None
    return PointSet(points=table[:, :3], normals=normals)
