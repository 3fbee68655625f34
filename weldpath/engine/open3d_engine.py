from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ..core.errors import EngineFailure, InvalidInput, UnsupportedFormat
from ..core.mesh import SUPPORTED_MESH_FORMATS, SurfaceMesh
from ..core.pointset import SUPPORTED_POINT_FORMATS
from ..core.utils import get_logger
from .base import EngineHandle, HandleKind, ReconstructionSettings, engine_operation
from .reference import ReferenceEngine

_log = get_logger()

try:
    import open3d as o3d  # type: ignore
    _HAVE_OPEN3D = True
except (ImportError, OSError):
    o3d = None  # type: ignore
    _HAVE_OPEN3D = False


def open3d_available() -> bool:
    return _HAVE_OPEN3D


@dataclass
class _PoissonMesh:
    mesh: "o3d.geometry.TriangleMesh"
    densities: Optional[np.ndarray]


class Open3DEngine(ReferenceEngine):
    """Point and mesh operations through Open3D.

    Poisson reconstruction, density trimming and quadric decimation run in
    Open3D; robot and path operations are inherited from the reference engine
    and only read meshes through :meth:`mesh_data`.
    """

    name = "open3d"

    def __init__(self, **kwargs) -> None:
        if not _HAVE_OPEN3D:
            raise EngineFailure("Open3D is not available. pip install open3d.")
        super().__init__(**kwargs)

    # -- point sets --
    @engine_operation
    def load_points(self, path: str | Path) -> EngineHandle:
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_POINT_FORMATS:
            raise UnsupportedFormat(f"Unsupported point file format '{suffix}'")
        if not path.exists():
            raise InvalidInput(f"file not found: {path}")
        pcd = o3d.io.read_point_cloud(str(path))
        if len(pcd.points) == 0:
            raise InvalidInput(f"{path.name} contains no points")
        _log.info("Loaded %d points from %s", len(pcd.points), path.name)
        return self._handle(HandleKind.POINTS, pcd)

    @engine_operation
    def create_points(self, points: np.ndarray, normals: Optional[np.ndarray] = None,
                      colors: Optional[np.ndarray] = None) -> EngineHandle:
        pcd = _point_cloud(points, normals)
        if colors is not None:
            colors = np.asarray(colors, dtype=np.float64)
            if colors.shape != (len(pcd.points), 3):
                raise InvalidInput(f"colors shape {colors.shape} does not match {len(pcd.points)} points")
            pcd.colors = o3d.utility.Vector3dVector(colors)
        return self._handle(HandleKind.POINTS, pcd)

    @engine_operation
    def set_points(self, handle: EngineHandle, points: np.ndarray,
                   normals: Optional[np.ndarray] = None) -> None:
        self._expect(handle, HandleKind.POINTS)
        handle.replace(_point_cloud(points, normals))

    @engine_operation
    def get_points(self, handle: EngineHandle) -> np.ndarray:
        return np.asarray(self._expect(handle, HandleKind.POINTS).points, dtype=np.float64).copy()

    @engine_operation
    def get_normals(self, handle: EngineHandle) -> Optional[np.ndarray]:
        pcd = self._expect(handle, HandleKind.POINTS)
        if not pcd.has_normals():
            return None
        return np.asarray(pcd.normals, dtype=np.float64).copy()

    @engine_operation
    def estimate_normals(self, handle: EngineHandle, k: Optional[int] = None,
                         radius: Optional[float] = None) -> None:
        pcd = self._expect(handle, HandleKind.POINTS)
        if radius is not None:
            param = o3d.geometry.KDTreeSearchParamRadius(radius=float(radius))
        else:
            param = o3d.geometry.KDTreeSearchParamKNN(knn=int(k if k is not None else 30))
        pcd.estimate_normals(search_param=param)

    @engine_operation
    def orient_normals(self, handle: EngineHandle, viewpoint: Sequence[float]) -> None:
        pcd = self._expect(handle, HandleKind.POINTS)
        pcd.orient_normals_towards_camera_location(np.asarray(viewpoint, dtype=np.float64))

    @engine_operation
    def voxel_downsample(self, handle: EngineHandle, voxel_size: float) -> None:
        if voxel_size <= 0:
            raise InvalidInput("voxel_size must be positive")
        pcd = self._expect(handle, HandleKind.POINTS)
        handle.replace(pcd.voxel_down_sample(voxel_size=float(voxel_size)))

    @engine_operation
    def remove_outliers(self, handle: EngineHandle, nb_neighbors: int, std_ratio: float) -> int:
        pcd = self._expect(handle, HandleKind.POINTS)
        before = len(pcd.points)
        if nb_neighbors <= 0 or before <= nb_neighbors:
            return 0
        kept, _ = pcd.remove_statistical_outlier(nb_neighbors=int(nb_neighbors), std_ratio=float(std_ratio))
        handle.replace(kept)
        return before - len(kept.points)

    # -- meshes --
    @engine_operation
    def reconstruct(self, points: EngineHandle, settings: ReconstructionSettings) -> EngineHandle:
        pcd = self._expect(points, HandleKind.POINTS)
        if len(pcd.points) < 4:
            raise InvalidInput(f"surface reconstruction needs at least 4 points, got {len(pcd.points)}")
        if not pcd.has_normals():
            raise InvalidInput("Poisson reconstruction needs oriented normals")
        mesh, densities = o3d.geometry.TriangleMesh.create_from_point_cloud_poisson(
            pcd,
            depth=int(settings.depth),
            scale=float(settings.scale),
            linear_fit=bool(settings.linear_fit),
        )
        if len(mesh.triangles) == 0:
            raise EngineFailure("Poisson reconstruction produced no triangles")
        _log.info("Poisson depth=%d: %dV %dT", settings.depth, len(mesh.vertices), len(mesh.triangles))
        return self._handle(HandleKind.MESH, _PoissonMesh(mesh, np.asarray(densities, dtype=np.float64)))

    @engine_operation
    def remove_low_density(self, mesh: EngineHandle, quantile: float) -> None:
        poisson: _PoissonMesh = self._expect(mesh, HandleKind.MESH)
        if quantile <= 0.0 or quantile >= 1.0:
            return
        if poisson.densities is None:
            raise InvalidInput("mesh carries no density values")
        threshold = np.quantile(poisson.densities, quantile)
        drop = poisson.densities < threshold
        poisson.mesh.remove_vertices_by_mask(drop)
        poisson.densities = poisson.densities[~drop]

    @engine_operation
    def simplify(self, mesh: EngineHandle, target_triangles: int) -> None:
        poisson: _PoissonMesh = self._expect(mesh, HandleKind.MESH)
        if target_triangles <= 0 or len(poisson.mesh.triangles) <= target_triangles:
            return
        reduced = poisson.mesh.simplify_quadric_decimation(target_number_of_triangles=int(target_triangles))
        mesh.replace(_PoissonMesh(reduced, None))

    @engine_operation
    def mesh_data(self, mesh: EngineHandle) -> SurfaceMesh:
        poisson: _PoissonMesh = self._expect(mesh, HandleKind.MESH)
        poisson.mesh.compute_vertex_normals()
        return SurfaceMesh(
            vertices=np.asarray(poisson.mesh.vertices, dtype=np.float64).copy(),
            triangles=np.asarray(poisson.mesh.triangles, dtype=np.int64).copy(),
            normals=np.asarray(poisson.mesh.vertex_normals, dtype=np.float64).copy(),
            densities=None if poisson.densities is None else poisson.densities.copy(),
        )

    @engine_operation
    def save_mesh(self, mesh: EngineHandle, path: str | Path) -> Path:
        poisson: _PoissonMesh = self._expect(mesh, HandleKind.MESH)
        path = Path(path)
        if path.suffix.lower() not in SUPPORTED_MESH_FORMATS:
            raise UnsupportedFormat(f"Unsupported mesh format '{path.suffix.lower()}'")
        path.parent.mkdir(parents=True, exist_ok=True)
        poisson.mesh.compute_triangle_normals()
        poisson.mesh.compute_vertex_normals()
        if not o3d.io.write_triangle_mesh(str(path), poisson.mesh):
            raise EngineFailure(f"Open3D could not write {path}")
        return path


def _point_cloud(points: np.ndarray, normals: Optional[np.ndarray]) -> "o3d.geometry.PointCloud":
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 3 or len(pts) == 0:
        raise InvalidInput(f"points must have shape (N, 3) with N > 0, got {pts.shape}")
    pcd = o3d.geometry.PointCloud(o3d.utility.Vector3dVector(pts))
    if normals is not None:
        nrm = np.asarray(normals, dtype=np.float64)
        if nrm.shape != pts.shape:
            raise InvalidInput(f"normals shape {nrm.shape} does not match points {pts.shape}")
        pcd.normals = o3d.utility.Vector3dVector(nrm)
    return pcd
