from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import InvalidInput
from ..core.mesh import SurfaceMesh
from ..core.pointset import PointSet
from ..core.reconstruction import SurfaceReconstructor
from ..core.utils import get_logger
from ..motion.ik import IKSettings, solve_ik, solve_ik_nearest
from ..motion.kinematics import KinematicModel, RobotPreset
from ..motion.path import WeavePattern, Waypoint, WeldPath, circular_path
from ..motion.trajectory import plan_joint_trajectory, trajectory_arrays
from .base import (
    BaseEngine,
    EngineHandle,
    HandleKind,
    PathSettings,
    ReconstructionSettings,
    engine_operation,
)

_log = get_logger()


class ReferenceEngine(BaseEngine):
    """In-process backend built on numpy and scipy.

    Reconstruction uses :class:`SurfaceReconstructor` at a grid resolution of
    ``2**depth`` capped by ``max_resolution``. Inverse kinematics is numerical
    (damped least squares). Seam extraction falls back to a circle around the
    mesh bounds.
    """

    name = "reference"

    def __init__(self, max_resolution: int = 32, ik_settings: Optional[IKSettings] = None) -> None:
        super().__init__()
        self.max_resolution = int(max_resolution)
        self.ik_settings = ik_settings or IKSettings()

    # -- point sets --
    @engine_operation
    def load_points(self, path: str | Path) -> EngineHandle:
        return self._handle(HandleKind.POINTS, PointSet.from_file(path))

    @engine_operation
    def create_points(self, points: np.ndarray, normals: Optional[np.ndarray] = None,
                      colors: Optional[np.ndarray] = None) -> EngineHandle:
        cloud = PointSet(points=points, normals=normals, colors=colors)
        if len(cloud) == 0:
            raise InvalidInput("point set is empty")
        return self._handle(HandleKind.POINTS, cloud)

    @engine_operation
    def set_points(self, handle: EngineHandle, points: np.ndarray,
                   normals: Optional[np.ndarray] = None) -> None:
        self._expect(handle, HandleKind.POINTS)
        handle.replace(PointSet(points=points, normals=normals))

    @engine_operation
    def get_points(self, handle: EngineHandle) -> np.ndarray:
        return self._expect(handle, HandleKind.POINTS).points.copy()

    @engine_operation
    def get_normals(self, handle: EngineHandle) -> Optional[np.ndarray]:
        cloud: PointSet = self._expect(handle, HandleKind.POINTS)
        return None if cloud.normals is None else cloud.normals.copy()

    @engine_operation
    def estimate_normals(self, handle: EngineHandle, k: Optional[int] = None,
                         radius: Optional[float] = None) -> None:
        cloud: PointSet = self._expect(handle, HandleKind.POINTS)
        cloud.estimate_normals(k=k if k is not None else 30, radius=radius)

    @engine_operation
    def orient_normals(self, handle: EngineHandle, viewpoint: Sequence[float]) -> None:
        self._expect(handle, HandleKind.POINTS).orient_normals_towards(viewpoint)

    @engine_operation
    def voxel_downsample(self, handle: EngineHandle, voxel_size: float) -> None:
        cloud: PointSet = self._expect(handle, HandleKind.POINTS)
        handle.replace(cloud.voxel_downsample(voxel_size))

    @engine_operation
    def remove_outliers(self, handle: EngineHandle, nb_neighbors: int, std_ratio: float) -> int:
        cloud: PointSet = self._expect(handle, HandleKind.POINTS)
        kept, mask = cloud.remove_statistical_outliers(nb_neighbors, std_ratio)
        handle.replace(kept)
        return int((~mask).sum())

    # -- meshes --
    @engine_operation
    def reconstruct(self, points: EngineHandle, settings: ReconstructionSettings) -> EngineHandle:
        cloud: PointSet = self._expect(points, HandleKind.POINTS)
        resolution = min(2 ** max(int(settings.depth), 0), self.max_resolution)
        mesh = SurfaceReconstructor(resolution=resolution).reconstruct(cloud)
        return self._handle(HandleKind.MESH, mesh)

    @engine_operation
    def remove_low_density(self, mesh: EngineHandle, quantile: float) -> None:
        surface: SurfaceMesh = self._expect(mesh, HandleKind.MESH)
        mesh.replace(surface.remove_low_density(quantile))

    @engine_operation
    def simplify(self, mesh: EngineHandle, target_triangles: int) -> None:
        surface: SurfaceMesh = self._expect(mesh, HandleKind.MESH)
        mesh.replace(surface.decimate(target_triangles))

    @engine_operation
    def mesh_data(self, mesh: EngineHandle) -> SurfaceMesh:
        return self._expect(mesh, HandleKind.MESH).copy()

    @engine_operation
    def save_mesh(self, mesh: EngineHandle, path: str | Path) -> Path:
        return self._expect(mesh, HandleKind.MESH).save(path)

    # -- robots --
    @engine_operation
    def create_robot(self, preset: str) -> EngineHandle:
        try:
            preset = RobotPreset(preset)
        except ValueError as exc:
            raise InvalidInput(f"Unknown robot preset '{preset}'") from exc
        return self._handle(HandleKind.ROBOT, KinematicModel.from_preset(preset))

    @engine_operation
    def create_custom_robot(self, dh: np.ndarray, limits: np.ndarray) -> EngineHandle:
        return self._handle(HandleKind.ROBOT, KinematicModel.from_arrays(dh, limits))

    @engine_operation
    def forward_kinematics(self, robot: EngineHandle, joints: Sequence[float]) -> np.ndarray:
        return self._expect(robot, HandleKind.ROBOT).forward_kinematics(joints)

    @engine_operation
    def inverse_kinematics(self, robot: EngineHandle, pose: np.ndarray) -> List[np.ndarray]:
        return solve_ik(self._expect(robot, HandleKind.ROBOT), pose, self.ik_settings)

    @engine_operation
    def inverse_kinematics_nearest(self, robot: EngineHandle, pose: np.ndarray,
                                   reference: Sequence[float]) -> np.ndarray:
        return solve_ik_nearest(self._expect(robot, HandleKind.ROBOT), pose, reference, self.ik_settings)

    @engine_operation
    def jacobian(self, robot: EngineHandle, joints: Sequence[float]) -> np.ndarray:
        return self._expect(robot, HandleKind.ROBOT).jacobian(joints)

    @engine_operation
    def manipulability(self, robot: EngineHandle, joints: Sequence[float]) -> float:
        return self._expect(robot, HandleKind.ROBOT).manipulability(joints)

    @engine_operation
    def check_joint_limits(self, robot: EngineHandle, joints: Sequence[float]) -> bool:
        return self._expect(robot, HandleKind.ROBOT).is_valid_configuration(joints)

    # -- paths --
    @engine_operation
    def path_from_mesh(self, mesh: EngineHandle, settings: PathSettings) -> EngineHandle:
        surface = self.mesh_data(mesh)
        lo, hi = surface.bounds()
        _log.info("No seam detector available; using circular fallback path")
        path = circular_path(lo, hi, settings.step_size)
        return self._handle(HandleKind.PATH, self._with_settings(path, settings))

    @engine_operation
    def path_from_points(self, points: np.ndarray, normals: np.ndarray,
                         settings: PathSettings) -> EngineHandle:
        path = WeldPath.from_arrays(points, normals)
        if len(path) == 0:
            raise InvalidInput("path needs at least one point")
        return self._handle(HandleKind.PATH, self._with_settings(path, settings))

    @staticmethod
    def _with_settings(path: WeldPath, settings: PathSettings) -> WeldPath:
        path.pattern = WeavePattern(settings.weave_pattern)
        path.amplitude = settings.weave_amplitude
        path.frequency = settings.weave_frequency
        return path

    @engine_operation
    def apply_weave(self, path: EngineHandle, pattern: WeavePattern, amplitude: float,
                    frequency: float) -> None:
        current: WeldPath = self._expect(path, HandleKind.PATH)
        path.replace(current.apply_weaving(pattern, amplitude, frequency))

    @engine_operation
    def resample(self, path: EngineHandle, spacing: float) -> None:
        current: WeldPath = self._expect(path, HandleKind.PATH)
        path.replace(current.resample(spacing))

    @engine_operation
    def smooth(self, path: EngineHandle, window: int) -> None:
        self._expect(path, HandleKind.PATH).smooth(window)

    @engine_operation
    def path_waypoints(self, path: EngineHandle) -> List[Waypoint]:
        return [wp.copy() for wp in self._expect(path, HandleKind.PATH).waypoints]

    @engine_operation
    def path_to_joints(self, path: EngineHandle, robot: EngineHandle,
                       standoff: float) -> Tuple[np.ndarray, np.ndarray]:
        current: WeldPath = self._expect(path, HandleKind.PATH)
        self._expect(robot, HandleKind.ROBOT)
        samples = plan_joint_trajectory(
            current.waypoints,
            lambda pose, ref: self.inverse_kinematics_nearest(robot, pose, ref),
            standoff,
        )
        return trajectory_arrays(samples)
