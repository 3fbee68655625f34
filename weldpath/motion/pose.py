from __future__ import annotations
from dataclasses import dataclass, field
import numpy as np
from scipy.spatial.transform import Rotation


@dataclass
class Pose:
    """Rigid transform: rotation ``R`` then translation ``t`` (metres)."""

    t: np.ndarray = field(default_factory=lambda: np.zeros(3))   # (3,)
    R: np.ndarray = field(default_factory=lambda: np.eye(3))     # (3,3)

    @staticmethod
    def identity() -> "Pose":
        return Pose(t=np.zeros(3), R=np.eye(3))

    @staticmethod
    def from_xyz_rpy(xyz: tuple[float, float, float], rpy_deg: tuple[float, float, float]) -> "Pose":
        """Robot base placement; roll/pitch/yaw about fixed x, y, z (R = Rz Ry Rx)."""
        R = Rotation.from_euler("xyz", rpy_deg, degrees=True).as_matrix()
        return Pose(t=np.array(xyz, dtype=float), R=R)

    @staticmethod
    def tool_frame(position: np.ndarray, approach: np.ndarray, direction: np.ndarray) -> "Pose":
        """Frame whose z axis is ``approach`` and whose x axis follows ``direction``.

        ``direction`` is projected onto the plane normal to ``approach``; when it
        is parallel to ``approach`` any perpendicular axis is used.
        """
        z = np.asarray(approach, dtype=float)
        z = z / np.linalg.norm(z)
        x = np.asarray(direction, dtype=float)
        y = np.cross(z, x)
        if np.linalg.norm(y) < 1e-9:
            helper = np.array([1.0, 0.0, 0.0]) if abs(z[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
            y = np.cross(z, helper)
        y = y / np.linalg.norm(y)
        x = np.cross(y, z)
        return Pose(t=np.array(position, dtype=float), R=np.column_stack([x, y, z]))

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.R
        m[:3, 3] = self.t
        return m
