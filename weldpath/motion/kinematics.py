"""Six-joint Denavit-Hartenberg arm models.

Angles are radians and lengths metres. A :class:`KinematicModel` is immutable
once built; every query is a pure function of the joint vector.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..core.errors import InvalidInput
from .pose import Pose

DOF = 6


@dataclass(frozen=True)
class JointLimit:
    min: float
    max: float
    max_velocity: float = math.pi
    max_acceleration: float = 5.0

    def contains(self, angle: float) -> bool:
        return self.min <= angle <= self.max

    def clamp(self, angle: float) -> float:
        return min(max(angle, self.min), self.max)


@dataclass(frozen=True)
class DHJoint:
    a: float
    d: float
    alpha: float
    theta_offset: float = 0.0
    limit: JointLimit = JointLimit(-2.0 * math.pi, 2.0 * math.pi)

    def transform(self, angle: float) -> np.ndarray:
        """Rz(theta) * Tz(d) * Tx(a) * Rx(alpha) with theta = angle + offset."""
        theta = angle + self.theta_offset
        ct, st = math.cos(theta), math.sin(theta)
        ca, sa = math.cos(self.alpha), math.sin(self.alpha)
        return np.array(
            [
                [ct, -st * ca, st * sa, self.a * ct],
                [st, ct * ca, -ct * sa, self.a * st],
                [0.0, sa, ca, self.d],
                [0.0, 0.0, 0.0, 1.0],
            ]
        )


class RobotPreset(str, Enum):
    UR5 = "ur5"
    UR10 = "ur10"
    KUKA_KR6_R700 = "kuka_kr6_r700"
    DOOSAN_M1013 = "doosan_m1013"


_HALF_PI = math.pi / 2.0
_TWO_PI = 2.0 * math.pi

# (a, alpha, d) per joint, then (min, max, max_velocity) per joint and one max acceleration
_PRESETS = {
    RobotPreset.UR5: (
        [(0.0, -_HALF_PI, 0.089159), (-0.425, 0.0, 0.0), (-0.39225, 0.0, 0.0),
         (0.0, -_HALF_PI, 0.10915), (0.0, _HALF_PI, 0.09465), (0.0, 0.0, 0.0823)],
        [(-_TWO_PI, _TWO_PI, 3.14)] * 3 + [(-_TWO_PI, _TWO_PI, 6.28)] * 3,
        5.0,
    ),
    RobotPreset.UR10: (
        [(0.0, -_HALF_PI, 0.1273), (-0.612, 0.0, 0.0), (-0.5723, 0.0, 0.0),
         (0.0, -_HALF_PI, 0.163941), (0.0, _HALF_PI, 0.1157), (0.0, 0.0, 0.0922)],
        [(-_TWO_PI, _TWO_PI, 2.09)] * 2 + [(-_TWO_PI, _TWO_PI, 3.14)] * 4,
        5.0,
    ),
    RobotPreset.KUKA_KR6_R700: (
        [(0.025, -_HALF_PI, 0.400), (0.315, 0.0, 0.0), (0.035, -_HALF_PI, 0.0),
         (0.0, _HALF_PI, 0.365), (0.0, -_HALF_PI, 0.0), (0.0, 0.0, 0.080)],
        [(-2.967, 2.967, 6.54), (-2.094, 2.443, 6.28), (-2.356, 2.094, 6.54),
         (-3.490, 3.490, 7.85), (-2.094, 2.094, 7.85), (-6.109, 6.109, 12.04)],
        10.0,
    ),
    RobotPreset.DOOSAN_M1013: (
        [(0.0, -_HALF_PI, 0.1555), (-0.550, 0.0, 0.0), (0.0, -_HALF_PI, 0.0),
         (0.0, _HALF_PI, 0.546), (0.0, -_HALF_PI, 0.0), (0.0, 0.0, 0.110)],
        [(-6.283, 6.283, 2.09), (-6.283, 6.283, 2.09), (-2.618, 2.618, 2.97),
         (-6.283, 6.283, 3.93), (-6.283, 6.283, 3.93), (-6.283, 6.283, 5.93)],
        5.0,
    ),
}


def preset_joints(preset: RobotPreset | str) -> Tuple[DHJoint, ...]:
    dh, limits, max_acc = _PRESETS[RobotPreset(preset)]
    return tuple(
        DHJoint(a=a, d=d, alpha=alpha, limit=JointLimit(lo, hi, vel, max_acc))
        for (a, alpha, d), (lo, hi, vel) in zip(dh, limits)
    )


class KinematicModel:
    def __init__(self, joints: Sequence[DHJoint], base: Optional[Pose] = None, name: str = "custom") -> None:
        joints = tuple(joints)
        if len(joints) != DOF:
            raise InvalidInput(f"a kinematic model needs exactly {DOF} joints, got {len(joints)}")
        self._joints = joints
        base = base if base is not None else Pose.identity()
        self._base = base.matrix()
        self._base.setflags(write=False)
        self.name = name

    @classmethod
    def from_preset(cls, preset: RobotPreset | str, base: Optional[Pose] = None) -> "KinematicModel":
        preset = RobotPreset(preset)
        return cls(preset_joints(preset), base=base, name=preset.value)

    @classmethod
    def from_arrays(cls, dh: np.ndarray, limits: np.ndarray, base: Optional[Pose] = None) -> "KinematicModel":
        """Build a custom arm from ``(6, 4)`` rows of (a, d, alpha, theta_offset)
        and ``(6, 4)`` rows of (min, max, max_velocity, max_acceleration)."""
        dh = np.asarray(dh, dtype=np.float64)
        limits = np.asarray(limits, dtype=np.float64)
        if dh.shape != (DOF, 4) or limits.shape != (DOF, 4):
            raise InvalidInput("custom robots need (6, 4) DH and limit arrays")
        joints = [
            DHJoint(a=r[0], d=r[1], alpha=r[2], theta_offset=r[3], limit=JointLimit(*lim))
            for r, lim in zip(dh.tolist(), limits.tolist())
        ]
        return cls(joints, base=base)

    @property
    def joints(self) -> Tuple[DHJoint, ...]:
        return self._joints

    @property
    def base(self) -> np.ndarray:
        return self._base

    @property
    def limits(self) -> Tuple[JointLimit, ...]:
        return tuple(j.limit for j in self._joints)

    def _check(self, q: Sequence[float]) -> np.ndarray:
        q = np.asarray(q, dtype=np.float64).reshape(-1)
        if q.shape != (DOF,):
            raise InvalidInput(f"expected {DOF} joint values, got {q.shape[0]}")
        return q

    def joint_transforms(self, q: Sequence[float]) -> np.ndarray:
        """Cumulative transforms: base, then after each joint. Shape (7, 4, 4)."""
        q = self._check(q)
        out = np.empty((DOF + 1, 4, 4))
        out[0] = self._base
        for i, joint in enumerate(self._joints):
            out[i + 1] = out[i] @ joint.transform(q[i])
        return out

    def forward_kinematics(self, q: Sequence[float]) -> np.ndarray:
        return self.joint_transforms(q)[-1]

    def is_valid_configuration(self, q: Sequence[float]) -> bool:
        q = self._check(q)
        return all(j.limit.contains(float(v)) for j, v in zip(self._joints, q))

    def clamp_joints(self, q: Sequence[float]) -> np.ndarray:
        q = self._check(q)
        return np.array([j.limit.clamp(float(v)) for j, v in zip(self._joints, q)])

    def reach(self) -> float:
        return float(sum(abs(j.a) for j in self._joints))

    def max_extent(self) -> float:
        """Upper bound on the flange distance from the base origin."""
        return float(sum(abs(j.a) + abs(j.d) for j in self._joints))

    def jacobian(self, q: Sequence[float]) -> np.ndarray:
        """Geometric Jacobian in the base frame; rows are (linear, angular)."""
        return self.jacobian_from_frames(self.joint_transforms(q))

    @staticmethod
    def jacobian_from_frames(frames: np.ndarray) -> np.ndarray:
        p_end = frames[-1][:3, 3]
        J = np.zeros((6, DOF))
        for i in range(DOF):
            z = frames[i][:3, 2]
            p = frames[i][:3, 3]
            J[:3, i] = np.cross(z, p_end - p)
            J[3:, i] = z
        return J

    def manipulability(self, q: Sequence[float]) -> float:
        J = self.jacobian(q)
        return float(math.sqrt(max(0.0, float(np.linalg.det(J @ J.T)))))


def wrap_angle(angle: float | np.ndarray) -> float | np.ndarray:
    """Map angles into (-pi, pi]."""
    wrapped = math.pi - np.mod(math.pi - np.asarray(angle, dtype=np.float64), _TWO_PI)
    return float(wrapped) if np.ndim(wrapped) == 0 else wrapped


def joint_distance(j1: Sequence[float], j2: Sequence[float]) -> float:
    a = np.asarray(j1, dtype=np.float64)
    b = np.asarray(j2, dtype=np.float64)
    if a.shape != b.shape:
        return math.inf
    return float(np.sqrt(np.sum(wrap_angle(a - b) ** 2)))


def lerp_joints(start: Sequence[float], end: Sequence[float], t: float) -> np.ndarray:
    a = np.asarray(start, dtype=np.float64)
    b = np.asarray(end, dtype=np.float64)
    if a.shape != b.shape:
        raise InvalidInput("joint vectors differ in length")
    return a + wrap_angle(b - a) * t
