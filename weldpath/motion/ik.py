from __future__ import annotations
from dataclasses import dataclass
import math
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from ..core.errors import InvalidInput, NoSolution
from .kinematics import DOF, KinematicModel, joint_distance

_HP = math.pi / 2.0

IK_SEEDS = (
    (0.0, -_HP, _HP, 0.0, 0.0, 0.0),
    (0.0, -math.pi / 4.0, math.pi / 4.0, 0.0, 0.0, 0.0),
    (_HP, -_HP, _HP, 0.0, 0.0, 0.0),
    (-_HP, -_HP, _HP, 0.0, 0.0, 0.0),
    (0.0, -_HP, _HP, math.pi, 0.0, 0.0),
    (0.0, -3.0 * math.pi / 4.0, 3.0 * math.pi / 4.0, 0.0, 0.0, 0.0),
    (math.pi, -_HP, _HP, 0.0, 0.0, 0.0),
    (0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
)


@dataclass(frozen=True)
class IKSettings:
    max_iterations: int = 100
    tolerance: float = 1e-6
    damping: float = 0.02
    max_step: float = 0.5
    duplicate_distance: float = 0.1


def pose_error(current: np.ndarray, target: np.ndarray) -> np.ndarray:
    """6-vector (position error, rotation-vector error) in the base frame."""
    dp = target[:3, 3] - current[:3, 3]
    dw = Rotation.from_matrix(target[:3, :3] @ current[:3, :3].T).as_rotvec()
    return np.concatenate([dp, dw])


def _descend(model: KinematicModel, target: np.ndarray, seed: Sequence[float],
             settings: IKSettings) -> Optional[np.ndarray]:
    q = model.clamp_joints(seed)
    lam2 = settings.damping ** 2
    for _ in range(settings.max_iterations):
        frames = model.joint_transforms(q)
        err = pose_error(frames[-1], target)
        if float(np.linalg.norm(err)) < settings.tolerance:
            return q if model.is_valid_configuration(q) else None
        J = model.jacobian_from_frames(frames)
        dq = J.T @ np.linalg.solve(J @ J.T + lam2 * np.eye(6), err)
        step = float(np.linalg.norm(dq))
        if step > settings.max_step:
            dq *= settings.max_step / step
        q = model.clamp_joints(q + dq)
    err = pose_error(model.forward_kinematics(q), target)
    if float(np.linalg.norm(err)) < settings.tolerance and model.is_valid_configuration(q):
        return q
    return None


def _target_matrix(model: KinematicModel, target: np.ndarray) -> np.ndarray:
    target = np.asarray(target, dtype=np.float64)
    if target.shape != (4, 4):
        raise InvalidInput("target pose must be a 4x4 matrix")
    if np.linalg.norm(target[:3, 3] - model.base[:3, 3]) > model.max_extent():
        raise NoSolution("target lies outside the arm's reach")
    return target


def solve_ik(model: KinematicModel, target: np.ndarray,
             settings: IKSettings = IKSettings()) -> List[np.ndarray]:
    """Up to eight distinct solutions, one descent per seed configuration."""
    try:
        target = _target_matrix(model, target)
    except NoSolution:
        return []
    solutions: List[np.ndarray] = []
    for seed in IK_SEEDS:
        q = _descend(model, target, seed, settings)
        if q is None:
            continue
        if all(joint_distance(q, s) >= settings.duplicate_distance for s in solutions):
            solutions.append(q)
    return solutions


def solve_ik_nearest(model: KinematicModel, target: np.ndarray, reference: Sequence[float],
                     settings: IKSettings = IKSettings()) -> np.ndarray:
    """Solution closest to ``reference``; raises :class:`NoSolution` if none converges.

    Descends from ``reference`` and from every seed, then keeps the converged
    result with the smallest :func:`joint_distance` to ``reference``.
    """
    target = _target_matrix(model, target)
    reference = np.asarray(reference, dtype=np.float64).reshape(-1)
    if reference.shape != (DOF,):
        raise InvalidInput(f"reference must hold {DOF} joint values")
    best: Optional[np.ndarray] = None
    best_dist = math.inf
    for seed in (reference, *IK_SEEDS):
        cand = _descend(model, target, seed, settings)
        if cand is None:
            continue
        dist = joint_distance(cand, reference)
        if dist < best_dist:
            best, best_dist = cand, dist
    if best is None:
        raise NoSolution("no joint configuration reaches the target pose")
    return best
