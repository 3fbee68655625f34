from __future__ import annotations
from dataclasses import dataclass
import math
from typing import Callable, Iterable, List, Sequence

import numpy as np

from ..core.errors import NoSolution
from ..core.utils import get_logger
from .path import Waypoint
from .pose import Pose

_log = get_logger()

HOME_CONFIGURATION = (0.0, -math.pi / 2.0, math.pi / 2.0, 0.0, 0.0, 0.0)

NearestSolver = Callable[[np.ndarray, np.ndarray], np.ndarray]


@dataclass(frozen=True)
class TrajectorySample:
    joints: np.ndarray      # (6,)
    reachable: bool


def tool_pose(waypoint: Waypoint, standoff: float) -> np.ndarray:
    """Tool target for a waypoint: ``standoff`` above the surface along its
    normal, z axis pointing back at the surface, x axis along the tangent."""
    normal = np.asarray(waypoint.normal, dtype=np.float64)
    position = waypoint.position + normal * standoff
    return Pose.tool_frame(position, -normal, waypoint.tangent).matrix()


def plan_joint_trajectory(
    waypoints: Iterable[Waypoint],
    solve_nearest: NearestSolver,
    standoff: float,
    home: Sequence[float] = HOME_CONFIGURATION,
) -> List[TrajectorySample]:
    """Solve every waypoint seeded by the previous solution.

    Unreachable waypoints repeat the last valid joint vector (zeros before the
    first success) and are flagged ``reachable=False``.
    """
    samples: List[TrajectorySample] = []
    reference = np.asarray(home, dtype=np.float64)
    last_valid = np.zeros(6)
    failures = 0
    for i, wp in enumerate(waypoints):
        try:
            q = np.asarray(solve_nearest(tool_pose(wp, standoff), reference), dtype=np.float64)
        except NoSolution as exc:
            _log.debug("Waypoint %d unreachable: %s", i, exc)
            failures += 1
            samples.append(TrajectorySample(joints=last_valid.copy(), reachable=False))
            continue
        samples.append(TrajectorySample(joints=q.copy(), reachable=True))
        last_valid = q
        reference = q
    if failures:
        _log.warning("%d of %d waypoints are unreachable", failures, len(samples))
    return samples


def trajectory_arrays(samples: Sequence[TrajectorySample]) -> tuple[np.ndarray, np.ndarray]:
    joints = np.vstack([s.joints for s in samples]) if samples else np.zeros((0, 6))
    reachable = np.array([s.reachable for s in samples], dtype=bool)
    return joints, reachable
