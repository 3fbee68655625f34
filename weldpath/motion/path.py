from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..core.errors import InvalidInput
from ..core.utils import get_logger, normalize, slerp_directions

_log = get_logger()

WEAVE_STEP_M = 0.001        # weaving always samples at 1 mm
DEFAULT_WEAVE_AMPLITUDE = 0.002
DEFAULT_WEAVE_FREQUENCY = 2.0  # cycles per metre
MIN_SMOOTH_WINDOW = 2
_DEFAULT_TANGENT = (0.0, 0.0, 1.0)


class WeavePattern(str, Enum):
    NONE = "none"
    ZIGZAG = "zigzag"
    CIRCULAR = "circular"
    TRIANGLE = "triangle"
    FIGURE8 = "figure8"


@dataclass
class Waypoint:
    position: np.ndarray
    normal: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    tangent: np.ndarray = field(default_factory=lambda: np.array(_DEFAULT_TANGENT))
    parameter: float = 0.0
    weld_speed: float = 10.0     # mm/s
    wire_speed: float = 100.0
    is_key_point: bool = False

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.normal = np.asarray(self.normal, dtype=np.float64).reshape(3)
        self.tangent = np.asarray(self.tangent, dtype=np.float64).reshape(3)

    def copy(self) -> "Waypoint":
        return replace(
            self,
            position=self.position.copy(),
            normal=self.normal.copy(),
            tangent=self.tangent.copy(),
        )


def _triangle_wave(x: float) -> float:
    # ping-pong over [0, 1] with period 2, mapped to [-1, 1]
    return (1.0 - abs((x % 2.0) - 1.0)) * 2.0 - 1.0


def weave_offset(pattern: WeavePattern, lateral: np.ndarray, normal: np.ndarray,
                 amplitude: float, phase: float) -> np.ndarray:
    if pattern == WeavePattern.ZIGZAG:
        return lateral * amplitude * math.sin(phase)
    if pattern == WeavePattern.CIRCULAR:
        return lateral * amplitude * math.cos(phase) + normal * amplitude * math.sin(phase) * 0.5
    if pattern == WeavePattern.TRIANGLE:
        return lateral * amplitude * _triangle_wave(phase / math.pi)
    if pattern == WeavePattern.FIGURE8:
        return lateral * amplitude * math.sin(phase) + normal * amplitude * math.sin(2.0 * phase) * 0.3
    return np.zeros(3)


class WeldPath:
    """Ordered weld waypoints with chord-length parameterisation.

    :meth:`apply_weaving` and :meth:`resample` return new paths; :meth:`smooth`
    rewrites positions in place.
    """

    def __init__(
        self,
        waypoints: Optional[Iterable[Waypoint]] = None,
        pattern: WeavePattern = WeavePattern.NONE,
        amplitude: float = DEFAULT_WEAVE_AMPLITUDE,
        frequency: float = DEFAULT_WEAVE_FREQUENCY,
    ) -> None:
        self.waypoints: List[Waypoint] = list(waypoints or [])
        self.pattern = WeavePattern(pattern)
        self.amplitude = float(amplitude)
        self.frequency = float(frequency)
        self.total_length = 0.0
        self.estimated_time = 0.0
        if self.waypoints:
            self.recalculate_parameters()

    @classmethod
    def from_arrays(cls, positions: np.ndarray, normals: np.ndarray, **kwargs) -> "WeldPath":
        pos = np.asarray(positions, dtype=np.float64)
        nrm = np.asarray(normals, dtype=np.float64)
        if pos.ndim != 2 or pos.shape[1] != 3:
            raise InvalidInput(f"positions must have shape (N, 3), got {pos.shape}")
        if nrm.shape != pos.shape:
            raise InvalidInput(f"normals shape {nrm.shape} != positions shape {pos.shape}")
        path = cls(**kwargs)
        tangent = np.array(_DEFAULT_TANGENT)
        for i in range(len(pos)):
            if i > 0:
                delta = pos[i] - pos[i - 1]
                if float(delta @ delta) >= 1e-3 ** 2:
                    tangent = normalize(delta)
            path.waypoints.append(Waypoint(position=pos[i], normal=normalize(nrm[i]), tangent=tangent.copy()))
        path.recalculate_parameters()
        return path

    def __len__(self) -> int:
        return len(self.waypoints)

    def copy(self) -> "WeldPath":
        return WeldPath(
            [wp.copy() for wp in self.waypoints],
            pattern=self.pattern,
            amplitude=self.amplitude,
            frequency=self.frequency,
        )

    def add_waypoint(self, position: Sequence[float], normal: Sequence[float]) -> Waypoint:
        pos = np.asarray(position, dtype=np.float64)
        tangent = np.array(_DEFAULT_TANGENT)
        if self.waypoints:
            prev = self.waypoints[-1]
            delta = pos - prev.position
            if float(delta @ delta) < 1e-3 ** 2:
                tangent = prev.tangent.copy()
            else:
                tangent = normalize(delta)
        wp = Waypoint(position=pos, normal=normalize(np.asarray(normal, dtype=np.float64)), tangent=tangent)
        self.waypoints.append(wp)
        self.recalculate_parameters()
        return wp

    def append(self, waypoint: Waypoint) -> None:
        self.waypoints.append(waypoint)
        self.recalculate_parameters()

    def recalculate_parameters(self) -> None:
        n = len(self.waypoints)
        if n < 2:
            self.total_length = 0.0
            self.estimated_time = 0.0
            return
        pos = self.positions()
        seg = np.linalg.norm(np.diff(pos, axis=0), axis=1)
        cumulative = np.concatenate([[0.0], np.cumsum(seg)])
        total = float(cumulative[-1])
        self.total_length = total
        for i, wp in enumerate(self.waypoints):
            wp.parameter = float(cumulative[i] / total) if total > 0 else 0.0
            if i < n - 1:
                delta = pos[i + 1] - pos[i]
            else:
                delta = pos[i] - pos[i - 1]
            if float(np.linalg.norm(delta)) > 1e-12:
                wp.tangent = delta / np.linalg.norm(delta)
            elif i > 0:
                wp.tangent = self.waypoints[i - 1].tangent.copy()
        speed = self.waypoints[0].weld_speed
        self.estimated_time = total * 1000.0 / speed if speed > 0 else 0.0

    # -- accessors --
    def positions(self) -> np.ndarray:
        if not self.waypoints:
            return np.zeros((0, 3))
        return np.vstack([wp.position for wp in self.waypoints])

    def normals(self) -> np.ndarray:
        if not self.waypoints:
            return np.zeros((0, 3))
        return np.vstack([wp.normal for wp in self.waypoints])

    def tangents(self) -> np.ndarray:
        if not self.waypoints:
            return np.zeros((0, 3))
        return np.vstack([wp.tangent for wp in self.waypoints])

    def parameters(self) -> np.ndarray:
        return np.array([wp.parameter for wp in self.waypoints], dtype=np.float64)

    def waypoint_at(self, t: float) -> Waypoint:
        n = len(self.waypoints)
        if n == 0:
            raise InvalidInput("path has no waypoints")
        if n == 1:
            return self.waypoints[0].copy()
        t = min(max(float(t), 0.0), 1.0)
        params = self.parameters()
        # parameters are non-decreasing, so the first bracketing segment is
        # the one just before the first parameter >= t
        j = int(np.searchsorted(params, t, side="left"))
        i = min(max(j - 1, 0), n - 2)
        a = self.waypoints[i]
        b = self.waypoints[i + 1]
        span = b.parameter - a.parameter
        s = (t - a.parameter) / span if span > 1e-12 else 0.0
        return Waypoint(
            position=a.position + (b.position - a.position) * s,
            normal=slerp_directions(a.normal, b.normal, s),
            tangent=slerp_directions(a.tangent, b.tangent, s),
            parameter=t,
            weld_speed=a.weld_speed + (b.weld_speed - a.weld_speed) * s,
            wire_speed=a.wire_speed + (b.wire_speed - a.wire_speed) * s,
        )

    # -- shaping --
    def apply_weaving(self, pattern: WeavePattern, amplitude: float, frequency: float) -> "WeldPath":
        pattern = WeavePattern(pattern)
        out = WeldPath(pattern=pattern, amplitude=amplitude, frequency=frequency)
        if pattern == WeavePattern.NONE or len(self.waypoints) < 2:
            out.waypoints = [wp.copy() for wp in self.waypoints]
            out.recalculate_parameters()
            return out

        steps = max(2, math.ceil(self.total_length / WEAVE_STEP_M))
        phase = 0.0
        for i in range(steps + 1):
            base = self.waypoint_at(i / steps)
            lateral = normalize(np.cross(base.tangent, base.normal))
            base.position = base.position + weave_offset(pattern, lateral, base.normal, amplitude, phase)
            out.waypoints.append(base)
            phase += frequency * WEAVE_STEP_M * 2.0 * math.pi
        out.recalculate_parameters()
        _log.debug("Weave %s: %d -> %d waypoints", pattern.value, len(self), len(out))
        return out

    def resample(self, spacing: float) -> "WeldPath":
        if spacing <= 0:
            raise InvalidInput("spacing must be positive")
        out = WeldPath(pattern=self.pattern, amplitude=self.amplitude, frequency=self.frequency)
        if len(self.waypoints) < 2:
            out.waypoints = [wp.copy() for wp in self.waypoints]
            out.recalculate_parameters()
            return out
        # tolerance keeps e.g. 1.1 / 0.1 from rounding up to an extra sample
        count = max(2, math.ceil(self.total_length / spacing - 1e-9) + 1)
        out.waypoints = [self.waypoint_at(i / (count - 1)) for i in range(count)]
        out.recalculate_parameters()
        return out

    def smooth(self, window: int) -> None:
        if len(self.waypoints) < 3:
            return
        smoothed = smooth_positions(self.positions(), window)
        for wp, p in zip(self.waypoints, smoothed):
            wp.position = p
        self.recalculate_parameters()


def smooth_positions(positions: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average with clamped indices; endpoints keep their values."""
    pos = np.asarray(positions, dtype=np.float64)
    n = len(pos)
    if window < MIN_SMOOTH_WINDOW or n < 3:
        return pos.copy()
    half = window // 2
    padded = np.concatenate([np.repeat(pos[:1], half, axis=0), pos, np.repeat(pos[-1:], half, axis=0)])
    csum = np.concatenate([np.zeros((1, 3)), np.cumsum(padded, axis=0)])
    width = 2 * half + 1
    out = (csum[width:] - csum[:-width]) / width
    out[0] = pos[0]
    out[-1] = pos[-1]
    return out


def circular_path(lo: np.ndarray, hi: np.ndarray, step: float, radius_scale: float = 0.8) -> WeldPath:
    """Horizontal circle around a bounding box, normals pointing at its axis.

    Stand-in seam for meshes without a boundary detector.
    """
    if step <= 0:
        raise InvalidInput("step must be positive")
    lo = np.asarray(lo, dtype=np.float64)
    hi = np.asarray(hi, dtype=np.float64)
    center = (lo + hi) * 0.5
    radius = float(np.linalg.norm(hi - lo) * 0.5) * radius_scale
    if radius <= 0:
        raise InvalidInput("bounding box is degenerate")
    segments = max(3, math.ceil(2.0 * math.pi * radius / step))
    angles = np.arange(segments) * (2.0 * math.pi / segments)
    ring = np.column_stack([np.cos(angles), np.sin(angles), np.zeros(segments)])
    return WeldPath.from_arrays(center + ring * radius, -ring)
