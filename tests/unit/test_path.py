from __future__ import annotations

import math

import numpy as np
import pytest

from weldpath.core.errors import InvalidInput
from weldpath.config import PipelineConfig
from weldpath.motion.path import (
    MIN_SMOOTH_WINDOW,
    WeavePattern,
    WeldPath,
    circular_path,
    smooth_positions,
    weave_offset,
)


def _line(n: int, length: float = 1.0) -> WeldPath:
    xs = np.linspace(0.0, length, n)
    pos = np.column_stack([xs, np.zeros(n), np.zeros(n)])
    nrm = np.tile([0.0, 0.0, 1.0], (n, 1))
    return WeldPath.from_arrays(pos, nrm)


def test_parameters_span_zero_to_one() -> None:
    path = WeldPath()
    for p in ([0, 0, 0], [1, 0, 0], [1, 2, 0], [4, 6, 0]):
        path.add_waypoint(p, (0, 0, 1))
    params = path.parameters()
    assert params[0] == 0.0
    assert params[-1] == pytest.approx(1.0)
    assert np.all(np.diff(params) >= 0.0)
    assert path.total_length == pytest.approx(1.0 + 2.0 + 5.0)
    # 8 m at 10 mm/s
    assert path.estimated_time == pytest.approx(800.0)


def test_tangents_use_forward_then_backward_difference() -> None:
    path = WeldPath.from_arrays(
        np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0]], dtype=float),
        np.tile([0.0, 0.0, 1.0], (3, 1)),
    )
    np.testing.assert_allclose(path.tangents(), [[1, 0, 0], [0, 1, 0], [0, 1, 0]])


def test_duplicate_point_keeps_previous_tangent() -> None:
    path = WeldPath()
    path.add_waypoint((0, 0, 0), (0, 0, 1))
    path.add_waypoint((0, 1, 0), (0, 0, 1))
    wp = path.add_waypoint((0, 1.0001, 0), (0, 0, 1))
    np.testing.assert_allclose(wp.tangent, [0.0, 1.0, 0.0])


def test_waypoint_at_endpoints_and_midpoint() -> None:
    path = WeldPath.from_arrays(
        np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0]], dtype=float),
        np.array([[0, 0, 1], [0, 0, 1], [0, 1, 0]], dtype=float),
    )
    np.testing.assert_allclose(path.waypoint_at(0.0).position, [0, 0, 0])
    np.testing.assert_allclose(path.waypoint_at(1.0).position, [1, 1, 0])
    np.testing.assert_allclose(path.waypoint_at(-3.0).position, [0, 0, 0])
    np.testing.assert_allclose(path.waypoint_at(2.0).position, [1, 1, 0])
    mid = path.waypoint_at(0.75)
    np.testing.assert_allclose(mid.position, [1.0, 0.5, 0.0])
    s = math.sqrt(0.5)
    np.testing.assert_allclose(mid.normal, [0.0, s, s], atol=1e-12)


def test_waypoint_at_empty_and_single() -> None:
    with pytest.raises(InvalidInput):
        WeldPath().waypoint_at(0.5)
    single = WeldPath()
    single.add_waypoint((1, 2, 3), (0, 0, 1))
    wp = single.waypoint_at(0.7)
    np.testing.assert_allclose(wp.position, [1, 2, 3])
    assert wp is not single.waypoints[0]


def test_resample_straight_line_count_and_spacing() -> None:
    path = _line(2, length=1.0).resample(0.1)
    pos = path.positions()
    assert len(pos) == 11
    np.testing.assert_allclose(np.diff(pos[:, 0]), 0.1, atol=1e-12)

    path = _line(5, length=1.05).resample(0.1)
    assert len(path) == math.ceil(1.05 / 0.1) + 1


def test_resample_is_idempotent_on_positions() -> None:
    direction = np.array([0.6, 0.8, 0.0])
    pts = np.outer([0.0, 0.13, 0.7, 1.0], direction)
    path = WeldPath.from_arrays(pts, np.tile([0.0, 0.0, 1.0], (4, 1)))
    once = path.resample(0.05)
    twice = once.resample(0.05)
    assert len(once) == len(twice)
    np.testing.assert_allclose(once.positions(), twice.positions(), atol=1e-9)


def test_zigzag_weave_bounds_and_start_phase() -> None:
    pos = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0], [3, 0, 0]], dtype=float)
    nrm = np.tile([0.0, 1.0, 0.0], (4, 1))
    path = WeldPath.from_arrays(pos, nrm)
    woven = path.apply_weaving(WeavePattern.ZIGZAG, 0.1, 1.0)

    out = woven.positions()
    assert len(out) >= 3001
    # lateral = tangent x normal = +z for this path
    assert np.all(np.abs(out[:, 2]) <= 0.1 + 1e-12)
    assert out[0, 2] == 0.0
    np.testing.assert_allclose(out[0], [0.0, 0.0, 0.0])
    np.testing.assert_allclose(out[:, 1], 0.0, atol=1e-12)
    assert woven.pattern == WeavePattern.ZIGZAG


@pytest.mark.parametrize(
    "pattern, normal_bound",
    [(WeavePattern.CIRCULAR, 0.05), (WeavePattern.TRIANGLE, 0.0), (WeavePattern.FIGURE8, 0.03)],
)
def test_other_weaves_stay_perpendicular_and_bounded(pattern: WeavePattern, normal_bound: float) -> None:
    pos = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0], [3, 0, 0]], dtype=float)
    nrm = np.tile([0.0, 1.0, 0.0], (4, 1))
    woven = WeldPath.from_arrays(pos, nrm).apply_weaving(pattern, 0.1, 1.0)

    out = woven.positions()
    assert len(out) >= 3001
    # no displacement along the seam: x stays on the evenly spaced base samples
    np.testing.assert_allclose(out[:, 0], np.linspace(0.0, 3.0, len(out)), atol=1e-9)
    assert np.all(np.abs(out[:, 2]) <= 0.1 + 1e-12)
    assert np.all(np.abs(out[:, 1]) <= normal_bound + 1e-12)
    assert np.abs(out[:, 2]).max() > 0.09
    assert woven.pattern == pattern

def test_weave_none_returns_copy() -> None:
    path = _line(3)
    out = path.apply_weaving(WeavePattern.NONE, 0.1, 1.0)
    assert out is not path
    np.testing.assert_allclose(out.positions(), path.positions())


def test_weave_offsets_follow_patterns() -> None:
    lateral = np.array([1.0, 0.0, 0.0])
    normal = np.array([0.0, 0.0, 1.0])
    phase = math.pi / 2.0
    np.testing.assert_allclose(weave_offset(WeavePattern.ZIGZAG, lateral, normal, 2.0, phase), [2.0, 0.0, 0.0])
    np.testing.assert_allclose(weave_offset(WeavePattern.CIRCULAR, lateral, normal, 2.0, phase), [0.0, 0.0, 1.0], atol=1e-12)
    np.testing.assert_allclose(weave_offset(WeavePattern.TRIANGLE, lateral, normal, 2.0, phase), [0.0, 0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(weave_offset(WeavePattern.TRIANGLE, lateral, normal, 2.0, 0.0), [-2.0, 0.0, 0.0])
    np.testing.assert_allclose(weave_offset(WeavePattern.FIGURE8, lateral, normal, 2.0, phase), [2.0, 0.0, 0.0], atol=1e-12)


def test_smooth_preserves_endpoints() -> None:
    rng = np.random.default_rng(3)
    pos = np.column_stack([np.linspace(0, 1, 20), rng.normal(0.0, 0.01, 20), np.zeros(20)])
    out = smooth_positions(pos, 5)
    np.testing.assert_allclose(out[0], pos[0])
    np.testing.assert_allclose(out[-1], pos[-1])
    assert np.std(out[1:-1, 1]) < np.std(pos[1:-1, 1])
    # interior sample is the plain 5-wide average
    np.testing.assert_allclose(out[10], pos[8:13].mean(axis=0))
    # clamped boundary: index 1 averages pos[0] twice
    np.testing.assert_allclose(out[1], (2 * pos[0] + pos[1] + pos[2] + pos[3]) / 5.0)


def test_circular_path_points_inward() -> None:
    lo = np.array([-1.0, -1.0, 0.0])
    hi = np.array([1.0, 1.0, 0.0])
    path = circular_path(lo, hi, step=0.05)
    pos = path.positions()
    radius = math.sqrt(8.0) * 0.5 * 0.8
    np.testing.assert_allclose(np.linalg.norm(pos[:, :2], axis=1), radius)
    np.testing.assert_allclose(path.normals(), -pos / radius, atol=1e-12)
    assert len(path) == math.ceil(2 * math.pi * radius / 0.05)
    with pytest.raises(InvalidInput):
        circular_path(lo, hi, step=0.0)


def test_from_arrays_rejects_mismatch() -> None:
    with pytest.raises(InvalidInput):
        WeldPath.from_arrays(np.zeros((3, 3)), np.zeros((2, 3)))


def test_weave_defaults_match_config() -> None:
    path = WeldPath()
    cfg = PipelineConfig()
    assert path.frequency == cfg.weave_frequency
    assert path.amplitude == cfg.weave_amplitude


def test_smallest_smoothing_window() -> None:
    pos = np.column_stack([np.arange(5.0), [0.0, 3.0, 0.0, 3.0, 0.0], np.zeros(5)])
    np.testing.assert_allclose(smooth_positions(pos, MIN_SMOOTH_WINDOW - 1), pos)
    out = smooth_positions(pos, MIN_SMOOTH_WINDOW)
    np.testing.assert_allclose(out[2, 1], 2.0)
    np.testing.assert_allclose(out[0], pos[0])
