from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from weldpath.core.errors import (
    Disposed,
    EngineFailure,
    InvalidInput,
    NoSolution,
    ResourceExhausted,
)
from weldpath.engine.base import HandleKind, PathSettings, ReconstructionSettings
from weldpath.engine.reference import ReferenceEngine
from weldpath.examples.synthetic import hemisphere
from weldpath.motion.kinematics import preset_joints


@pytest.fixture
def engine() -> ReferenceEngine:
    return ReferenceEngine(max_resolution=16)


def test_released_handle_raises_disposed(engine: ReferenceEngine) -> None:
    handle = engine.create_points(np.eye(3))
    engine.destroy(handle)
    engine.destroy(handle)
    assert handle.released
    with pytest.raises(Disposed):
        engine.get_points(handle)
    assert engine.last_error is not None


def test_handle_context_manager_releases() -> None:
    engine = ReferenceEngine()
    with engine.create_points(np.eye(3)) as handle:
        assert handle.kind == HandleKind.POINTS
    assert handle.released


def test_wrong_handle_kind_is_invalid_input(engine: ReferenceEngine) -> None:
    robot = engine.create_robot("ur5")
    with pytest.raises(InvalidInput):
        engine.get_points(robot)
    assert "points" in engine.last_error
    with pytest.raises(InvalidInput):
        engine.create_robot("abb_irb")


def test_no_solution_does_not_record_error(engine: ReferenceEngine) -> None:
    robot = engine.create_robot("ur5")
    target = np.eye(4)
    target[:3, 3] = [4.0, 0.0, 0.0]
    with pytest.raises(NoSolution):
        engine.inverse_kinematics_nearest(robot, target, np.zeros(6))
    assert engine.last_error is None
    assert engine.inverse_kinematics(robot, target) == []


def test_foreign_exceptions_are_wrapped(engine: ReferenceEngine, monkeypatch: pytest.MonkeyPatch) -> None:
    robot = engine.create_robot("ur5")

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("weldpath.engine.reference.solve_ik", boom)
    with pytest.raises(EngineFailure):
        engine.inverse_kinematics(robot, np.eye(4))
    assert engine.last_error == "inverse_kinematics: boom"

    def oom(*args, **kwargs):
        raise MemoryError()

    monkeypatch.setattr("weldpath.engine.reference.solve_ik", oom)
    with pytest.raises(ResourceExhausted):
        engine.inverse_kinematics(robot, np.eye(4))


def test_custom_robot_equals_preset(engine: ReferenceEngine) -> None:
    joints = preset_joints("ur10")
    dh = np.array([[j.a, j.d, j.alpha, j.theta_offset] for j in joints])
    limits = np.array(
        [[j.limit.min, j.limit.max, j.limit.max_velocity, j.limit.max_acceleration] for j in joints]
    )
    custom = engine.create_custom_robot(dh, limits)
    preset = engine.create_robot("ur10")
    q = [0.1, -0.9, 1.1, 0.2, -0.4, 0.6]
    np.testing.assert_allclose(engine.forward_kinematics(custom, q), engine.forward_kinematics(preset, q))
    assert engine.check_joint_limits(preset, q)
    assert engine.jacobian(preset, q).shape == (6, 6)
    assert engine.manipulability(preset, q) > 0.0


def test_point_processing_round_trip(engine: ReferenceEngine) -> None:
    cloud = hemisphere(count=300, radius=0.5, seed=2)
    handle = engine.create_points(cloud.points)
    assert engine.get_normals(handle) is None
    engine.voxel_downsample(handle, 0.1)
    reduced = engine.get_points(handle)
    assert 0 < len(reduced) < 300
    engine.estimate_normals(handle, k=10)
    engine.orient_normals(handle, (0.0, 0.0, 0.0))
    normals = engine.get_normals(handle)
    assert normals.shape == reduced.shape
    # viewpoint at the centre: every normal faces inward
    assert np.all(np.einsum("ij,ij->i", normals, -reduced) >= 0.0)

    engine.set_points(handle, reduced[:10])
    assert len(engine.get_points(handle)) == 10
    with pytest.raises(InvalidInput):
        engine.create_points(np.zeros((0, 3)))


def test_mesh_path_and_joints(engine: ReferenceEngine, tmp_path: Path) -> None:
    cloud = hemisphere(count=400, radius=0.3, seed=5)
    points = engine.create_points(cloud.points, cloud.normals)
    mesh = engine.reconstruct(points, ReconstructionSettings(depth=4))
    data = engine.mesh_data(mesh)
    assert data.triangle_count > 0
    saved = engine.save_mesh(mesh, tmp_path / "mesh.ply")
    assert saved.exists()

    path = engine.path_from_mesh(mesh, PathSettings(step_size=0.2))
    waypoints = engine.path_waypoints(path)
    assert len(waypoints) >= 3
    engine.resample(path, 0.1)
    assert len(engine.path_waypoints(path)) > len(waypoints)

    robot = engine.create_robot("ur5")
    joints, reachable = engine.path_to_joints(path, robot, standoff=0.015)
    n = len(engine.path_waypoints(path))
    assert joints.shape == (n, 6)
    assert reachable.shape == (n,)


def test_path_from_points_rejects_empty(engine: ReferenceEngine) -> None:
    with pytest.raises(InvalidInput):
        engine.path_from_points(np.zeros((0, 3)), np.zeros((0, 3)), PathSettings())
