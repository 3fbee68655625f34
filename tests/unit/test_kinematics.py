from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from weldpath.core.errors import InvalidInput
from weldpath.motion.kinematics import (
    KinematicModel,
    RobotPreset,
    joint_distance,
    lerp_joints,
    preset_joints,
    wrap_angle,
)
from weldpath.motion.pose import Pose

GENERIC_Q = np.array([0.3, -1.2, 1.4, -0.5, 0.8, 0.2])


def test_ur5_zero_configuration() -> None:
    robot = KinematicModel.from_preset(RobotPreset.UR5)
    m = robot.forward_kinematics(np.zeros(6))
    np.testing.assert_allclose(m[:3, 3], [-0.81725, 0.19145, -0.005491], atol=1e-9)
    np.testing.assert_allclose(m[:3, :3] @ m[:3, :3].T, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(m[3], [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize(
    "preset", [RobotPreset.UR10, RobotPreset.KUKA_KR6_R700, RobotPreset.DOOSAN_M1013]
)
def test_zero_configuration_other_presets(preset: RobotPreset) -> None:
    robot = KinematicModel.from_preset(preset)
    first = robot.forward_kinematics(np.zeros(6))
    again = KinematicModel.from_preset(preset).forward_kinematics(np.zeros(6))
    np.testing.assert_array_equal(first, again)

    chain = np.eye(4)
    for joint in robot.joints:
        chain = chain @ joint.transform(0.0)
    np.testing.assert_allclose(first, chain, atol=1e-12)
    np.testing.assert_allclose(first[:3, :3] @ first[:3, :3].T, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(first[3], [0.0, 0.0, 0.0, 1.0])
    assert np.linalg.norm(first[:3, 3]) <= robot.max_extent()


def test_kuka_zero_configuration() -> None:
    m = KinematicModel.from_preset(RobotPreset.KUKA_KR6_R700).forward_kinematics(np.zeros(6))
    np.testing.assert_allclose(m[:3, 3], [0.375, 0.0, -0.045], atol=1e-9)
    np.testing.assert_allclose(m[:3, :3], np.diag([1.0, -1.0, -1.0]), atol=1e-12)


@pytest.mark.parametrize("preset", list(RobotPreset))
def test_reach_sums_link_lengths(preset: RobotPreset) -> None:
    robot = KinematicModel.from_preset(preset)
    assert robot.reach() == pytest.approx(sum(abs(j.a) for j in preset_joints(preset)))
    assert robot.reach() <= robot.max_extent()


def test_reach_of_ur5() -> None:
    assert KinematicModel.from_preset(RobotPreset.UR5).reach() == pytest.approx(0.425 + 0.39225)


def test_custom_robot_matches_preset() -> None:
    joints = preset_joints("ur5")
    dh = np.array([[j.a, j.d, j.alpha, j.theta_offset] for j in joints])
    limits = np.array(
        [[j.limit.min, j.limit.max, j.limit.max_velocity, j.limit.max_acceleration] for j in joints]
    )
    custom = KinematicModel.from_arrays(dh, limits)
    preset = KinematicModel.from_preset("ur5")
    np.testing.assert_allclose(custom.forward_kinematics(GENERIC_Q), preset.forward_kinematics(GENERIC_Q))

    with pytest.raises(InvalidInput):
        KinematicModel.from_arrays(dh[:5], limits)
    with pytest.raises(InvalidInput):
        KinematicModel(joints[:5])


def test_forward_kinematics_rejects_wrong_joint_count() -> None:
    robot = KinematicModel.from_preset("ur10")
    with pytest.raises(InvalidInput):
        robot.forward_kinematics([0.0] * 5)


def test_jacobian_matches_finite_differences() -> None:
    robot = KinematicModel.from_preset(RobotPreset.UR5)
    J = robot.jacobian(GENERIC_Q)
    base = robot.forward_kinematics(GENERIC_Q)
    h = 1e-6
    for i in range(6):
        dq = np.zeros(6)
        dq[i] = h
        moved = robot.forward_kinematics(GENERIC_Q + dq)
        linear = (moved[:3, 3] - base[:3, 3]) / h
        angular = Rotation.from_matrix(moved[:3, :3] @ base[:3, :3].T).as_rotvec() / h
        np.testing.assert_allclose(J[:3, i], linear, atol=1e-5)
        np.testing.assert_allclose(J[3:, i], angular, atol=1e-5)


def test_manipulability_vanishes_at_stretched_arm() -> None:
    robot = KinematicModel.from_preset(RobotPreset.UR5)
    assert robot.manipulability(np.zeros(6)) < 1e-5
    assert robot.manipulability(GENERIC_Q) > 1e-5


def test_joint_limits_and_clamp() -> None:
    robot = KinematicModel.from_preset(RobotPreset.KUKA_KR6_R700)
    q = np.zeros(6)
    assert robot.is_valid_configuration(q)
    q[0] = 3.0
    assert not robot.is_valid_configuration(q)
    clamped = robot.clamp_joints(q)
    assert clamped[0] == pytest.approx(2.967)
    assert robot.is_valid_configuration(clamped)


def test_wrap_angle_range() -> None:
    assert wrap_angle(3.0 * math.pi / 2.0) == pytest.approx(-math.pi / 2.0)
    assert wrap_angle(math.pi) == pytest.approx(math.pi)
    assert wrap_angle(-math.pi) == pytest.approx(math.pi)
    out = wrap_angle(np.array([0.0, 7.0, -7.0]))
    np.testing.assert_allclose(out, [0.0, 7.0 - 2 * math.pi, -7.0 + 2 * math.pi])


def test_joint_distance_ignores_full_turns() -> None:
    q = GENERIC_Q
    assert joint_distance(q, q) == 0.0
    assert math.isclose(joint_distance(q, q + 2.0 * math.pi), 0.0, abs_tol=1e-9)
    assert joint_distance(q, q[:5]) == math.inf

    single = q.copy()
    single[3] += 2.0 * math.pi
    assert math.isclose(joint_distance(q, single), 0.0, abs_tol=1e-9)
    single[1] -= 4.0 * math.pi
    assert math.isclose(joint_distance(single, q), 0.0, abs_tol=1e-9)
    one_off = q.copy()
    one_off[0] += 0.5
    assert joint_distance(q, one_off) == pytest.approx(0.5)


def test_lerp_joints_takes_short_way_round() -> None:
    start = np.full(6, 3.0)
    end = np.full(6, -3.0)
    mid = lerp_joints(start, end, 0.5)
    np.testing.assert_allclose(mid, 3.0 + (2.0 * math.pi - 6.0) / 2.0)
    np.testing.assert_allclose(lerp_joints(start, end, 0.0), start)
    with pytest.raises(InvalidInput):
        lerp_joints(start, end[:3], 0.5)


def test_base_pose_moves_the_whole_arm() -> None:
    base = Pose.from_xyz_rpy((0.5, 0.0, 1.0), (0.0, 0.0, 90.0))
    placed = KinematicModel.from_preset(RobotPreset.UR5, base=base)
    plain = KinematicModel.from_preset(RobotPreset.UR5)
    np.testing.assert_allclose(
        placed.forward_kinematics(GENERIC_Q),
        base.matrix() @ plain.forward_kinematics(GENERIC_Q),
        atol=1e-12,
    )
    np.testing.assert_allclose(base.R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)
