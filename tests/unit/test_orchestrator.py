from __future__ import annotations

import threading

import numpy as np
import pytest

from weldpath.config import PipelineConfig
from weldpath.core.errors import AlreadyRunning, Disposed, InvalidInput, NoSolution
from weldpath.engine.reference import ReferenceEngine
from weldpath.examples.synthetic import hemisphere
from weldpath.pipeline import PipelineOrchestrator, PipelineState

TIMEOUT = 120.0


def _fast_config(**overrides) -> PipelineConfig:
    values = dict(
        voxel_size=0.0,
        outlier_neighbors=0,
        reconstruction_depth=4,
        path_step_size=0.2,
        smooth_window=0,
    )
    values.update(overrides)
    return PipelineConfig(**values)


class _StubIKEngine(ReferenceEngine):
    """Reference geometry with a scripted inverse-kinematics solver."""

    def __init__(self, fail_on: int) -> None:
        super().__init__(max_resolution=16)
        self.fail_on = fail_on
        self.calls = 0

    def inverse_kinematics_nearest(self, robot, pose, reference):
        self.calls += 1
        if self.calls == self.fail_on:
            raise NoSolution("scripted failure")
        return np.full(6, 0.1 * self.calls)


class _GatedEngine(_StubIKEngine):
    def __init__(self) -> None:
        super().__init__(fail_on=-1)
        self.gate = threading.Event()

    def create_points(self, points, normals=None, colors=None):
        self.gate.wait(TIMEOUT)
        return super().create_points(points, normals, colors)


@pytest.fixture
def cloud():
    return hemisphere(count=400, radius=0.3, seed=11)


def test_run_reaches_ready_with_ordered_events(cloud) -> None:
    events = []
    with PipelineOrchestrator(engine=_StubIKEngine(fail_on=-1), config=_fast_config()) as orch:
        orch.subscribe(events.append)
        run = orch.run(cloud)
        assert run.wait(TIMEOUT)
        assert events == []
        orch.drain_events()

        result = run.result()
        assert orch.state == PipelineState.READY
        assert orch.result is result
        assert not orch.is_running

    states = [e.state for e in events]
    assert states[0] == PipelineState.LOADING_INPUT
    assert states[-1] == PipelineState.READY
    order = [
        PipelineState.LOADING_INPUT,
        PipelineState.PROCESSING_INPUT,
        PipelineState.GENERATING_MESH,
        PipelineState.GENERATING_PATH,
        PipelineState.COMPUTING_TRAJECTORY,
        PipelineState.READY,
    ]
    assert sorted(states, key=order.index) == states
    assert all(e.run_id == run.run_id for e in events)
    assert all(0.0 <= e.progress <= 1.0 for e in events)

    n = len(result.waypoints)
    assert n >= 3
    assert result.path_positions.shape == (n, 3)
    assert result.joints.shape == (n, 6)
    assert result.reachability.all()
    assert result.input_points == 400
    assert not result.joints.flags.writeable
    assert result.mesh.triangle_count > 0


def test_unreachable_waypoint_keeps_previous_joints(cloud) -> None:
    engine = _StubIKEngine(fail_on=2)
    with PipelineOrchestrator(engine=engine, config=_fast_config()) as orch:
        result = orch.run(cloud).result(TIMEOUT)
        orch.drain_events()

    assert not result.reachability[1]
    assert result.reachability[0]
    np.testing.assert_allclose(result.joints[1], result.joints[0])
    assert result.reachable_fraction == pytest.approx((len(result.waypoints) - 1) / len(result.waypoints))
    assert [s.reachable for s in result.trajectory][:2] == [True, False]


def test_second_run_while_busy_is_rejected(cloud) -> None:
    engine = _GatedEngine()
    orch = PipelineOrchestrator(engine=engine, config=_fast_config())
    try:
        first = orch.run(cloud)
        assert orch.is_running
        with pytest.raises(AlreadyRunning):
            orch.run(cloud)
        engine.gate.set()
        assert first.result(TIMEOUT) is not None
        orch.drain_events()
        assert orch.state == PipelineState.READY
    finally:
        engine.gate.set()
        orch.close(TIMEOUT)


def test_failed_run_reports_one_error_event() -> None:
    events = []
    with PipelineOrchestrator(engine=ReferenceEngine(), config=_fast_config()) as orch:
        orch.subscribe(events.append)
        run = orch.run(np.zeros((2, 3)))
        assert run.wait(TIMEOUT)
        orch.drain_events()

        with pytest.raises(InvalidInput):
            run.result()
        assert isinstance(run.exception(), InvalidInput)
        assert orch.state == PipelineState.ERROR
        assert orch.result is None
        assert orch.joint_trajectory is None

    errors = [e for e in events if e.state == PipelineState.ERROR]
    assert len(errors) == 1
    assert errors[0].message.startswith("Error: ")
    assert events[-1] is errors[0]


def test_unsubscribe_stops_delivery() -> None:
    events = []
    with PipelineOrchestrator(engine=ReferenceEngine(), config=_fast_config()) as orch:
        unsubscribe = orch.subscribe(events.append)
        unsubscribe()
        unsubscribe()
        orch.run(np.zeros((2, 3))).wait(TIMEOUT)
        orch.drain_events()
    assert events == []


def test_closed_orchestrator_refuses_runs(cloud) -> None:
    orch = PipelineOrchestrator(engine=ReferenceEngine())
    orch.close()
    with pytest.raises(Disposed):
        orch.run(cloud)


def test_run_config_is_copied(cloud) -> None:
    cfg = _fast_config()
    with PipelineOrchestrator(engine=_StubIKEngine(fail_on=-1)) as orch:
        run = orch.run(cloud, cfg)
        cfg.path_step_size = 0.05
        result = run.result(TIMEOUT)
        orch.drain_events()
    assert result.config.path_step_size == 0.2
    assert result.config is not cfg
