from __future__ import annotations
from concurrent.futures import Future, wait
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config.schema import PipelineConfig
from ..core.errors import AlreadyRunning, Disposed, InvalidInput
from ..core.mesh import SurfaceMesh
from ..core.pointset import PointSet
from ..core.utils import get_logger
from ..engine.base import EngineHandle, GeometryEngine
from ..engine.reference import ReferenceEngine
from ..motion.path import MIN_SMOOTH_WINDOW, WeavePattern, Waypoint
from ..motion.trajectory import TrajectorySample, plan_joint_trajectory, trajectory_arrays
from ..runtime.builders import build_path_settings, build_reconstruction_settings
from .events import EventChannel, PipelineState, ProgressEvent

_log = get_logger()

PointSource = Union[str, Path, PointSet, np.ndarray]
Listener = Callable[[ProgressEvent], None]

def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class PipelineResult:
    """Read-only outputs of a completed run."""

    mesh: SurfaceMesh
    waypoints: Tuple[Waypoint, ...]
    path_positions: np.ndarray      # (N, 3)
    path_normals: np.ndarray        # (N, 3)
    joints: np.ndarray              # (N, 6)
    reachability: np.ndarray        # (N,) bool
    input_points: int
    processed_points: int
    config: PipelineConfig
    timings: Dict[str, float] = field(default_factory=dict)  # stage -> milliseconds

    @property
    def trajectory(self) -> List[TrajectorySample]:
        return [TrajectorySample(joints=j.copy(), reachable=bool(r)) for j, r in zip(self.joints, self.reachability)]

    @property
    def reachable_fraction(self) -> float:
        return float(self.reachability.mean()) if len(self.reachability) else 0.0


class PipelineRun:
    """Completion handle for one asynchronous run."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        self._future: "Future[PipelineResult]" = Future()
        self._thread: Optional[threading.Thread] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        wait([self._future], timeout=timeout)
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> PipelineResult:
        return self._future.result(timeout=timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout=timeout)


class PipelineOrchestrator:
    """Runs load → process → mesh → path → trajectory on a worker thread.

    One run at a time. Progress events are queued on an :class:`EventChannel`
    and reach subscribers only when the owner calls :meth:`drain_events`.
    Engine handles created by a run are released before the run reports
    completion, whatever the outcome.
    """

    def __init__(
        self,
        engine: Optional[GeometryEngine] = None,
        config: Optional[PipelineConfig] = None,
        viewpoint: Sequence[float] = (0.0, 0.0, 0.0),
        min_points: int = 4,
    ) -> None:
        self.engine: GeometryEngine = engine if engine is not None else ReferenceEngine()
        self.config = config if config is not None else PipelineConfig()
        self.viewpoint = tuple(float(v) for v in viewpoint)
        self.min_points = int(min_points)
        self._events = EventChannel()
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._active: Optional[PipelineRun] = None
        self._result: Optional[PipelineResult] = None
        self._runs = 0
        self._closed = False

    # -- observation --
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def drain_events(self) -> int:
        return self._events.drain()

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._active is not None and not self._active.done

    @property
    def result(self) -> Optional[PipelineResult]:
        with self._lock:
            return self._result if self._state == PipelineState.READY else None

    @property
    def mesh(self) -> Optional[SurfaceMesh]:
        res = self.result
        return None if res is None else res.mesh

    @property
    def path_positions(self) -> Optional[np.ndarray]:
        res = self.result
        return None if res is None else res.path_positions

    @property
    def reachability(self) -> Optional[np.ndarray]:
        res = self.result
        return None if res is None else res.reachability

    @property
    def joint_trajectory(self) -> Optional[np.ndarray]:
        res = self.result
        return None if res is None else res.joints

    # -- control --
    def run(self, source: PointSource, config: Optional[PipelineConfig] = None) -> PipelineRun:
        cfg = (config or self.config).model_copy(deep=True)
        with self._lock:
            if self._closed:
                raise Disposed("orchestrator was closed")
            if self._active is not None and not self._active.done:
                raise AlreadyRunning(f"run {self._active.run_id} is still in progress")
            self._runs += 1
            run = PipelineRun(self._runs)
            self._active = run
            self._result = None
            self._state = PipelineState.IDLE
            thread = threading.Thread(
                target=self._execute,
                args=(run, source, cfg),
                name=f"weldpath-run-{run.run_id}",
                daemon=True,
            )
            run._thread = thread
        thread.start()
        return run

    def close(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._closed = True
            active = self._active
        if active is not None and active._thread is not None:
            active._thread.join(timeout)

    def __enter__(self) -> "PipelineOrchestrator":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- worker --
    def _notify(self, event: ProgressEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    def _emit(self, run: PipelineRun, state: PipelineState, progress: float, message: str) -> None:
        with self._lock:
            self._state = state
        self._events.post(self._notify, ProgressEvent(state, progress, message, run.run_id))

    def _execute(self, run: PipelineRun, source: PointSource, cfg: PipelineConfig) -> None:
        run._future.set_running_or_notify_cancel()
        try:
            with ExitStack() as stack:
                result = self._run_stages(run, stack, source, cfg)
        except Exception as exc:
            _log.error("Pipeline run %d failed: %s", run.run_id, exc)
            self._emit(run, PipelineState.ERROR, 0.0, f"Error: {exc}")
            run._future.set_exception(exc)
            return
        with self._lock:
            self._result = result
        self._emit(run, PipelineState.READY, 1.0, "Pipeline complete")
        run._future.set_result(result)

    def _run_stages(self, run: PipelineRun, stack: ExitStack, source: PointSource,
                    cfg: PipelineConfig) -> PipelineResult:
        engine = self.engine
        timings: Dict[str, float] = {}
        started = time.perf_counter()
        mark = started

        def lap(stage: str) -> None:
            nonlocal mark
            now = time.perf_counter()
            timings[stage] = (now - mark) * 1000.0
            mark = now

        self._emit(run, PipelineState.LOADING_INPUT, 0.0, "Loading points")
        points = stack.enter_context(self._ingest(source))
        loaded = len(engine.get_points(points))
        lap("loading")
        self._emit(run, PipelineState.LOADING_INPUT, 1.0, f"Loaded {loaded} points")

        self._emit(run, PipelineState.PROCESSING_INPUT, 0.0, "Processing points")
        processed = self._process(points, cfg)
        lap("processing")
        self._emit(run, PipelineState.PROCESSING_INPUT, 1.0, f"{processed} points after processing")

        self._emit(run, PipelineState.GENERATING_MESH, 0.0, "Reconstructing surface")
        mesh = stack.enter_context(engine.reconstruct(points, build_reconstruction_settings(cfg)))
        points.release()
        engine.remove_low_density(mesh, cfg.density_threshold)
        if cfg.simplify_target > 0:
            engine.simplify(mesh, cfg.simplify_target)
        surface = engine.mesh_data(mesh)
        lap("mesh")
        self._emit(
            run,
            PipelineState.GENERATING_MESH,
            1.0,
            f"Mesh: {surface.vertex_count} vertices, {surface.triangle_count} triangles",
        )

        self._emit(run, PipelineState.GENERATING_PATH, 0.0, "Generating weld path")
        path = stack.enter_context(engine.path_from_mesh(mesh, build_path_settings(cfg)))
        mesh.release()
        if cfg.weave_pattern != WeavePattern.NONE:
            engine.apply_weave(path, cfg.weave_pattern, cfg.weave_amplitude, cfg.weave_frequency)
        engine.resample(path, cfg.path_step_size)
        if cfg.smooth_window >= MIN_SMOOTH_WINDOW:
            engine.smooth(path, cfg.smooth_window)
        waypoints = engine.path_waypoints(path)
        path.release()
        lap("path")
        self._emit(run, PipelineState.GENERATING_PATH, 1.0, f"Path with {len(waypoints)} waypoints")

        self._emit(run, PipelineState.COMPUTING_TRAJECTORY, 0.0, "Solving inverse kinematics")
        robot = stack.enter_context(engine.create_robot(cfg.robot_preset.value))
        samples = plan_joint_trajectory(
            waypoints,
            lambda pose, ref: engine.inverse_kinematics_nearest(robot, pose, ref),
            cfg.standoff_distance,
        )
        robot.release()
        joints, reachable = trajectory_arrays(samples)
        lap("trajectory")
        timings["total"] = (mark - started) * 1000.0
        self._emit(
            run,
            PipelineState.COMPUTING_TRAJECTORY,
            1.0,
            f"{int(reachable.sum())}/{len(reachable)} waypoints reachable",
        )

        positions = np.vstack([wp.position for wp in waypoints]) if waypoints else np.zeros((0, 3))
        normals = np.vstack([wp.normal for wp in waypoints]) if waypoints else np.zeros((0, 3))
        return PipelineResult(
            mesh=surface,
            waypoints=tuple(waypoints),
            path_positions=_frozen(positions),
            path_normals=_frozen(normals),
            joints=_frozen(joints),
            reachability=_frozen(reachable),
            input_points=loaded,
            processed_points=processed,
            config=cfg,
            timings=timings,
        )

    def _ingest(self, source: PointSource) -> EngineHandle:
        if isinstance(source, (str, Path)):
            return self.engine.load_points(source)
        if isinstance(source, PointSet):
            return self.engine.create_points(source.points, source.normals, source.colors)
        if isinstance(source, np.ndarray):
            return self.engine.create_points(source)
        raise InvalidInput(f"unsupported point source {type(source).__name__}")

    def _process(self, points: EngineHandle, cfg: PipelineConfig) -> int:
        engine = self.engine
        if cfg.voxel_size > 0:
            engine.voxel_downsample(points, cfg.voxel_size)
        if cfg.outlier_neighbors > 0:
            before = engine.get_points(points)
            before_normals = engine.get_normals(points)
            removed = engine.remove_outliers(points, cfg.outlier_neighbors, cfg.outlier_std_ratio)
            remaining = len(before) - removed
            if remaining < self.min_points:
                _log.warning(
                    "Outlier removal left %d points; continuing with the %d unfiltered points",
                    remaining,
                    len(before),
                )
                engine.set_points(points, before, before_normals)
            elif removed:
                _log.info("Removed %d outliers", removed)
        engine.estimate_normals(points, k=cfg.normal_knn)
        engine.orient_normals(points, self.viewpoint)
        return len(engine.get_points(points))
