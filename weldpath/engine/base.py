from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import functools
from pathlib import Path
from typing import Any, Callable, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar

import numpy as np

from ..core.errors import (
    Disposed,
    EngineFailure,
    InvalidInput,
    NoSolution,
    ResourceExhausted,
    WeldPathError,
)
from ..core.mesh import SurfaceMesh
from ..core.utils import get_logger
from ..motion.path import DEFAULT_WEAVE_AMPLITUDE, DEFAULT_WEAVE_FREQUENCY, WeavePattern, Waypoint

_log = get_logger()

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


class HandleKind(str, Enum):
    POINTS = "points"
    MESH = "mesh"
    ROBOT = "robot"
    PATH = "path"


class EngineHandle(Generic[T]):
    """Single-owner reference to an engine-side object.

    ``release`` is idempotent and any later access raises :class:`Disposed`.
    Use as a context manager to scope the lifetime to a block.
    """

    def __init__(self, kind: HandleKind, payload: T, engine: str) -> None:
        self.kind = HandleKind(kind)
        self.engine = engine
        self._payload: Optional[T] = payload
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def value(self) -> T:
        if self._released:
            raise Disposed(f"{self.kind.value} handle was already released")
        return self._payload  # type: ignore[return-value]

    def replace(self, payload: T) -> None:
        if self._released:
            raise Disposed(f"{self.kind.value} handle was already released")
        self._payload = payload

    def release(self) -> None:
        if self._released:
            return
        self._payload = None
        self._released = True
        _log.debug("Released %s handle (%s)", self.kind.value, self.engine)

    def __enter__(self) -> "EngineHandle[T]":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"EngineHandle({self.kind.value}, {self.engine}, {state})"


@dataclass(frozen=True)
class ReconstructionSettings:
    depth: int = 8
    scale: float = 1.1
    linear_fit: bool = False
    density_threshold: float = 0.01


@dataclass(frozen=True)
class PathSettings:
    step_size: float = 0.005
    weave_pattern: WeavePattern = WeavePattern.NONE
    weave_amplitude: float = DEFAULT_WEAVE_AMPLITUDE
    weave_frequency: float = DEFAULT_WEAVE_FREQUENCY


class GeometryEngine(Protocol):
    """Operations the pipeline expects from a geometry/kinematics backend.

    Failures raise members of :mod:`weldpath.core.errors` and leave their text
    on ``last_error``. :class:`NoSolution` is a normal outcome of the
    inverse-kinematics calls and does not touch ``last_error``.
    """

    name: str
    last_error: Optional[str]

    # point sets
    def load_points(self, path: str | Path) -> EngineHandle: ...
    def create_points(self, points: np.ndarray, normals: Optional[np.ndarray] = None,
                      colors: Optional[np.ndarray] = None) -> EngineHandle: ...
    def set_points(self, handle: EngineHandle, points: np.ndarray,
                   normals: Optional[np.ndarray] = None) -> None: ...
    def get_points(self, handle: EngineHandle) -> np.ndarray: ...
    def get_normals(self, handle: EngineHandle) -> Optional[np.ndarray]: ...
    def estimate_normals(self, handle: EngineHandle, k: Optional[int] = None,
                         radius: Optional[float] = None) -> None: ...
    def orient_normals(self, handle: EngineHandle, viewpoint: Sequence[float]) -> None: ...
    def voxel_downsample(self, handle: EngineHandle, voxel_size: float) -> None: ...
    def remove_outliers(self, handle: EngineHandle, nb_neighbors: int, std_ratio: float) -> int: ...

    # meshes
    def reconstruct(self, points: EngineHandle, settings: ReconstructionSettings) -> EngineHandle: ...
    def remove_low_density(self, mesh: EngineHandle, quantile: float) -> None: ...
    def simplify(self, mesh: EngineHandle, target_triangles: int) -> None: ...
    def mesh_data(self, mesh: EngineHandle) -> SurfaceMesh: ...
    def save_mesh(self, mesh: EngineHandle, path: str | Path) -> Path: ...

    # robots
    def create_robot(self, preset: str) -> EngineHandle: ...
    def create_custom_robot(self, dh: np.ndarray, limits: np.ndarray) -> EngineHandle: ...
    def forward_kinematics(self, robot: EngineHandle, joints: Sequence[float]) -> np.ndarray: ...
    def inverse_kinematics(self, robot: EngineHandle, pose: np.ndarray) -> List[np.ndarray]: ...
    def inverse_kinematics_nearest(self, robot: EngineHandle, pose: np.ndarray,
                                   reference: Sequence[float]) -> np.ndarray: ...
    def jacobian(self, robot: EngineHandle, joints: Sequence[float]) -> np.ndarray: ...
    def manipulability(self, robot: EngineHandle, joints: Sequence[float]) -> float: ...
    def check_joint_limits(self, robot: EngineHandle, joints: Sequence[float]) -> bool: ...

    # paths
    def path_from_mesh(self, mesh: EngineHandle, settings: PathSettings) -> EngineHandle: ...
    def path_from_points(self, points: np.ndarray, normals: np.ndarray,
                         settings: PathSettings) -> EngineHandle: ...
    def apply_weave(self, path: EngineHandle, pattern: WeavePattern, amplitude: float,
                    frequency: float) -> None: ...
    def resample(self, path: EngineHandle, spacing: float) -> None: ...
    def smooth(self, path: EngineHandle, window: int) -> None: ...
    def path_waypoints(self, path: EngineHandle) -> List[Waypoint]: ...
    def path_to_joints(self, path: EngineHandle, robot: EngineHandle,
                       standoff: float) -> Tuple[np.ndarray, np.ndarray]: ...

    def destroy(self, handle: EngineHandle) -> None: ...


def engine_operation(fn: F) -> F:
    """Record failures on ``self.last_error`` and map foreign exceptions.

    Taxonomy errors pass through unchanged, ``MemoryError`` becomes
    :class:`ResourceExhausted` and anything else :class:`EngineFailure`.
    """

    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except NoSolution:
            raise
        except WeldPathError as exc:
            self.last_error = str(exc)
            raise
        except MemoryError as exc:
            self.last_error = f"{fn.__name__}: out of memory"
            raise ResourceExhausted(self.last_error) from exc
        except Exception as exc:
            self.last_error = f"{fn.__name__}: {exc}"
            raise EngineFailure(self.last_error) from exc

    return wrapper  # type: ignore[return-value]


class BaseEngine:
    name = "base"

    def __init__(self) -> None:
        self.last_error: Optional[str] = None

    def _handle(self, kind: HandleKind, payload: Any) -> EngineHandle:
        return EngineHandle(kind, payload, self.name)

    @staticmethod
    def _expect(handle: EngineHandle, kind: HandleKind) -> Any:
        if not isinstance(handle, EngineHandle):
            raise InvalidInput(f"expected a {kind.value} handle, got {type(handle).__name__}")
        if handle.kind != kind:
            raise InvalidInput(f"expected a {kind.value} handle, got {handle.kind.value}")
        return handle.value

    def destroy(self, handle: EngineHandle) -> None:
        handle.release()
