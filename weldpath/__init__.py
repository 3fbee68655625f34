"""weldpath: point cloud to surface mesh, weld path and robot joint trajectory.

Main pieces:
- PointSet / SurfaceMesh / SurfaceReconstructor (core)
- WeldPath with weave, resample and smoothing (motion.path)
- KinematicModel, numerical IK and joint trajectory planning (motion)
- Geometry engines: pure numpy/scipy reference, optional Open3D (engine)
- PipelineOrchestrator running the stages on a worker thread (pipeline)
- CSV / URScript / KRL / NPZ exporters (core.exporter)

Open3D is optional; everything runs on the reference engine without it.
"""

from .core.errors import (
    AlreadyRunning,
    Disposed,
    EngineFailure,
    InvalidInput,
    NoSolution,
    ResourceExhausted,
    UnsupportedFormat,
    WeldPathError,
)
from .core.pointset import PointSet
from .core.mesh import SurfaceMesh
from .core.reconstruction import SurfaceReconstructor
from .motion.path import Waypoint, WeavePattern, WeldPath
from .motion.kinematics import KinematicModel, RobotPreset, joint_distance, lerp_joints
from .engine.base import EngineHandle, GeometryEngine
from .engine.reference import ReferenceEngine
from .config import PipelineConfig, load_config, save_config
from .pipeline import PipelineOrchestrator, PipelineResult, PipelineState, ProgressEvent
from .runtime.builders import build_engine
