"""mocap_ik: single-frame inverse kinematics from motion-capture markers.

Modules:
  tasks       Marker / coordinate tasks and their classification.
  storage     Time-indexed experimental marker and coordinate data.
  model       Forward-kinematics model interface and MuJoCo adapter.
  target      Frame binding, residual / objective evaluation, diagnostics.
  jacobian    Finite-difference Jacobian and objective gradient.
  solver      Gauss-Newton solve with backtracking.
  external    scipy.optimize driver over the same objective.
  trajectory  Frame-by-frame solve over a trial.
"""
from mocap_ik.config import IKSettings
from mocap_ik.errors import ConfigurationError, IKError, Interrupted
from mocap_ik.model import KinematicModel, MujocoModel
from mocap_ik.solver import SolveResult, TerminationReason, iterative_optimization
from mocap_ik.storage import MarkerStorage
from mocap_ik.target import ErrorSummary, EvalContext, IKTarget
from mocap_ik.tasks import CoordinateTask, MarkerTask, ValueType, classify_tasks

__all__ = [
    "IKSettings", "ConfigurationError", "IKError", "Interrupted",
    "KinematicModel", "MujocoModel", "SolveResult", "TerminationReason",
    "iterative_optimization", "MarkerStorage", "ErrorSummary", "EvalContext",
    "IKTarget", "CoordinateTask", "MarkerTask", "ValueType", "classify_tasks",
]
