"""
Kinematics Module - solver interface, plugin loading and the reference solver.
"""

from .base import (
    DiscretizationMethod,
    ErrorCode,
    KinematicError,
    KinematicsBase,
    KinematicsQueryOptions,
    KinematicsResult,
    Pose,
)
from .forward_kinematics import ForwardKinematics
from .inverse_kinematics import InverseKinematics
from .loader import PluginLoadError, list_plugins, load_solver
from .plugin import TorchKinematicsPlugin

__all__ = [
    "DiscretizationMethod",
    "ErrorCode",
    "KinematicError",
    "KinematicsBase",
    "KinematicsQueryOptions",
    "KinematicsResult",
    "Pose",
    "ForwardKinematics",
    "InverseKinematics",
    "PluginLoadError",
    "list_plugins",
    "load_solver",
    "TorchKinematicsPlugin",
]
