"""
Harness Module - conformance checks for kinematics solver plugins.

This module provides the parameter layer, the explicit test context holding
the solver under test, the pose comparator and the validation protocol.
"""

from .config import ConfigurationError, HarnessConfig
from .context import KinematicsTestContext, SolverInitializationError
from .comparator import PoseMismatchError, assert_poses_near, compare_poses, poses_near
from .runner import CategoryReport, ValidationRunner, all_passed, format_summary

__all__ = [
    "ConfigurationError",
    "HarnessConfig",
    "KinematicsTestContext",
    "SolverInitializationError",
    "PoseMismatchError",
    "assert_poses_near",
    "compare_poses",
    "poses_near",
    "CategoryReport",
    "ValidationRunner",
    "all_passed",
    "format_summary",
]
