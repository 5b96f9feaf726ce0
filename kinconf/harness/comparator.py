"""
Pose Comparison

Componentwise closeness of two poses. Each of x, y, z, qx, qy, qz, qw is
compared on its own against the same absolute bound; q and -q count as
different orientations.
"""

from typing import List, Tuple

import numpy as np

from ..kinematics.base import Pose

IK_NEAR = 1e-4

POSE_COMPONENTS = ("x", "y", "z", "qx", "qy", "qz", "qw")


class PoseMismatchError(AssertionError):
    """Raised when a pose differs from its reference beyond tolerance."""

    def __init__(self, mismatches: List[Tuple[str, float, float]], tolerance: float):
        self.mismatches = mismatches
        self.tolerance = tolerance
        details = ", ".join(f"{name}: expected {expected:.6f}, got {actual:.6f}"
                            for name, expected, actual in mismatches)
        super().__init__(f"Pose differs by more than {tolerance:g} ({details})")


def compare_poses(expected: Pose, actual: Pose,
                  tolerance: float = IK_NEAR) -> List[Tuple[str, float, float]]:
    """
    Compare two poses componentwise.

    Args:
        expected: Reference pose
        actual: Pose under test
        tolerance: Absolute bound applied to every component

    Returns:
        (component, expected, actual) for every component out of tolerance
    """
    expected_values = expected.as_array()
    actual_values = actual.as_array()
    out = ~(np.abs(expected_values - actual_values) <= tolerance)
    return [(POSE_COMPONENTS[i], float(expected_values[i]), float(actual_values[i]))
            for i in np.flatnonzero(out)]


def poses_near(expected: Pose, actual: Pose, tolerance: float = IK_NEAR) -> bool:
    return not compare_poses(expected, actual, tolerance)


def assert_poses_near(expected: Pose, actual: Pose, tolerance: float = IK_NEAR):
    """
    Raises:
        PoseMismatchError: Any component differs by more than `tolerance`
    """
    mismatches = compare_poses(expected, actual, tolerance)
    if mismatches:
        raise PoseMismatchError(mismatches, tolerance)
