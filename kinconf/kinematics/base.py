"""
Kinematics Solver Interface

Defines the capability contract every kinematics plugin implements and the
value types exchanged across it:
- Pose (position + unit quaternion, x/y/z/w order)
- Result codes for single-solution calls
- Query options and result for multi-solution calls
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np


class ErrorCode(enum.IntEnum):
    """Outcome of an FK/IK call (MoveIt error code values)."""

    SUCCESS = 1
    FAILURE = 99999
    PLANNING_FAILED = -1
    TIMED_OUT = -6
    INVALID_LINK_NAME = -22
    NO_IK_SOLUTION = -31


class KinematicError(enum.IntEnum):
    """Outcome of a multi-solution IK query."""

    OK = 1
    UNSUPORTED_DISCRETIZATION_REQUESTED = 2
    DISCRETIZATION_NOT_INITIALIZED = 3
    MULTIPLE_TIPS_NOT_SUPPORTED = 4
    EMPTY_TIP_POSES = 5
    IK_SEED_OUTSIDE_LIMITS = 6
    SOLVER_NOT_ACTIVE = 7
    NO_SOLUTION = 8


class DiscretizationMethod(enum.IntEnum):
    """How redundant joints are sampled when enumerating IK solutions."""

    NO_DISCRETIZATION = 1
    ALL_DISCRETIZED = 2
    SOME_DISCRETIZED = 3
    ALL_RANDOM_SAMPLED = 4
    SOME_RANDOM_SAMPLED = 5


@dataclass
class Pose:
    """
    Spatial pose of a link.

    Attributes:
        position: [3] (x, y, z)
        orientation: [4] unit quaternion (x, y, z, w)
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=np.float64).reshape(4)

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "Pose":
        """Build from a flat [x, y, z, qx, qy, qz, qw] vector."""
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (7,):
            raise ValueError(f"Pose vector must have 7 components, got shape {values.shape}")
        return cls(position=values[:3], orientation=values[3:])

    def as_array(self) -> np.ndarray:
        """Flat [x, y, z, qx, qy, qz, qw] vector."""
        return np.concatenate([self.position, self.orientation])

    def __repr__(self) -> str:
        x, y, z = self.position
        qx, qy, qz, qw = self.orientation
        return (f"Pose(position=({x:.6f}, {y:.6f}, {z:.6f}), "
                f"orientation=({qx:.6f}, {qy:.6f}, {qz:.6f}, {qw:.6f}))")


@dataclass
class KinematicsQueryOptions:
    """Options for multi-solution IK queries."""

    lock_redundant_joints: bool = False
    return_approximate_solution: bool = False
    discretization_method: DiscretizationMethod = DiscretizationMethod.NO_DISCRETIZATION


@dataclass
class KinematicsResult:
    """Status of a multi-solution IK query."""

    kinematic_error: KinematicError = KinematicError.OK
    solution_percentage: float = 0.0


JointValues = List[float]
SolutionCallback = Callable[[Pose, Sequence[float]], ErrorCode]


class KinematicsBase(ABC):
    """
    Capability contract of a kinematics solver plugin.

    A plugin is constructed without arguments, then configured once through
    `initialize`. All poses are expressed in the base frame of the chain.
    """

    DEFAULT_SEARCH_DISCRETIZATION = 0.1
    DEFAULT_TIMEOUT = 1.0

    def __init__(self):
        self.robot_description: str = ""
        self.group_name: str = ""
        self.base_frame: str = ""
        self.tip_frame: str = ""
        self.search_discretization: float = self.DEFAULT_SEARCH_DISCRETIZATION
        self.default_timeout: float = self.DEFAULT_TIMEOUT

    def set_values(self, robot_description: str, group_name: str, base_frame: str,
                   tip_frame: str, search_discretization: float):
        """Store the chain description; plugins call this from `initialize`."""
        self.robot_description = robot_description
        self.group_name = group_name
        self.base_frame = base_frame.lstrip("/")
        self.tip_frame = tip_frame.lstrip("/")
        self.search_discretization = search_discretization

    @abstractmethod
    def initialize(self, robot_description: str, group_name: str, base_frame: str,
                   tip_frame: str, search_discretization: float) -> bool:
        """Load the robot and prepare the solver; return False on failure."""

    def get_group_name(self) -> str:
        return self.group_name

    def get_base_frame(self) -> str:
        return self.base_frame

    def get_tip_frame(self) -> str:
        return self.tip_frame

    @abstractmethod
    def get_joint_names(self) -> List[str]:
        """Ordered names of the joints the solver drives."""

    @abstractmethod
    def get_link_names(self) -> List[str]:
        """Names of the links the solver can compute FK for."""

    def get_search_discretization(self) -> float:
        return self.search_discretization

    def set_search_discretization(self, value: float):
        self.search_discretization = value

    @abstractmethod
    def get_position_fk(self, link_names: Sequence[str],
                        joint_angles: Sequence[float]) -> Tuple[bool, List[Pose]]:
        """Compute one pose per requested link."""

    @abstractmethod
    def get_position_ik(self, ik_pose: Pose,
                        ik_seed_state: Sequence[float]) -> Tuple[ErrorCode, JointValues]:
        """Solve IK close to the seed without searching."""

    @abstractmethod
    def search_position_ik(self, ik_pose: Pose, ik_seed_state: Sequence[float],
                           timeout: float,
                           solution_callback: Optional[SolutionCallback] = None,
                           consistency_limits: Optional[Sequence[float]] = None
                           ) -> Tuple[ErrorCode, JointValues]:
        """
        Search for an IK solution until one is accepted or `timeout` expires.

        `solution_callback` is called synchronously with each candidate and
        must return ErrorCode.SUCCESS for the candidate to be returned.
        """

    def get_position_ik_multiple(self, ik_poses: Sequence[Pose],
                                 options: Optional[KinematicsQueryOptions] = None
                                 ) -> Tuple[KinematicsResult, List[JointValues]]:
        """Enumerate IK solutions; plugins without support report NO_SOLUTION."""
        return KinematicsResult(kinematic_error=KinematicError.NO_SOLUTION), []
