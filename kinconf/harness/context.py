"""
Test Context

Holds the single initialized solver under test together with the configured
chain and the robot model used for sampling. Every validation category takes
the context explicitly.
"""

import logging
from typing import Callable, List, Optional, Sequence

from ..errors import HarnessError
from ..kinematics.base import ErrorCode, KinematicsBase, Pose
from ..kinematics.loader import PluginLoadError, load_solver
from ..robot.model import JointModelGroup, RobotModel, load_robot_model, register_robot_description
from .config import PLUGIN_NAME_PARAM, ConfigurationError, HarnessConfig

logger = logging.getLogger(__name__)


class SolverInitializationError(HarnessError):
    """Raised when the solver under test refuses to initialize."""
    pass


class KinematicsTestContext:
    """
    Solver under test and its configured chain.

    Attributes:
        config: Harness configuration
        solver: Initialized solver (None before `initialize`)
        robot_model: Robot model of `config.robot_description`
        group: Joint group sampled by the validation categories
    """

    def __init__(self, config: HarnessConfig,
                 solver_factory: Callable[[str], KinematicsBase] = load_solver,
                 robot_model: Optional[RobotModel] = None):
        self.config = config
        self.solver_factory = solver_factory
        self.solver: Optional[KinematicsBase] = None
        self.robot_model = robot_model
        self.group: Optional[JointModelGroup] = None

    @property
    def group_name(self) -> str:
        return self.config.group

    @property
    def root_link(self) -> str:
        return self.config.root_link

    @property
    def tip_link(self) -> str:
        return self.config.tip_link

    @property
    def joint_names(self) -> List[str]:
        return list(self.config.joint_names or [])

    def initialize(self) -> KinematicsBase:
        """
        Load and initialize the solver under test.

        Raises:
            ConfigurationError: Plugin name or chain parameters missing
            PluginLoadError: Plugin could not be created
            SolverInitializationError: Solver `initialize` returned False
        """
        config = self.config
        if config.urdf:
            register_robot_description(config.robot_description, config.urdf, config.srdf)

        if not config.ik_plugin_name:
            raise ConfigurationError(f"Parameter '{PLUGIN_NAME_PARAM}' was not found")

        logger.info("Loading %s", config.ik_plugin_name)
        try:
            solver = self.solver_factory(config.ik_plugin_name)
        except PluginLoadError as e:
            logger.error("Plugin failed to load: %s", e)
            raise

        config.require_chain_parameters()

        if not solver.initialize(config.robot_description, config.group, config.root_link,
                                 config.tip_link, config.search_discretization):
            logger.error("Kinematics Solver failed to initialize")
            raise SolverInitializationError(
                f"{config.ik_plugin_name} failed to initialize for group '{config.group}'"
            )
        logger.info("Kinematics Solver plugin initialized")

        self.solver = solver
        self.group = self._resolve_group(solver.get_group_name())
        return solver

    def _resolve_group(self, group_name: str) -> JointModelGroup:
        if self.robot_model is None:
            try:
                self.robot_model = load_robot_model(self.config.robot_description)
            except (KeyError, FileNotFoundError, ValueError) as e:
                raise SolverInitializationError(
                    f"Robot description '{self.config.robot_description}' unavailable: {e}"
                ) from e

        try:
            if self.robot_model.has_group(group_name):
                return self.robot_model.get_joint_model_group(group_name)
            return self.robot_model.add_chain_group(group_name, self.root_link, self.tip_link)
        except (KeyError, ValueError) as e:
            raise SolverInitializationError(f"Group '{group_name}' unavailable: {e}") from e

    def compute_tip_pose(self, joint_values: Sequence[float]) -> Optional[Pose]:
        """FK of the tip link; None when the solver reports failure."""
        succeeded, poses = self.solver.get_position_fk([self.solver.get_tip_frame()],
                                                       list(joint_values))
        if not succeeded or len(poses) != 1:
            return None
        return poses[0]

    def search_ik_callback(self, ik_pose: Pose, joint_state: Sequence[float]) -> ErrorCode:
        """Accept a search candidate only when its tip lies above z = 0."""
        pose = self.compute_tip_pose(joint_state)
        if pose is None:
            return ErrorCode.PLANNING_FAILED
        if pose.position[2] > 0.0:
            return ErrorCode.SUCCESS
        return ErrorCode.PLANNING_FAILED
