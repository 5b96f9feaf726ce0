"""
Reference Kinematics Plugin

Numerical solver on top of the differentiable FK/IK of this package. It is
registered under the `kinconf.kinematics_plugins` entry point group like any
third-party solver and serves as the baseline the harness is checked against.
"""

import logging
import time
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
from scipy.spatial import cKDTree

from ..robot.model import load_robot_model
from ..robot.urdf import KinematicChain, check_joint_limits, normalize_angles
from .base import (
    DiscretizationMethod,
    ErrorCode,
    JointValues,
    KinematicError,
    KinematicsBase,
    KinematicsQueryOptions,
    KinematicsResult,
    Pose,
    SolutionCallback,
)
from .forward_kinematics import ForwardKinematics
from .inverse_kinematics import InverseKinematics

logger = logging.getLogger(__name__)


class TorchKinematicsPlugin(KinematicsBase):
    """
    Jacobian-based IK with random restarts.

    - get_position_ik: one solve from the seed
    - search_position_ik: seed first, then batches of random seeds until timeout
    - get_position_ik_multiple: one batch of random seeds, duplicates removed
    """

    SEARCH_BATCH_SIZE = 8
    MULTIPLE_SOLUTION_ATTEMPTS = 32
    DUPLICATE_RADIUS = 1e-3

    def __init__(self, device: str = 'cpu', method: str = 'jacobian',
                 tolerance: float = 1e-7, max_iter: int = 200):
        super().__init__()
        self.device = device
        self.method = method
        self.tolerance = tolerance
        self.max_iter = max_iter

        self.chain: Optional[KinematicChain] = None
        self.fk: Optional[ForwardKinematics] = None
        self.ik: Optional[InverseKinematics] = None
        self.active = False

    def initialize(self, robot_description: str, group_name: str, base_frame: str,
                   tip_frame: str, search_discretization: float) -> bool:
        self.set_values(robot_description, group_name, base_frame, tip_frame,
                        search_discretization)
        self.active = False

        try:
            model = load_robot_model(robot_description)
            if model.has_group(group_name):
                group = model.get_joint_model_group(group_name)
                if (group.base_link, group.tip_link) != (self.base_frame, self.tip_frame):
                    logger.error("Group '%s' spans %s -> %s, requested %s -> %s",
                                 group_name, group.base_link, group.tip_link,
                                 self.base_frame, self.tip_frame)
                    return False
                chain = group.chain
            else:
                chain = model.get_chain(self.base_frame, self.tip_frame)
        except (KeyError, FileNotFoundError, ValueError) as e:
            logger.error("Failed to load robot description '%s': %s", robot_description, e)
            return False

        if chain.n_joints == 0:
            logger.error("Chain %s -> %s has no actuated joints", self.base_frame, self.tip_frame)
            return False

        self.chain = chain
        self.fk = ForwardKinematics(chain, self.device)
        self.ik = InverseKinematics(chain, self.device)
        lower, upper = chain.lower_limits, chain.upper_limits
        self._sample_lower = np.where(np.isinf(lower), -np.pi, lower)
        self._sample_upper = np.where(np.isinf(upper), np.pi, upper)
        self._continuous = np.isinf(lower) & np.isinf(upper)
        self.active = True

        logger.info("Initialized %s for group '%s' (%d joints)",
                    type(self).__name__, group_name, chain.n_joints)
        return True

    def get_joint_names(self) -> List[str]:
        return list(self.chain.joint_names) if self.chain is not None else []

    def get_link_names(self) -> List[str]:
        return list(self.chain.link_names) if self.chain is not None else []

    # ------------------------------------------------------------------
    # FK
    # ------------------------------------------------------------------

    def get_position_fk(self, link_names: Sequence[str],
                        joint_angles: Sequence[float]) -> Tuple[bool, List[Pose]]:
        if not self.active:
            logger.error("Kinematics solver not initialized")
            return False, []
        if len(joint_angles) != self.chain.n_joints:
            logger.error("Expected %d joint values, got %d", self.chain.n_joints, len(joint_angles))
            return False, []

        q = torch.as_tensor(np.asarray(joint_angles, dtype=np.float64))
        poses = []
        with torch.no_grad():
            for name in link_names:
                if name not in self.chain.link_names:
                    logger.error("Link %s is not part of the chain", name)
                    return False, []
                position, quaternion = self.fk.compute(q, name)
                poses.append(self._to_pose(position, quaternion))
        return True, poses

    # ------------------------------------------------------------------
    # IK
    # ------------------------------------------------------------------

    def get_position_ik(self, ik_pose: Pose,
                        ik_seed_state: Sequence[float]) -> Tuple[ErrorCode, JointValues]:
        if not self.active:
            logger.error("Kinematics solver not initialized")
            return ErrorCode.FAILURE, []
        if len(ik_seed_state) != self.chain.n_joints:
            logger.error("Seed state has %d values, expected %d",
                         len(ik_seed_state), self.chain.n_joints)
            return ErrorCode.NO_IK_SOLUTION, []

        seeds = np.asarray(ik_seed_state, dtype=np.float64)[None, :]
        solutions, valid = self._solve(ik_pose, seeds)
        if valid[0]:
            return ErrorCode.SUCCESS, solutions[0].tolist()
        return ErrorCode.NO_IK_SOLUTION, []

    def search_position_ik(self, ik_pose: Pose, ik_seed_state: Sequence[float],
                           timeout: float,
                           solution_callback: Optional[SolutionCallback] = None,
                           consistency_limits: Optional[Sequence[float]] = None
                           ) -> Tuple[ErrorCode, JointValues]:
        if not self.active:
            logger.error("Kinematics solver not initialized")
            return ErrorCode.FAILURE, []
        n_joints = self.chain.n_joints
        if len(ik_seed_state) != n_joints:
            logger.error("Seed state has %d values, expected %d", len(ik_seed_state), n_joints)
            return ErrorCode.NO_IK_SOLUTION, []
        if consistency_limits is not None and len(consistency_limits) != n_joints:
            logger.error("Consistency limits have %d values, expected %d",
                         len(consistency_limits), n_joints)
            return ErrorCode.NO_IK_SOLUTION, []

        seed = np.asarray(ik_seed_state, dtype=np.float64)
        lower, upper = self._sample_lower, self._sample_upper
        if consistency_limits is not None:
            limits = np.asarray(consistency_limits, dtype=np.float64)
            lower = np.maximum(lower, seed - limits)
            upper = np.minimum(upper, seed + limits)

        deadline = time.monotonic() + timeout
        seeds = np.vstack([seed, self._random_seeds(self.SEARCH_BATCH_SIZE - 1, lower, upper)])
        while True:
            solutions, valid = self._solve(ik_pose, seeds)
            for candidate in solutions[valid]:
                if consistency_limits is not None and np.any(np.abs(candidate - seed) > limits):
                    continue
                solution = candidate.tolist()
                if solution_callback is None:
                    return ErrorCode.SUCCESS, solution
                if solution_callback(ik_pose, solution) == ErrorCode.SUCCESS:
                    return ErrorCode.SUCCESS, solution

            if time.monotonic() >= deadline:
                logger.debug("IK search timed out after %.3f s", timeout)
                return ErrorCode.TIMED_OUT, []
            seeds = self._random_seeds(self.SEARCH_BATCH_SIZE, lower, upper)

    def get_position_ik_multiple(self, ik_poses: Sequence[Pose],
                                 options: Optional[KinematicsQueryOptions] = None
                                 ) -> Tuple[KinematicsResult, List[JointValues]]:
        result = KinematicsResult()
        if not self.active:
            result.kinematic_error = KinematicError.SOLVER_NOT_ACTIVE
            return result, []
        if len(ik_poses) == 0:
            result.kinematic_error = KinematicError.EMPTY_TIP_POSES
            return result, []
        if len(ik_poses) > 1:
            result.kinematic_error = KinematicError.MULTIPLE_TIPS_NOT_SUPPORTED
            return result, []

        options = options or KinematicsQueryOptions()
        if options.discretization_method != DiscretizationMethod.NO_DISCRETIZATION:
            result.kinematic_error = KinematicError.UNSUPORTED_DISCRETIZATION_REQUESTED
            return result, []

        seeds = self._random_seeds(self.MULTIPLE_SOLUTION_ATTEMPTS,
                                   self._sample_lower, self._sample_upper)
        solutions, valid = self._solve(ik_poses[0], seeds)
        solutions = self._remove_duplicates(solutions[valid])

        result.solution_percentage = len(solutions) / self.MULTIPLE_SOLUTION_ATTEMPTS
        if len(solutions) == 0:
            result.kinematic_error = KinematicError.NO_SOLUTION
            return result, []
        return result, [s.tolist() for s in solutions]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _solve(self, ik_pose: Pose, seeds: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Solve from every seed row; returns solutions [B, n] and validity [B]."""
        target_pos = torch.as_tensor(ik_pose.position, dtype=torch.float64)
        x, y, z, w = ik_pose.orientation
        target_quat = torch.tensor([w, x, y, z], dtype=torch.float64)

        q, converged = self.ik.solve(target_pos, target_quat,
                                     torch.as_tensor(seeds, dtype=torch.float64),
                                     method=self.method,
                                     max_iter=self.max_iter,
                                     tolerance=self.tolerance)
        q = q.cpu().numpy()
        q[:, self._continuous] = normalize_angles(q[:, self._continuous])

        within = np.all(check_joint_limits(q, self.chain), axis=1)
        return q, converged.cpu().numpy() & within

    def _random_seeds(self, n: int, lower: np.ndarray, upper: np.ndarray) -> np.ndarray:
        # drawn from torch's RNG so torch.manual_seed fixes the search
        u = torch.rand(n, len(lower), dtype=torch.float64).numpy()
        return lower + u * (upper - lower)

    def _remove_duplicates(self, solutions: np.ndarray) -> np.ndarray:
        if len(solutions) < 2:
            return solutions
        # a solution is a duplicate only of solutions already kept
        tree = cKDTree(solutions)
        keep = []
        for i, solution in enumerate(solutions):
            neighbours = tree.query_ball_point(solution, self.DUPLICATE_RADIUS)
            if not any(j in keep for j in neighbours):
                keep.append(i)
        return solutions[keep]

    @staticmethod
    def _to_pose(position: torch.Tensor, quaternion: torch.Tensor) -> Pose:
        w, x, y, z = quaternion.cpu().numpy()
        return Pose(position=position.cpu().numpy(), orientation=[x, y, z, w])
