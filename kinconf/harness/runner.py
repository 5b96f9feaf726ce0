"""
Validation Protocol

Runs the conformance categories against an initialized test context:
- initialize: chain metadata reported by the solver
- fk: FK on random valid samples
- search_ik: search from a zero seed, confirmed by a direct solve
- search_ik_with_callback: search with an above-ground acceptance callback
- get_ik: direct solve seeded with the sample
- get_ik_multiple: enumeration of all solutions

Every IK solution is pushed back through FK and compared with the reference
pose. A category passes when it recorded no assertion failure and more than
`success_ratio` of its trials succeeded.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from ..kinematics.base import ErrorCode, KinematicError, KinematicsQueryOptions, Pose
from ..robot.state import RobotState
from .comparator import PoseMismatchError, assert_poses_near
from .context import KinematicsTestContext

logger = logging.getLogger(__name__)


@dataclass
class CategoryReport:
    """Statistics of one validation category."""

    name: str
    num_trials: int
    success_ratio: float = 0.99
    statistical: bool = True  # False: every trial must succeed, no threshold

    attempts: int = 0
    successes: int = 0
    skipped: int = 0
    elapsed: float = 0.0  # seconds
    aborted: bool = False
    failures: List[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Successes over the configured trial count (skipped trials included)."""
        if self.num_trials == 0:
            return 0.0
        return self.successes / self.num_trials

    @property
    def passed(self) -> bool:
        if self.aborted or self.failures:
            return False
        if not self.statistical:
            return True
        return self.successes > self.success_ratio * self.num_trials

    def fail(self, message: str):
        """Record an assertion failure."""
        logger.error("[%s] %s", self.name, message)
        self.failures.append(message)


SingleSolve = Callable[[CategoryReport, int, Pose, List[float]], Tuple[bool, Sequence[float]]]


class ValidationRunner:
    """
    Sequential sample-solve-verify loop over the solver of a test context.

    Trials run one after another; the solver is never called concurrently.
    """

    def __init__(self, context: KinematicsTestContext, progress: bool = False):
        if context.solver is None:
            raise ValueError("Test context must be initialized before validation")
        self.context = context
        self.config = context.config
        self.solver = context.solver
        self.progress = progress
        self.state = RobotState(context.robot_model, seed=self.config.seed)

    # ------------------------------------------------------------------
    # categories
    # ------------------------------------------------------------------

    def run_all(self) -> List[CategoryReport]:
        """Run every category with a non-zero trial count, in protocol order."""
        config = self.config
        reports = [self.check_initialize()]
        if config.num_fk_tests:
            reports.append(self.check_fk())
        if config.num_ik_tests:
            reports.append(self.check_search_ik())
        if config.num_ik_cb_tests:
            reports.append(self.check_search_ik_with_callback())
        if config.num_ik_tests:
            reports.append(self.check_get_ik())
        if config.num_ik_multiple_tests:
            reports.append(self.check_get_ik_multiple())
        return reports

    def check_initialize(self) -> CategoryReport:
        """Solver frames and joint names must match the configured chain."""
        report = CategoryReport("initialize", 0, statistical=False)
        start = time.perf_counter()
        context = self.context

        base_frame = self.solver.get_base_frame()
        if base_frame != context.root_link:
            report.fail(f"Base frame '{base_frame}' differs from root link '{context.root_link}'")

        tip_frame = self.solver.get_tip_frame()
        if tip_frame != context.tip_link:
            report.fail(f"Tip frame '{tip_frame}' differs from tip link '{context.tip_link}'")

        joint_names = self.solver.get_joint_names()
        expected = context.joint_names
        if len(joint_names) != len(expected):
            report.fail(f"Solver reports {len(joint_names)} joints, expected {len(expected)}")
        for actual_name, expected_name in zip(joint_names, expected):
            if actual_name != expected_name:
                report.fail(f"Joint names differ: {joint_names} != {expected}")
                break

        report.elapsed = time.perf_counter() - start
        return report

    def check_fk(self) -> CategoryReport:
        """FK must succeed with exactly one pose on every valid sample."""
        report = self._new_report("fk", self.config.num_fk_tests, statistical=False)
        start = time.perf_counter()
        tip = self.solver.get_tip_frame()

        for i in self._trials(report):
            fk_values = self._sample()
            report.attempts += 1
            succeeded, poses = self.solver.get_position_fk([tip], fk_values)
            if not succeeded or len(poses) != 1:
                report.fail(f"get_position_fk failed on test {i + 1} "
                            f"(succeeded={succeeded}, poses={len(poses)})")
                report.aborted = True
                break
            report.successes += 1

        self._finish(report, start)
        return report

    def check_search_ik(self) -> CategoryReport:
        """
        search_position_ik from a zero seed, confirmed by get_position_ik.

        Both the search solution and the confirmed solution must reproduce
        the reference pose.
        """
        zero_seed = [0.0] * len(self.solver.get_joint_names())
        timeout = self.config.timeout

        def solve(report, trial, pose, fk_values):
            code, solution = self.solver.search_position_ik(pose, zero_seed, timeout)
            if code != ErrorCode.SUCCESS:
                return False, solution
            self._verify_round_trip(report, trial, pose, solution)
            return self._confirm(pose, solution)

        return self._check_single_ik("search_ik", self.config.num_ik_tests, solve,
                                     "search_position_ik")

    def check_search_ik_with_callback(self) -> CategoryReport:
        """
        search_position_ik with the above-ground callback, seeded with the sample.

        Samples whose reference tip is at or below z = 0 are skipped; the
        threshold still uses the configured trial count.
        """
        timeout = self.config.timeout

        def solve(report, trial, pose, fk_values):
            code, solution = self.solver.search_position_ik(
                pose, fk_values, timeout, solution_callback=self.context.search_ik_callback)
            if code != ErrorCode.SUCCESS:
                return False, solution

            accepted = self.context.compute_tip_pose(solution)
            if accepted is None or accepted.position[2] <= 0.0:
                report.fail(f"test {trial + 1}: search accepted a solution the callback rejects "
                            f"({solution})")
            self._verify_round_trip(report, trial, pose, solution)
            return self._confirm(pose, solution)

        return self._check_single_ik("search_ik_with_callback", self.config.num_ik_cb_tests,
                                     solve, "search_position_ik", skip_below_ground=True)

    def check_get_ik(self) -> CategoryReport:
        """get_position_ik seeded with the sampled configuration."""

        def solve(report, trial, pose, fk_values):
            code, solution = self.solver.get_position_ik(pose, fk_values)
            return code == ErrorCode.SUCCESS, solution

        return self._check_single_ik("get_ik", self.config.num_ik_tests, solve,
                                     "get_position_ik")

    def check_get_ik_multiple(self) -> CategoryReport:
        """get_position_ik_multiple must return OK with a non-empty solution set."""
        report = self._new_report("get_ik_multiple", self.config.num_ik_multiple_tests)
        start = time.perf_counter()
        options = KinematicsQueryOptions()

        for i in self._trials(report):
            sample = self._sample_reference(report, i)
            if sample is None:
                break
            _, pose = sample
            report.attempts += 1
            logger.debug("Pose: %s", pose)

            result, solutions = self.solver.get_position_ik_multiple([pose], options)
            if result.kinematic_error != KinematicError.OK:
                logger.error("get_position_ik_multiple failed on test %d (%s)",
                             i + 1, getattr(result.kinematic_error, "name", result.kinematic_error))
                continue
            if not solutions:
                report.fail(f"test {i + 1}: kinematic error OK but no solutions returned")
                continue

            report.successes += 1
            for solution in solutions:
                self._verify_round_trip(report, i, pose, solution)

        self._finish(report, start)
        return report

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _check_single_ik(self, name: str, num_trials: int, solve: SingleSolve,
                         call_name: str, skip_below_ground: bool = False) -> CategoryReport:
        report = self._new_report(name, num_trials)
        start = time.perf_counter()

        for i in self._trials(report):
            sample = self._sample_reference(report, i)
            if sample is None:
                break
            fk_values, pose = sample

            if skip_below_ground and pose.position[2] <= 0.0:
                report.skipped += 1
                continue

            report.attempts += 1
            logger.debug("Pose: %s", pose)

            succeeded, solution = solve(report, i, pose, fk_values)
            if not succeeded:
                logger.error("%s failed on test %d", call_name, i + 1)
                continue

            report.successes += 1
            self._verify_round_trip(report, i, pose, solution)

        self._finish(report, start)
        return report

    def _confirm(self, pose: Pose, solution: Sequence[float]) -> Tuple[bool, Sequence[float]]:
        """Direct solve seeded with a search result must succeed as well."""
        code, confirmed = self.solver.get_position_ik(pose, list(solution))
        return code == ErrorCode.SUCCESS, confirmed

    def _new_report(self, name: str, num_trials: int, statistical: bool = True) -> CategoryReport:
        return CategoryReport(name, num_trials, success_ratio=self.config.success_ratio,
                              statistical=statistical)

    def _trials(self, report: CategoryReport):
        return tqdm(range(report.num_trials), desc=report.name,
                    disable=not self.progress, leave=False)

    def _sample(self) -> List[float]:
        group = self.context.group
        self.state.set_to_random_positions(group)
        return self.state.copy_joint_group_positions(group)

    def _sample_reference(self, report: CategoryReport,
                          trial: int) -> Optional[Tuple[List[float], Pose]]:
        """Random valid configuration and its tip pose; FK failure aborts the category."""
        fk_values = self._sample()
        pose = self.context.compute_tip_pose(fk_values)
        if pose is None:
            report.fail(f"get_position_fk failed on valid sample at test {trial + 1} ({fk_values})")
            report.aborted = True
            return None
        return fk_values, pose

    def _verify_round_trip(self, report: CategoryReport, trial: int,
                           reference: Pose, solution: Sequence[float]):
        pose = self.context.compute_tip_pose(solution)
        if pose is None:
            report.fail(f"test {trial + 1}: get_position_fk failed on IK solution {list(solution)}")
            return
        try:
            assert_poses_near(reference, pose, self.config.tolerance)
        except PoseMismatchError as e:
            report.fail(f"test {trial + 1}: {e}")

    def _finish(self, report: CategoryReport, start: float):
        report.elapsed = time.perf_counter() - start
        logger.info("[%s] Success Rate: %.3f", report.name, report.success_rate)
        logger.info("[%s] Elapsed time: %.3f", report.name, report.elapsed)


def all_passed(reports: Sequence[CategoryReport]) -> bool:
    return all(report.passed for report in reports)


def format_summary(reports: Sequence[CategoryReport]) -> str:
    """Plain-text table of category results."""
    lines = [
        f"{'category':<26}{'result':<8}{'success':>9}{'attempts':>10}{'skipped':>9}"
        f"{'failures':>10}{'time (s)':>10}",
        "-" * 82,
    ]
    for report in reports:
        rate = f"{report.success_rate:.2%}" if report.statistical else "-"
        lines.append(
            f"{report.name:<26}{'PASS' if report.passed else 'FAIL':<8}{rate:>9}"
            f"{report.attempts:>10}{report.skipped:>9}{len(report.failures):>10}"
            f"{report.elapsed:>10.3f}"
        )
    return "\n".join(lines)
