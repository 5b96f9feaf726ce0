"""
Harness 模块单元测试

测试参数配置、位姿比较、测试上下文和各验证类别。
验证类别使用可控的替身求解器, 端到端测试使用参考插件。
"""

import json
import os
import tempfile
import unittest

import numpy as np
import torch

from kinconf import HarnessError
from kinconf.harness import (
    CategoryReport,
    ConfigurationError,
    HarnessConfig,
    KinematicsTestContext,
    PoseMismatchError,
    SolverInitializationError,
    ValidationRunner,
    all_passed,
    assert_poses_near,
    compare_poses,
    format_summary,
    poses_near,
)
from kinconf.kinematics import (
    ErrorCode,
    KinematicError,
    KinematicsBase,
    KinematicsResult,
    PluginLoadError,
    Pose,
    load_solver,
)
from kinconf.robot import clear_robot_descriptions

ROBOT_DIR = os.path.join(os.path.dirname(__file__), '..', 'robots')
GANTRY_URDF = os.path.join(ROBOT_DIR, 'gantry.urdf')
GANTRY_SRDF = os.path.join(ROBOT_DIR, 'gantry.srdf')
GANTRY_JOINTS = ['x_joint', 'y_joint', 'z_joint']


class CartesianSolver(KinematicsBase):
    """
    替身求解器: 三个移动关节, 末端位置 = (q0, q1, q2 + z_offset), 姿态恒为单位四元数

    各开关用于制造特定的错误行为。
    """

    def __init__(self, z_offset=0.15, joint_names=None, tip_override=None,
                 initialize_result=True, fk_fails=False, ik_fail_every=0,
                 solution_offset=0.0, search_offset=0.0, offer_below_ground=False, ignore_callback=False,
                 multiple_empty=False):
        super().__init__()
        self.z_offset = z_offset
        self.joint_names = list(joint_names or GANTRY_JOINTS)
        self.tip_override = tip_override
        self.initialize_result = initialize_result
        self.fk_fails = fk_fails
        self.ik_fail_every = ik_fail_every
        self.solution_offset = solution_offset
        self.search_offset = search_offset
        self.offer_below_ground = offer_below_ground
        self.ignore_callback = ignore_callback
        self.multiple_empty = multiple_empty

        self.ik_calls = 0
        self.callback_verdicts = []

    def initialize(self, robot_description, group_name, base_frame, tip_frame,
                   search_discretization):
        self.set_values(robot_description, group_name, base_frame,
                        self.tip_override or tip_frame, search_discretization)
        return self.initialize_result

    def get_joint_names(self):
        return list(self.joint_names)

    def get_link_names(self):
        return [self.tip_frame]

    def get_position_fk(self, link_names, joint_angles):
        if self.fk_fails:
            return False, []
        q = np.asarray(joint_angles, dtype=np.float64)
        return True, [Pose(position=[q[0], q[1], q[2] + self.z_offset]) for _ in link_names]

    def _solution(self, ik_pose):
        x, y, z = ik_pose.position
        return [x + self.solution_offset, y, z - self.z_offset]

    def get_position_ik(self, ik_pose, ik_seed_state):
        self.ik_calls += 1
        if self.ik_fail_every and self.ik_calls % self.ik_fail_every == 0:
            return ErrorCode.NO_IK_SOLUTION, []
        return ErrorCode.SUCCESS, self._solution(ik_pose)

    def search_position_ik(self, ik_pose, ik_seed_state, timeout,
                           solution_callback=None, consistency_limits=None):
        solution = self._solution(ik_pose)
        solution[0] += self.search_offset
        candidates = [solution]
        if self.offer_below_ground:
            candidates.insert(0, [solution[0], solution[1], -1.0])

        if solution_callback is None:
            return ErrorCode.SUCCESS, solution
        for candidate in candidates:
            verdict = solution_callback(ik_pose, candidate)
            self.callback_verdicts.append(verdict)
            if verdict == ErrorCode.SUCCESS or self.ignore_callback:
                return ErrorCode.SUCCESS, candidate
        return ErrorCode.TIMED_OUT, []

    def get_position_ik_multiple(self, ik_poses, options=None):
        if self.multiple_empty:
            return KinematicsResult(kinematic_error=KinematicError.OK), []
        return KinematicsResult(solution_percentage=1.0), [self._solution(ik_poses[0])]


def gantry_config(**overrides):
    params = dict(ik_plugin_name='fake', group='gantry', root_link='base_link',
                  tip_link='tool0', joint_names=list(GANTRY_JOINTS),
                  urdf=GANTRY_URDF, srdf=GANTRY_SRDF, seed=0)
    params.update(overrides)
    return HarnessConfig.from_params(params)


def make_context(solver, **overrides):
    context = KinematicsTestContext(gantry_config(**overrides), solver_factory=lambda name: solver)
    context.initialize()
    return context


class TestHarnessConfig(unittest.TestCase):
    """测试参数配置"""

    def test_fatal_errors_share_base(self):
        for error in (ConfigurationError, PluginLoadError, SolverInitializationError):
            self.assertTrue(issubclass(error, HarnessError))

    def test_defaults(self):
        config = HarnessConfig()
        self.assertEqual(config.num_ik_tests, 100)
        self.assertEqual(config.timeout, 5.0)
        self.assertEqual(config.tolerance, 1e-4)
        self.assertEqual(config.success_ratio, 0.99)
        self.assertEqual(config.robot_description, 'robot_description')

    def test_from_params_keeps_unknown_keys(self):
        config = gantry_config(kinematics_solver_attempts=3)
        self.assertEqual(config.group, 'gantry')
        self.assertEqual(config.extra, {'kinematics_solver_attempts': 3})

    def test_missing_parameters(self):
        config = HarnessConfig.from_params({'ik_plugin_name': 'fake', 'group': 'gantry'})
        self.assertEqual(config.missing_parameters(), ['tip_link', 'root_link', 'joint_names'])
        with self.assertRaises(ConfigurationError):
            config.require_chain_parameters()

    def test_joint_names_must_be_list(self):
        with self.assertRaises(ConfigurationError):
            HarnessConfig.from_params({'joint_names': 'x_joint'})

    def test_invalid_values(self):
        with self.assertRaises(ConfigurationError):
            HarnessConfig.from_params({'num_ik_tests': -1})
        with self.assertRaises(ConfigurationError):
            HarnessConfig.from_params({'success_ratio': 1.5})
        with self.assertRaises(ConfigurationError):
            HarnessConfig.from_params({'timeout': 0})

    def test_from_file(self):
        with tempfile.NamedTemporaryFile('w', suffix='.json', delete=False) as f:
            json.dump({'group': 'gantry', 'num_fk_tests': 5}, f)
            path = f.name
        try:
            config = HarnessConfig.from_file(path)
        finally:
            os.remove(path)
        self.assertEqual(config.group, 'gantry')
        self.assertEqual(config.num_fk_tests, 5)

    def test_from_file_errors(self):
        with self.assertRaises(ConfigurationError):
            HarnessConfig.from_file('nonexistent.json')

        with tempfile.NamedTemporaryFile('w', suffix='.json', delete=False) as f:
            json.dump([1, 2, 3], f)
            path = f.name
        try:
            with self.assertRaises(ConfigurationError):
                HarnessConfig.from_file(path)
        finally:
            os.remove(path)

    def test_quick_test(self):
        config = HarnessConfig.quick_test(group='gantry')
        self.assertEqual(config.num_fk_tests, 10)
        self.assertEqual(config.timeout, 1.0)
        self.assertEqual(config.group, 'gantry')

    def test_quick_test_invalid_override(self):
        with self.assertRaises(ConfigurationError):
            HarnessConfig.quick_test(timeout=-1.0)


class TestPoseComparison(unittest.TestCase):
    """测试位姿逐分量比较"""

    def test_within_tolerance(self):
        a = Pose(position=[0.1, 0.2, 0.3])
        b = Pose(position=[0.1 + 5e-5, 0.2, 0.3 - 5e-5])
        self.assertTrue(poses_near(a, b))
        assert_poses_near(a, b)

    def test_out_of_tolerance(self):
        a = Pose(position=[0.1, 0.2, 0.3])
        b = Pose(position=[0.1, 0.2 + 2e-4, 0.3])

        mismatches = compare_poses(a, b)
        self.assertEqual([name for name, _, _ in mismatches], ['y'])
        with self.assertRaises(PoseMismatchError) as ctx:
            assert_poses_near(a, b)
        self.assertEqual(ctx.exception.tolerance, 1e-4)
        self.assertIsInstance(ctx.exception, AssertionError)

    def test_custom_tolerance(self):
        a = Pose(position=[0.1, 0.2, 0.3])
        b = Pose(position=[0.1, 0.2 + 2e-4, 0.3])
        self.assertTrue(poses_near(a, b, tolerance=1e-3))

    def test_antipodal_quaternion_differs(self):
        """q 与 -q 表示相同旋转, 但逐分量比较视为不同"""
        a = Pose(orientation=[0.0, 0.0, 0.0, 1.0])
        b = Pose(orientation=[0.0, 0.0, 0.0, -1.0])
        self.assertEqual([name for name, _, _ in compare_poses(a, b)], ['qw'])

    def test_nan_component_differs(self):
        a = Pose(position=[0.1, 0.2, 0.3])
        b = Pose(position=[np.nan, 0.2, 0.3])
        self.assertFalse(poses_near(a, b))


class TestCategoryReport(unittest.TestCase):
    """测试类别统计与通过判定"""

    def test_threshold(self):
        report = CategoryReport('get_ik', 10, success_ratio=0.8)
        report.successes = 9
        self.assertTrue(report.passed)
        report.successes = 8
        self.assertFalse(report.passed)

    def test_threshold_at_default_ratio(self):
        """0.99 * 100 == 99.0, 100 次中需全部成功"""
        report = CategoryReport('get_ik', 100)
        report.successes = 99
        self.assertFalse(report.passed)
        report.successes = 100
        self.assertTrue(report.passed)

    def test_failures_fail_category(self):
        report = CategoryReport('get_ik', 10)
        report.successes = 10
        report.fail('round trip mismatch')
        self.assertFalse(report.passed)

    def test_non_statistical(self):
        report = CategoryReport('initialize', 0, statistical=False)
        self.assertTrue(report.passed)
        report.aborted = True
        self.assertFalse(report.passed)

    def test_success_rate_uses_configured_trials(self):
        report = CategoryReport('search_ik_with_callback', 10)
        report.successes = 6
        report.skipped = 4
        self.assertAlmostEqual(report.success_rate, 0.6)


class TestKinematicsTestContext(unittest.TestCase):
    """测试被测求解器的加载与初始化"""

    def setUp(self):
        clear_robot_descriptions()

    def tearDown(self):
        clear_robot_descriptions()

    def test_initialize(self):
        solver = CartesianSolver()
        context = make_context(solver)

        self.assertIs(context.solver, solver)
        self.assertEqual(context.group.joint_names, GANTRY_JOINTS)
        self.assertEqual(solver.get_tip_frame(), 'tool0')

    def test_missing_plugin_name(self):
        config = gantry_config(ik_plugin_name=None)
        context = KinematicsTestContext(config, solver_factory=lambda name: CartesianSolver())
        with self.assertRaises(ConfigurationError):
            context.initialize()

    def test_missing_chain_parameters(self):
        config = gantry_config(tip_link=None)
        context = KinematicsTestContext(config, solver_factory=lambda name: CartesianSolver())
        with self.assertRaises(ConfigurationError):
            context.initialize()

    def test_plugin_load_error(self):
        context = KinematicsTestContext(gantry_config(ik_plugin_name='NoSuchPlugin'),
                                        solver_factory=load_solver)
        with self.assertRaises(PluginLoadError):
            context.initialize()

    def test_solver_refuses_initialize(self):
        context = KinematicsTestContext(
            gantry_config(), solver_factory=lambda name: CartesianSolver(initialize_result=False))
        with self.assertRaises(SolverInitializationError):
            context.initialize()
        self.assertIsNone(context.solver)

    def test_group_declared_from_chain(self):
        """SRDF中没有的规划组按 root_link/tip_link 声明"""
        context = make_context(CartesianSolver(joint_names=['x_joint', 'y_joint']),
                               group='xy', tip_link='y_carriage',
                               joint_names=['x_joint', 'y_joint'])
        self.assertEqual(context.group.joint_names, ['x_joint', 'y_joint'])

    def test_search_ik_callback(self):
        context = make_context(CartesianSolver())
        pose = Pose(position=[0.0, 0.0, 0.3])
        self.assertEqual(context.search_ik_callback(pose, [0.0, 0.0, 0.1]), ErrorCode.SUCCESS)
        self.assertEqual(context.search_ik_callback(pose, [0.0, 0.0, -0.15]),
                         ErrorCode.PLANNING_FAILED)

    def test_runner_requires_initialized_context(self):
        context = KinematicsTestContext(gantry_config())
        with self.assertRaises(ValueError):
            ValidationRunner(context)


class TestValidationRunner(unittest.TestCase):
    """测试验证类别"""

    def setUp(self):
        clear_robot_descriptions()

    def tearDown(self):
        clear_robot_descriptions()

    def test_conforming_solver_passes(self):
        reports = ValidationRunner(make_context(CartesianSolver())).run_all()

        self.assertEqual([r.name for r in reports],
                         ['initialize', 'fk', 'search_ik', 'search_ik_with_callback',
                          'get_ik', 'get_ik_multiple'])
        self.assertTrue(all_passed(reports))
        for report in reports[1:]:
            self.assertEqual(report.successes, 100)
            self.assertEqual(report.failures, [])

    def test_zero_trial_categories_skipped(self):
        context = make_context(CartesianSolver(), num_ik_cb_tests=0, num_ik_multiple_tests=0)
        reports = ValidationRunner(context).run_all()
        self.assertEqual([r.name for r in reports],
                         ['initialize', 'fk', 'search_ik', 'get_ik'])

    def test_initialize_metadata_mismatch(self):
        solver = CartesianSolver(joint_names=['x_joint', 'z_joint', 'y_joint'],
                                 tip_override='z_carriage')
        report = ValidationRunner(make_context(solver)).check_initialize()

        self.assertFalse(report.passed)
        self.assertEqual(len(report.failures), 2)

    def test_joint_count_mismatch(self):
        solver = CartesianSolver(joint_names=['x_joint', 'y_joint'])
        report = ValidationRunner(make_context(solver)).check_initialize()
        self.assertFalse(report.passed)

    def test_fk_failure_aborts(self):
        runner = ValidationRunner(make_context(CartesianSolver(fk_fails=True)))

        report = runner.check_fk()
        self.assertTrue(report.aborted)
        self.assertEqual(report.attempts, 1)
        self.assertFalse(report.passed)

        report = runner.check_get_ik()
        self.assertTrue(report.aborted)
        self.assertEqual(report.attempts, 0)

    def test_success_ratio_not_met(self):
        report = ValidationRunner(make_context(CartesianSolver(ik_fail_every=10))).check_get_ik()

        self.assertEqual(report.attempts, 100)
        self.assertEqual(report.successes, 90)
        self.assertEqual(report.failures, [])
        self.assertFalse(report.passed)

    def test_lower_success_ratio(self):
        context = make_context(CartesianSolver(ik_fail_every=10), success_ratio=0.85)
        report = ValidationRunner(context).check_get_ik()
        self.assertTrue(report.passed)

    def test_search_ik_confirmed_by_direct_solve(self):
        """搜索结果需经 get_position_ik 再次确认"""
        solver = CartesianSolver(ik_fail_every=2)
        report = ValidationRunner(make_context(solver)).check_search_ik()

        self.assertEqual(solver.ik_calls, 100)
        self.assertEqual(report.successes, 50)
        self.assertFalse(report.passed)

    def test_round_trip_mismatch(self):
        report = ValidationRunner(make_context(CartesianSolver(solution_offset=1e-3))).check_get_ik()

        self.assertEqual(report.successes, 100)
        self.assertEqual(len(report.failures), 100)
        self.assertFalse(report.passed)

    def test_search_solution_round_trip(self):
        """搜索返回的解本身也要与参考位姿一致, 即使直接求解能纠正它"""
        runner = ValidationRunner(make_context(CartesianSolver(search_offset=0.01)))

        for report in (runner.check_search_ik(), runner.check_search_ik_with_callback()):
            self.assertEqual(report.successes, 100)
            self.assertEqual(len(report.failures), 100)
            self.assertFalse(report.passed)

    def test_round_trip_within_tolerance(self):
        report = ValidationRunner(make_context(CartesianSolver(solution_offset=1e-5))).check_get_ik()
        self.assertTrue(report.passed)

    def test_callback_rejects_below_ground_candidate(self):
        solver = CartesianSolver(offer_below_ground=True)
        report = ValidationRunner(make_context(solver)).check_search_ik_with_callback()

        self.assertTrue(report.passed)
        self.assertEqual(solver.callback_verdicts.count(ErrorCode.PLANNING_FAILED), 100)
        self.assertEqual(solver.callback_verdicts.count(ErrorCode.SUCCESS), 100)

    def test_accepted_solution_below_ground(self):
        """求解器忽略回调结果时记录失败"""
        solver = CartesianSolver(offer_below_ground=True, ignore_callback=True)
        report = ValidationRunner(make_context(solver)).check_search_ik_with_callback()

        # 每个样本: 回调拒绝的解被接受 + 该解的位姿不一致
        self.assertEqual(len(report.failures), 200)
        self.assertEqual(sum("callback rejects" in f for f in report.failures), 100)
        self.assertFalse(report.passed)

    def test_below_ground_references_skipped(self):
        """参考位姿在地面以下的样本跳过, 但仍计入总数"""
        solver = CartesianSolver(z_offset=-0.15)
        report = ValidationRunner(make_context(solver)).check_search_ik_with_callback()

        self.assertGreater(report.skipped, 0)
        self.assertEqual(report.attempts + report.skipped, 100)
        self.assertEqual(report.successes, report.attempts)
        self.assertFalse(report.passed)

    def test_multiple_ok_without_solutions(self):
        report = ValidationRunner(make_context(CartesianSolver(multiple_empty=True))) \
            .check_get_ik_multiple()

        self.assertEqual(report.successes, 0)
        self.assertEqual(len(report.failures), 100)
        self.assertFalse(report.passed)

    def test_sampling_is_reproducible(self):
        first = ValidationRunner(make_context(CartesianSolver()))
        samples = [first._sample() for _ in range(5)]
        clear_robot_descriptions()
        second = ValidationRunner(make_context(CartesianSolver()))
        self.assertEqual(samples, [second._sample() for _ in range(5)])

    def test_format_summary(self):
        context = make_context(CartesianSolver(ik_fail_every=10))
        runner = ValidationRunner(context)
        summary = format_summary([runner.check_initialize(), runner.check_get_ik()])

        self.assertIn('initialize', summary)
        self.assertIn('PASS', summary)
        self.assertIn('FAIL', summary)
        self.assertIn('90.00%', summary)


class TestEndToEnd(unittest.TestCase):
    """参考插件在龙门机构上通过全部类别"""

    def setUp(self):
        clear_robot_descriptions()
        torch.manual_seed(0)

    def tearDown(self):
        clear_robot_descriptions()

    def test_reference_plugin_passes(self):
        config = HarnessConfig.quick_test(
            ik_plugin_name='kinconf.kinematics.plugin:TorchKinematicsPlugin',
            group='gantry', root_link='base_link', tip_link='tool0',
            joint_names=list(GANTRY_JOINTS), urdf=GANTRY_URDF, srdf=GANTRY_SRDF, seed=0)
        context = KinematicsTestContext(config)
        context.initialize()

        reports = ValidationRunner(context).run_all()

        self.assertTrue(all_passed(reports), format_summary(reports))
        self.assertEqual(len(reports), 6)


if __name__ == '__main__':
    unittest.main()
