"""
机器人状态模块

在关节限位内均匀采样规划组的随机关节配置。
"""

import numpy as np
from typing import Dict, List, Optional

from .model import JointModelGroup, RobotModel

# continuous 关节的采样范围
CONTINUOUS_RANGE = (-np.pi, np.pi)


def sample_random_configurations(group: JointModelGroup,
                                 n_samples: int,
                                 rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    采样随机关节配置

    在关节限位范围内均匀采样, 无限位的关节在 [-π, π] 内采样。

    Args:
        group: 规划组
        n_samples: 采样数量
        rng: 随机数生成器(None表示使用新的默认生成器)

    Returns:
        关节配置数组 [n_samples, n_joints]
    """
    if rng is None:
        rng = np.random.default_rng()

    lower, upper = group.bounds()
    lower = np.where(np.isinf(lower), CONTINUOUS_RANGE[0], lower)
    upper = np.where(np.isinf(upper), CONTINUOUS_RANGE[1], upper)

    return rng.uniform(lower, upper, size=(n_samples, group.variable_count))


class RobotState:
    """
    机器人关节状态

    只保存规划组关节的位置, 未设置的关节为 0。
    """

    def __init__(self, robot_model: RobotModel, seed: Optional[int] = None):
        self.robot_model = robot_model
        self.rng = np.random.default_rng(seed)
        self._positions: Dict[str, float] = {}

    def set_to_random_positions(self, group: JointModelGroup):
        """把规划组的关节设为限位内的随机值"""
        values = sample_random_configurations(group, 1, self.rng)[0]
        self.set_joint_group_positions(group, values)

    def set_joint_group_positions(self, group: JointModelGroup, values):
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (group.variable_count,):
            raise ValueError(f"Group '{group.name}' expects {group.variable_count} values, "
                             f"got shape {values.shape}")
        for name, value in zip(group.joint_names, values):
            self._positions[name] = float(value)

    def copy_joint_group_positions(self, group: JointModelGroup) -> List[float]:
        """按规划组的关节顺序返回关节位置"""
        return [self._positions.get(name, 0.0) for name in group.joint_names]
