"""
Robot 模块：机器人模型

该模块提供URDF/SRDF解析、规划组查询和随机关节状态采样。

子模块:
- urdf: URDF文件解析与运动学链提取
- srdf: 规划组定义解析
- model: 机器人描述标识符注册与规划组查询
- state: 关节限位内的随机状态采样
"""

from .urdf import (
    KinematicChain,
    load_urdf,
    parse_urdf,
    get_kinematic_chain,
    check_joint_limits,
    normalize_angles,
)

from .srdf import GroupChain, parse_srdf

from .model import (
    JointModelGroup,
    RobotModel,
    register_robot_description,
    clear_robot_descriptions,
    resolve_robot_description,
    load_robot_model,
)

from .state import RobotState, sample_random_configurations

__all__ = [
    # URDF
    'KinematicChain',
    'load_urdf',
    'parse_urdf',
    'get_kinematic_chain',
    'check_joint_limits',
    'normalize_angles',
    # SRDF
    'GroupChain',
    'parse_srdf',
    # Model
    'JointModelGroup',
    'RobotModel',
    'register_robot_description',
    'clear_robot_descriptions',
    'resolve_robot_description',
    'load_robot_model',
    # State
    'RobotState',
    'sample_random_configurations',
]
