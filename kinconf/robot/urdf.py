"""
URDF 解析模块

提供URDF文件解析和运动学链提取功能。
URDF 读取基于 urchin 库,本模块只负责从中抽取基座到末端的关节链。
"""

import os
import numpy as np
import torch
from typing import Optional, Union

from urchin import URDF

ACTUATED_JOINT_TYPES = ('revolute', 'continuous', 'prismatic')


class KinematicChain:
    """运动学链数据结构

    存储从基座链接到末端链接路径上的全部关节(包括固定关节)。

    Attributes:
        joints: 路径上的关节对象列表(基座 -> 末端)
        actuated_joints: 其中可驱动的关节
        joint_names: 可驱动关节名称列表
        joint_types: 路径上每个关节的类型
        joint_limits: 可驱动关节限位 (lower, upper) 元组列表
        link_names: 链接名称列表, link_names[0] 为基座链接
        base_link: 基座链接名称
        end_link: 末端链接名称
    """

    def __init__(self, urdf: URDF, base_link: Optional[str] = None,
                 end_link: Optional[str] = None):
        """
        从URDF对象构建运动学链

        Args:
            urdf: URDF对象
            base_link: 基座链接名称(None表示使用URDF的根链接)
            end_link: 末端链接名称(None表示使用第一个末端链接)

        Raises:
            KeyError: 链接不存在, 或末端链接不在基座链接之下
        """
        self.urdf = urdf
        self.base_link = base_link or urdf.base_link.name
        self.end_link = end_link or (urdf.end_links[0].name if urdf.end_links else None)

        for link in (self.base_link, self.end_link):
            if link not in urdf.link_map:
                raise KeyError(f"Link {link} not found in robot '{urdf.name}'")

        self.joints = self._find_path(urdf, self.base_link, self.end_link)
        self.joint_types = [j.joint_type for j in self.joints]

        # mimic 关节由其它关节驱动, 不计入关节链的自由度
        self.actuated_joints = [j for j in self.joints
                                if j.joint_type in ACTUATED_JOINT_TYPES and j.mimic is None]
        self.joint_names = [j.name for j in self.actuated_joints]
        self.joint_axes = [j.axis for j in self.actuated_joints]

        # 提取关节限位
        self.joint_limits = []
        for joint in self.actuated_joints:
            if joint.joint_type != 'continuous' and joint.limit is not None:
                lower = joint.limit.lower if joint.limit.lower is not None else -np.inf
                upper = joint.limit.upper if joint.limit.upper is not None else np.inf
                self.joint_limits.append((lower, upper))
            else:
                # continuous joint 没有限位
                self.joint_limits.append((-np.inf, np.inf))

        # 链接名称
        self.link_names = [self.base_link] + [j.child for j in self.joints]

    @staticmethod
    def _find_path(urdf: URDF, base_link: str, end_link: str) -> list:
        """从末端链接沿父关节回溯到基座链接"""
        parent_joint = {j.child: j for j in urdf.joints}
        path = []
        link = end_link
        while link != base_link:
            joint = parent_joint.get(link)
            if joint is None:
                raise KeyError(f"Link {end_link} is not a descendant of {base_link}")
            path.append(joint)
            link = joint.parent
        path.reverse()
        return path

    @property
    def n_joints(self) -> int:
        """可驱动关节数量"""
        return len(self.actuated_joints)

    @property
    def lower_limits(self) -> np.ndarray:
        """关节下限数组"""
        return np.array([l for l, u in self.joint_limits], dtype=np.float64)

    @property
    def upper_limits(self) -> np.ndarray:
        """关节上限数组"""
        return np.array([u for l, u in self.joint_limits], dtype=np.float64)


def load_urdf(urdf_path: str) -> URDF:
    """
    读取URDF文件

    Args:
        urdf_path: URDF文件路径

    Returns:
        URDF对象

    Raises:
        FileNotFoundError: 文件不存在
        ValueError: URDF格式错误
    """
    if not os.path.exists(urdf_path):
        raise FileNotFoundError(f"URDF file not found: {urdf_path}")

    try:
        return URDF.load(urdf_path, lazy_load_meshes=True)
    except Exception as e:
        raise ValueError(f"Failed to parse URDF file: {e}") from e


def parse_urdf(urdf_path: str) -> KinematicChain:
    """
    解析URDF文件, 返回从根链接到第一个末端链接的运动学链

    Args:
        urdf_path: URDF文件路径

    Returns:
        KinematicChain: 运动学链对象
    """
    return KinematicChain(load_urdf(urdf_path))


def get_kinematic_chain(urdf_path: str, base_link: Optional[str] = None,
                       end_link: Optional[str] = None) -> KinematicChain:
    """
    获取运动学链

    Args:
        urdf_path: URDF文件路径
        base_link: 基座链接名称
        end_link: 末端链接名称

    Returns:
        KinematicChain: 运动学链对象
    """
    return KinematicChain(load_urdf(urdf_path), base_link, end_link)


def check_joint_limits(q: Union[np.ndarray, torch.Tensor],
                      chain: KinematicChain) -> Union[np.ndarray, torch.Tensor]:
    """
    检查关节角度是否在限位内

    Args:
        q: 关节角度, shape: [..., n_joints]
        chain: 运动学链对象

    Returns:
        布尔数组, shape: [..., n_joints], True表示在限位内
    """
    lower = chain.lower_limits
    upper = chain.upper_limits

    if isinstance(q, torch.Tensor):
        lower = torch.from_numpy(lower).to(q.device, q.dtype)
        upper = torch.from_numpy(upper).to(q.device, q.dtype)
        return (q >= lower) & (q <= upper)
    else:
        q = np.asarray(q)
        return (q >= lower) & (q <= upper)


def normalize_angles(q: Union[np.ndarray, torch.Tensor]
                    ) -> Union[np.ndarray, torch.Tensor]:
    """
    将角度归一化到 [-π, π] 范围

    Args:
        q: 角度, shape: [...]

    Returns:
        归一化后的角度, shape: [...]
    """
    if isinstance(q, torch.Tensor):
        return torch.atan2(torch.sin(q), torch.cos(q))
    else:
        q = np.asarray(q)
        return np.arctan2(np.sin(q), np.cos(q))
