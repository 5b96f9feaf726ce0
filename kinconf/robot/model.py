"""
机器人模型模块

把机器人描述标识符解析为 URDF/SRDF 文件, 并提供按规划组查询关节链的接口。
运动学插件和测试工具通过同一个标识符获得同一个机器人模型。
"""

import os
from typing import Dict, List, Optional, Tuple

import numpy as np

from .urdf import KinematicChain, load_urdf
from .srdf import GroupChain, parse_srdf

# 标识符 -> (urdf_path, srdf_path)
_DESCRIPTIONS: Dict[str, Tuple[str, Optional[str]]] = {}
_MODEL_CACHE: Dict[Tuple[str, Optional[str]], "RobotModel"] = {}


class JointModelGroup:
    """
    规划组: 名称 + 运动学链

    Attributes:
        name: 规划组名称
        chain: 从基座链接到末端链接的运动学链
    """

    def __init__(self, name: str, chain: KinematicChain):
        self.name = name
        self.chain = chain

    @property
    def joint_names(self) -> List[str]:
        return list(self.chain.joint_names)

    @property
    def base_link(self) -> str:
        return self.chain.base_link

    @property
    def tip_link(self) -> str:
        return self.chain.end_link

    @property
    def variable_count(self) -> int:
        return self.chain.n_joints

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """关节下限、上限"""
        return self.chain.lower_limits, self.chain.upper_limits

    def __repr__(self) -> str:
        return (f"JointModelGroup(name={self.name!r}, "
                f"chain={self.base_link!r}->{self.tip_link!r}, joints={self.joint_names})")


class RobotModel:
    """
    机器人模型: URDF + 规划组

    规划组来自SRDF的 <chain> 定义, 也可以在运行时通过 add_chain_group 声明。
    """

    def __init__(self, urdf_path: str, srdf_path: Optional[str] = None):
        self.urdf_path = urdf_path
        self.srdf_path = srdf_path
        self.urdf = load_urdf(urdf_path)
        self.name = self.urdf.name

        self._group_chains: Dict[str, GroupChain] = {}
        if srdf_path is not None:
            self._group_chains.update(parse_srdf(srdf_path))
        self._groups: Dict[str, JointModelGroup] = {}

    @property
    def group_names(self) -> List[str]:
        return sorted(self._group_chains)

    @property
    def link_names(self) -> List[str]:
        return [link.name for link in self.urdf.links]

    def has_group(self, name: str) -> bool:
        return name in self._group_chains

    def add_chain_group(self, name: str, base_link: str, tip_link: str) -> JointModelGroup:
        """
        声明一个由关节链构成的规划组

        Raises:
            KeyError: 链接不存在或不构成链
            ValueError: 同名规划组已存在且定义不同
        """
        existing = self._group_chains.get(name)
        if existing is not None and (existing.base_link, existing.tip_link) != (base_link, tip_link):
            raise ValueError(
                f"Group '{name}' already defined as {existing.base_link} -> {existing.tip_link}"
            )
        self._group_chains[name] = GroupChain(name, base_link, tip_link)
        return self.get_joint_model_group(name)

    def get_joint_model_group(self, name: str) -> JointModelGroup:
        """
        按名称获取规划组

        Raises:
            KeyError: 规划组不存在
        """
        group = self._groups.get(name)
        if group is not None:
            return group

        group_chain = self._group_chains.get(name)
        if group_chain is None:
            raise KeyError(f"Group '{name}' not found in robot '{self.name}'. "
                           f"Available: {self.group_names}")

        chain = KinematicChain(self.urdf, group_chain.base_link, group_chain.tip_link)
        group = JointModelGroup(name, chain)
        self._groups[name] = group
        return group

    def get_chain(self, base_link: str, tip_link: str) -> KinematicChain:
        """不经规划组直接取一条关节链"""
        return KinematicChain(self.urdf, base_link, tip_link)


def register_robot_description(description: str, urdf_path: str,
                               srdf_path: Optional[str] = None):
    """
    注册机器人描述标识符

    Args:
        description: 标识符, 例如 'robot_description'
        urdf_path: URDF文件路径
        srdf_path: SRDF文件路径(可选)
    """
    _DESCRIPTIONS[description] = (urdf_path, srdf_path)


def clear_robot_descriptions():
    """清空已注册的标识符和模型缓存"""
    _DESCRIPTIONS.clear()
    _MODEL_CACHE.clear()


def resolve_robot_description(description: str) -> Tuple[str, Optional[str]]:
    """
    标识符 -> (urdf_path, srdf_path)

    未注册的标识符如果本身是一个 .urdf 文件路径, 则直接使用,
    同目录下同名的 .srdf 文件作为语义描述。

    Raises:
        KeyError: 标识符既未注册也不是 URDF 文件
    """
    if description in _DESCRIPTIONS:
        return _DESCRIPTIONS[description]

    if description.endswith('.urdf') and os.path.exists(description):
        srdf_path = os.path.splitext(description)[0] + '.srdf'
        return description, srdf_path if os.path.exists(srdf_path) else None

    raise KeyError(f"Robot description '{description}' is not registered")


def load_robot_model(description: str) -> RobotModel:
    """
    按标识符加载机器人模型, 同一组文件只解析一次

    Raises:
        KeyError: 标识符未注册
        FileNotFoundError: 文件不存在
        ValueError: 文件格式错误
    """
    key = resolve_robot_description(description)
    model = _MODEL_CACHE.get(key)
    if model is None:
        model = RobotModel(*key)
        _MODEL_CACHE[key] = model
    return model
