"""
SRDF 解析模块

读取语义描述中的规划组定义。只支持以 <chain> 声明的规划组,
这也是运动学插件唯一能够求解的规划组形式。
"""

import os
from dataclasses import dataclass
from typing import Dict

from lxml import etree


@dataclass(frozen=True)
class GroupChain:
    """规划组: 从 base_link 到 tip_link 的一条关节链"""

    name: str
    base_link: str
    tip_link: str


def parse_srdf(srdf_path: str) -> Dict[str, GroupChain]:
    """
    解析SRDF文件中的规划组

    Args:
        srdf_path: SRDF文件路径

    Returns:
        规划组名称 -> GroupChain

    Raises:
        FileNotFoundError: 文件不存在
        ValueError: SRDF格式错误
    """
    if not os.path.exists(srdf_path):
        raise FileNotFoundError(f"SRDF file not found: {srdf_path}")

    try:
        root = etree.parse(srdf_path).getroot()
    except etree.XMLSyntaxError as e:
        raise ValueError(f"Failed to parse SRDF file: {e}") from e

    groups = {}
    for group in root.iter('group'):
        name = group.get('name')
        if name is None:
            raise ValueError(f"Group without a name in {srdf_path}")
        chains = group.findall('chain')
        if len(chains) != 1:
            # 由关节列表或子组组成的规划组没有唯一的末端, 不能交给运动学插件
            continue
        base_link = chains[0].get('base_link')
        tip_link = chains[0].get('tip_link')
        if not base_link or not tip_link:
            raise ValueError(f"Chain of group '{name}' needs base_link and tip_link")
        groups[name] = GroupChain(name, base_link, tip_link)

    return groups
