"""
正运动学模块

基于PyTorch实现的可微分正运动学计算,支持批量计算和自动微分。
"""

import torch
from typing import Optional, Tuple
from ..robot.urdf import KinematicChain


class ForwardKinematics:
    """
    正运动学计算器

    关节链上的固定关节只贡献原点变换, 不占用关节变量。
    输出四元数按 (w, x, y, z) 排列, 且 w >= 0。
    """

    def __init__(self, chain: KinematicChain, device: str = 'cpu',
                 dtype: torch.dtype = torch.float64):
        """
        初始化FK计算器

        Args:
            chain: 运动学链对象
            device: 计算设备 ('cpu' 或 'cuda')
            dtype: 计算精度
        """
        self.chain = chain
        self.device = device
        self.dtype = dtype
        self.n_joints = chain.n_joints

        self._precompute_transforms()

    def _precompute_transforms(self):
        """预计算每个关节的原点变换、单位轴向及其反对称矩阵"""
        n_path = len(self.chain.joints)
        eye = torch.eye(4, dtype=self.dtype)
        self.joint_origins = eye.repeat(n_path, 1, 1)
        self.joint_axes = torch.zeros(n_path, 3, dtype=self.dtype)
        self.skew = torch.zeros(n_path, 3, 3, dtype=self.dtype)
        # 路径上第 i 个关节对应的关节变量下标, 固定关节为 -1
        self.variable_index = []
        self.is_revolute = []

        actuated = {j.name: k for k, j in enumerate(self.chain.actuated_joints)}
        for i, joint in enumerate(self.chain.joints):
            if joint.origin is not None:
                self.joint_origins[i] = torch.as_tensor(joint.origin, dtype=self.dtype)

            axis = torch.as_tensor(joint.axis, dtype=self.dtype)
            axis = axis / torch.norm(axis)
            self.joint_axes[i] = axis
            x, y, z = axis
            self.skew[i] = torch.stack([
                torch.stack([torch.zeros_like(x), -z, y]),
                torch.stack([z, torch.zeros_like(x), -x]),
                torch.stack([-y, x, torch.zeros_like(x)]),
            ])

            self.variable_index.append(actuated.get(joint.name, -1))
            self.is_revolute.append(joint.joint_type in ('revolute', 'continuous'))

        self.joint_origins = self.joint_origins.to(self.device)
        self.joint_axes = self.joint_axes.to(self.device)
        self.skew = self.skew.to(self.device)
        self.skew_sq = torch.bmm(self.skew, self.skew)

    def compute(self, q: torch.Tensor,
                link_name: Optional[str] = None) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        计算正运动学

        Args:
            q: 关节值, shape: [batch_size, n_joints] 或 [n_joints]
            link_name: 指定链接名称(None表示末端链接)

        Returns:
            position: 位置 [batch_size, 3] 或 [3]
            quaternion: 四元数姿态 [batch_size, 4] 或 [4] (w, x, y, z)

        Raises:
            ValueError: 链接不在运动学链上
        """
        squeeze_output = q.dim() == 1
        if squeeze_output:
            q = q.unsqueeze(0)
        q = q.to(device=self.device, dtype=self.dtype)

        if link_name is None:
            n_links = len(self.chain.joints)
        elif link_name in self.chain.link_names:
            n_links = self.chain.link_names.index(link_name)
        else:
            raise ValueError(f"Link {link_name} not found in kinematic chain")

        T = self.link_transform(q, n_links)
        position = T[:, :3, 3]
        quaternion = self._rotation_matrix_to_quaternion(T[:, :3, :3])

        if squeeze_output:
            return position.squeeze(0), quaternion.squeeze(0)
        return position, quaternion

    def link_transform(self, q: torch.Tensor, n_links: int) -> torch.Tensor:
        """
        基座到路径上第 n_links 个链接的齐次变换

        Args:
            q: 关节值 [batch_size, n_joints]
            n_links: 要累积的关节数量

        Returns:
            T: 变换矩阵 [batch_size, 4, 4]
        """
        batch_size = q.shape[0]
        T = torch.eye(4, device=self.device, dtype=q.dtype).expand(batch_size, 4, 4)

        for i in range(n_links):
            T = torch.matmul(T, self.joint_origins[i])
            k = self.variable_index[i]
            if k < 0:
                continue
            T = torch.bmm(T, self._joint_motion(i, q[:, k]))

        return T

    def _joint_motion(self, i: int, value: torch.Tensor) -> torch.Tensor:
        """关节 i 在关节值 value [batch_size] 下的运动变换 [batch_size, 4, 4]"""
        batch_size = value.shape[0]
        bottom = torch.tensor([0.0, 0.0, 0.0, 1.0], device=self.device,
                              dtype=value.dtype).expand(batch_size, 1, 4)

        if self.is_revolute[i]:
            # Rodrigues: R = I + sin(θ)K + (1-cos(θ))K²
            s = torch.sin(value).view(-1, 1, 1)
            c = torch.cos(value).view(-1, 1, 1)
            R = torch.eye(3, device=self.device, dtype=value.dtype) \
                + s * self.skew[i] + (1 - c) * self.skew_sq[i]
            p = torch.zeros(batch_size, 3, 1, device=self.device, dtype=value.dtype)
        else:
            R = torch.eye(3, device=self.device, dtype=value.dtype).expand(batch_size, 3, 3)
            p = (self.joint_axes[i].unsqueeze(0) * value.unsqueeze(1)).unsqueeze(2)

        return torch.cat([torch.cat([R, p], dim=2), bottom], dim=1)

    @staticmethod
    def _rotation_matrix_to_quaternion(R: torch.Tensor) -> torch.Tensor:
        """
        旋转矩阵 -> 四元数 (w, x, y, z)

        Shepperd 方法: 四个分支都计算, 取 4q_i² 最大的一支保证数值稳定,
        最后统一到 w >= 0 的半球。
        """
        r00, r01, r02 = R[:, 0, 0], R[:, 0, 1], R[:, 0, 2]
        r10, r11, r12 = R[:, 1, 0], R[:, 1, 1], R[:, 1, 2]
        r20, r21, r22 = R[:, 2, 0], R[:, 2, 1], R[:, 2, 2]

        # 4w², 4x², 4y², 4z²
        squares = torch.stack([1 + r00 + r11 + r22,
                               1 + r00 - r11 - r22,
                               1 - r00 + r11 - r22,
                               1 - r00 - r11 + r22], dim=1)
        s = 2.0 * torch.sqrt(squares.clamp_min(1e-12))

        candidates = torch.stack([
            torch.stack([0.25 * s[:, 0], (r21 - r12) / s[:, 0],
                         (r02 - r20) / s[:, 0], (r10 - r01) / s[:, 0]], dim=1),
            torch.stack([(r21 - r12) / s[:, 1], 0.25 * s[:, 1],
                         (r01 + r10) / s[:, 1], (r02 + r20) / s[:, 1]], dim=1),
            torch.stack([(r02 - r20) / s[:, 2], (r01 + r10) / s[:, 2],
                         0.25 * s[:, 2], (r12 + r21) / s[:, 2]], dim=1),
            torch.stack([(r10 - r01) / s[:, 3], (r02 + r20) / s[:, 3],
                         (r12 + r21) / s[:, 3], 0.25 * s[:, 3]], dim=1),
        ], dim=1)  # [B, 分支, 4]

        branch = torch.argmax(squares.detach(), dim=1)
        q = candidates[torch.arange(R.shape[0], device=R.device), branch]

        q = torch.where(q[:, :1] < 0, -q, q)
        return q / torch.norm(q, dim=1, keepdim=True)
