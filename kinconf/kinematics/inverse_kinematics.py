"""
逆运动学模块

基于PyTorch实现的数值迭代IK求解器,支持雅可比伪逆法和阻尼最小二乘法。
使用自动微分(Autograd)计算雅可比矩阵,支持批量并行求解。
"""

import torch
from typing import Tuple
from ..robot.urdf import KinematicChain
from .forward_kinematics import ForwardKinematics


class InverseKinematics:
    """
    逆运动学求解器

    使用数值迭代方法求解IK,支持:
    - 雅可比伪逆法 (Jacobian pseudo-inverse)
    - 阻尼最小二乘法 (Damped Least Squares / Levenberg-Marquardt)
    """

    def __init__(self, chain: KinematicChain, device: str = 'cpu'):
        """
        初始化IK求解器

        Args:
            chain: 运动学链对象
            device: 计算设备 ('cpu' 或 'cuda')
        """
        self.chain = chain
        self.device = device
        self.fk = ForwardKinematics(chain, device, dtype=torch.float64)
        self.n_joints = chain.n_joints
        self.dtype = torch.float64

    def solve(self,
              target_pos: torch.Tensor,
              target_quat: torch.Tensor,
              q_init: torch.Tensor,
              method: str = 'jacobian',
              max_iter: int = 200,
              tolerance: float = 1e-7,
              damping: float = 0.01,
              step_size: float = 1.0) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        求解逆运动学

        Args:
            target_pos: 目标位置 [3] 或 [batch_size, 3]
            target_quat: 目标四元数 [4] 或 [batch_size, 4] (w,x,y,z)
            q_init: 初始关节角度 [n_joints] 或 [batch_size, n_joints]
            method: 求解方法 ('jacobian' 或 'dls'/'lma')
            max_iter: 最大迭代次数
            tolerance: 收敛阈值 (位置误差 m 与姿态误差 rad 均需小于该值)
            damping: 阻尼系数 (用于DLS/LMA方法)
            step_size: 步长因子

        Returns:
            q: 求解的关节角度 [batch_size, n_joints]
            converged: 是否收敛 [batch_size]
        """
        if target_pos.dim() == 1:
            target_pos = target_pos.unsqueeze(0)
        if target_quat.dim() == 1:
            target_quat = target_quat.unsqueeze(0)
        if q_init.dim() == 1:
            q_init = q_init.unsqueeze(0)

        batch_size = q_init.shape[0]
        target_pos = target_pos.to(device=self.device, dtype=self.dtype).expand(batch_size, -1)
        target_quat = target_quat.to(device=self.device, dtype=self.dtype).expand(batch_size, -1)

        # 关节限位
        lower = torch.from_numpy(self.chain.lower_limits).to(device=self.device, dtype=self.dtype)
        upper = torch.from_numpy(self.chain.upper_limits).to(device=self.device, dtype=self.dtype)

        q = q_init.to(device=self.device, dtype=self.dtype).clone()
        converged = torch.zeros(batch_size, dtype=torch.bool, device=self.device)

        for iter_count in range(max_iter + 1):
            q.requires_grad_(True)

            current_pos, current_quat = self.fk.compute(q)
            error = self._compute_pose_error(current_pos, current_quat, target_pos, target_quat)

            # 检查收敛
            with torch.no_grad():
                pos_error_norm = torch.norm(error[:, :3], dim=1)
                ori_error_norm = torch.norm(error[:, 3:], dim=1)
                converged = (pos_error_norm < tolerance) & (ori_error_norm < tolerance)
                if torch.all(converged) or iter_count == max_iter:
                    break

            J_err = self._compute_jacobian_autograd(q, error)

            with torch.no_grad():
                if method == 'jacobian':
                    delta_q = self._jacobian_step(J_err, error)
                elif method in ['lma', 'dls']:
                    delta_q = self._dls_step(J_err, error, damping)
                else:
                    raise ValueError(f"Unknown method: {method}")

                # 已收敛的样本不再更新
                delta_q[converged] = 0.0
                q = q - step_size * delta_q
                q = torch.clamp(q, lower, upper)

            q = q.detach()

        return q.detach(), converged

    def _compute_pose_error(self, current_pos: torch.Tensor, current_quat: torch.Tensor,
                           target_pos: torch.Tensor, target_quat: torch.Tensor) -> torch.Tensor:
        # 位置误差
        pos_error = current_pos - target_pos

        # 姿态误差, q 与 -q 表示同一姿态, 取 w >= 0 的一支
        quat_error = self._quaternion_multiply(current_quat,
                                               self._quaternion_conjugate(target_quat))
        ones = torch.ones_like(quat_error[:, :1])
        sign = torch.where(quat_error[:, :1] < 0, -ones, ones).detach()
        ori_error = 2.0 * sign * quat_error[:, 1:]

        return torch.cat([pos_error, ori_error], dim=1)

    def _compute_jacobian_autograd(self, q: torch.Tensor, error: torch.Tensor) -> torch.Tensor:
        """
        使用Autograd计算雅可比矩阵
        Returns: [batch_size, error_dim, n_joints]
        """
        batch_size = q.shape[0]
        error_dim = error.shape[1]
        n_joints = q.shape[1]

        jacobian = torch.zeros(batch_size, error_dim, n_joints, device=self.device, dtype=q.dtype)

        # 为每个误差分量计算梯度
        for i in range(error_dim):
            grad_output = torch.zeros_like(error)
            grad_output[:, i] = 1.0

            grads = torch.autograd.grad(outputs=error, inputs=q,
                                        grad_outputs=grad_output,
                                        retain_graph=(i < error_dim - 1),
                                        create_graph=False,
                                        allow_unused=True)[0]

            if grads is not None:
                jacobian[:, i, :] = grads

        return jacobian

    def _jacobian_step(self, J: torch.Tensor, error: torch.Tensor) -> torch.Tensor:
        """
        计算雅可比伪逆更新量
        solve J * dq = -error => dq = -pinv(J) * error
        Here we return pinv(J) * error, caller does subtraction.
        """
        J_pinv = torch.linalg.pinv(J)  # [B, N, E]
        return torch.bmm(J_pinv, error.unsqueeze(2)).squeeze(2)

    def _dls_step(self, J: torch.Tensor, error: torch.Tensor, damping: float) -> torch.Tensor:
        """
        计算DLS/LMA更新量
        (J^T J + lambda^2 I) dq = J^T error
        """
        n_joints = J.shape[2]

        Jt = J.transpose(1, 2)
        JtJ = torch.bmm(Jt, J)

        damping_matrix = (damping ** 2) * torch.eye(n_joints, device=self.device, dtype=J.dtype).unsqueeze(0)
        A = JtJ + damping_matrix

        g = torch.bmm(Jt, error.unsqueeze(2))
        return torch.linalg.solve(A, g).squeeze(2)

    def _quaternion_multiply(self, q1: torch.Tensor, q2: torch.Tensor) -> torch.Tensor:
        w1, x1, y1, z1 = q1[:, 0], q1[:, 1], q1[:, 2], q1[:, 3]
        w2, x2, y2, z2 = q2[:, 0], q2[:, 1], q2[:, 2], q2[:, 3]

        w = w1*w2 - x1*x2 - y1*y2 - z1*z2
        x = w1*x2 + x1*w2 + y1*z2 - z1*y2
        y = w1*y2 - x1*z2 + y1*w2 + z1*x2
        z = w1*z2 + x1*y2 - y1*x2 + z1*w2

        return torch.stack([w, x, y, z], dim=1)

    def _quaternion_conjugate(self, q: torch.Tensor) -> torch.Tensor:
        q_conj = q.clone()
        q_conj[:, 1:] = -q_conj[:, 1:]
        return q_conj
