"""
Harness Configuration

Named parameters selecting the solver under test and the protocol constants.
"""

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from ..errors import HarnessError

PLUGIN_NAME_PARAM = "ik_plugin_name"
GROUP_PARAM = "group"
TIP_LINK_PARAM = "tip_link"
ROOT_LINK_PARAM = "root_link"
JOINT_NAMES_PARAM = "joint_names"

REQUIRED_PARAMS = (GROUP_PARAM, TIP_LINK_PARAM, ROOT_LINK_PARAM, JOINT_NAMES_PARAM)


class ConfigurationError(HarnessError):
    """Raised when a required harness parameter is missing or invalid."""
    pass


@dataclass
class HarnessConfig:
    """Configuration for a conformance run."""

    # Solver under test
    ik_plugin_name: Optional[str] = None
    group: Optional[str] = None
    root_link: Optional[str] = None
    tip_link: Optional[str] = None
    joint_names: Optional[List[str]] = None

    # Robot description
    robot_description: str = "robot_description"
    urdf: Optional[str] = None  # registered under robot_description when set
    srdf: Optional[str] = None

    # Protocol
    num_fk_tests: int = 100
    num_ik_tests: int = 100
    num_ik_cb_tests: int = 100
    num_ik_multiple_tests: int = 100
    search_discretization: float = 0.01
    timeout: float = 5.0  # seconds per IK search
    tolerance: float = 1e-4  # per pose component
    success_ratio: float = 0.99

    # Reproducibility
    seed: Optional[int] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate protocol constants."""
        assert self.num_fk_tests >= 0, "num_fk_tests must be non-negative"
        assert self.num_ik_tests >= 0, "num_ik_tests must be non-negative"
        assert self.num_ik_cb_tests >= 0, "num_ik_cb_tests must be non-negative"
        assert self.num_ik_multiple_tests >= 0, "num_ik_multiple_tests must be non-negative"
        assert self.search_discretization > 0, "search_discretization must be positive"
        assert self.timeout > 0, "timeout must be positive"
        assert self.tolerance > 0, "tolerance must be positive"
        assert 0 <= self.success_ratio <= 1, "success_ratio must be in [0, 1]"

    def missing_parameters(self) -> List[str]:
        """Names of required chain parameters that are not set."""
        return [name for name in REQUIRED_PARAMS if getattr(self, name) in (None, "")]

    def require_chain_parameters(self):
        """
        Raises:
            ConfigurationError: group, root_link, tip_link or joint_names missing
        """
        missing = self.missing_parameters()
        if missing:
            raise ConfigurationError(
                f"Kinematics solver parameters failed to load, missing: {', '.join(missing)}"
            )

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "HarnessConfig":
        """
        Build from a parameter dictionary.

        Unknown keys are kept in `extra` so that plugin-specific settings can
        travel in the same file.
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in params.items() if k in known}
        extra = {k: v for k, v in params.items() if k not in known}

        joint_names = kwargs.get(JOINT_NAMES_PARAM)
        if joint_names is not None and not isinstance(joint_names, list):
            raise ConfigurationError(f"'{JOINT_NAMES_PARAM}' must be a list of joint names")

        try:
            return cls(**kwargs, extra=extra)
        except (AssertionError, TypeError) as e:
            raise ConfigurationError(f"Invalid harness parameters: {e}") from e

    @classmethod
    def from_file(cls, path: str) -> "HarnessConfig":
        """
        Load from a JSON parameter file.

        Relative `urdf` and `srdf` paths are taken relative to the file.

        Raises:
            ConfigurationError: File missing or not a JSON object
        """
        try:
            with open(path) as f:
                params = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read parameter file {path}: {e}") from e

        if not isinstance(params, dict):
            raise ConfigurationError(f"Parameter file {path} must contain a JSON object")

        # robot files are relative to the parameter file
        base_dir = os.path.dirname(os.path.abspath(path))
        for key in ("urdf", "srdf"):
            value = params.get(key)
            if isinstance(value, str) and not os.path.isabs(value):
                params[key] = os.path.join(base_dir, value)
        return cls.from_params(params)

    @classmethod
    def quick_test(cls, **overrides) -> "HarnessConfig":
        """Configuration with few trials and a short search timeout."""
        params = dict(num_fk_tests=10, num_ik_tests=10, num_ik_cb_tests=10,
                      num_ik_multiple_tests=10, timeout=1.0)
        params.update(overrides)
        return cls.from_params(params)
