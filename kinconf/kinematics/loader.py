"""
Plugin discovery and dynamic loading of kinematics solvers.

A solver is named either by an entry point in the
`kinconf.kinematics_plugins` group or by a `package.module:ClassName` path.
"""

import importlib
from importlib.metadata import entry_points
from typing import List

from ..errors import HarnessError
from .base import KinematicsBase

PLUGIN_ENTRY_POINT_GROUP = "kinconf.kinematics_plugins"


class PluginLoadError(HarnessError):
    """Raised when a kinematics plugin cannot be found or instantiated."""
    pass


def list_plugins() -> List[str]:
    """
    List all registered kinematics plugins.

    Returns:
        Sorted entry point names (e.g., ['kinconf/TorchKinematicsPlugin'])
    """
    return sorted(ep.name for ep in entry_points(group=PLUGIN_ENTRY_POINT_GROUP))


def _resolve_class(name: str):
    for ep in entry_points(group=PLUGIN_ENTRY_POINT_GROUP):
        if ep.name == name:
            return ep.load()

    if ":" not in name:
        raise PluginLoadError(
            f"Plugin {name} not found. Available: {list_plugins()}"
        )

    module_name, _, class_name = name.partition(":")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, class_name)
    except AttributeError:
        raise PluginLoadError(f"Module {module_name} has no attribute {class_name}")


def load_solver(name: str) -> KinematicsBase:
    """
    Create a kinematics solver instance by plugin name.

    Args:
        name: Entry point name or 'package.module:ClassName'

    Returns:
        Uninitialized solver instance

    Raises:
        PluginLoadError: Plugin not found, not a KinematicsBase, or failed to construct

    Example:
        >>> solver = load_solver('kinconf/TorchKinematicsPlugin')
        >>> solver = load_solver('kinconf.kinematics.plugin:TorchKinematicsPlugin')
    """
    if not name:
        raise PluginLoadError("Empty plugin name")

    try:
        cls = _resolve_class(name)
    except PluginLoadError:
        raise
    except Exception as e:
        # errors raised while importing the plugin module or loading its entry point
        raise PluginLoadError(f"Failed to import plugin {name}: {e}") from e

    if not (isinstance(cls, type) and issubclass(cls, KinematicsBase)):
        raise PluginLoadError(f"Plugin {name} does not implement KinematicsBase")

    try:
        return cls()
    except Exception as e:
        raise PluginLoadError(f"Failed to construct plugin {name}: {e}") from e
