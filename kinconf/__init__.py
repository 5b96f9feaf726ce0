"""
kinconf - conformance harness for kinematics solver plugins.
"""

__version__ = "0.1.0"

from .errors import HarnessError
