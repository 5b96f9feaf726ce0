"""
Fatal harness errors.

Each is raised where the failure is detected and stops the run before any
validation category starts.
"""


class HarnessError(Exception):
    """Base class of errors that abort a conformance run."""
    pass
