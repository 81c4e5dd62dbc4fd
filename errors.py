"""
Vial Tracking Errors
"""

from typing import Optional


class VialError(Exception):
    """Base class for dose/vial accounting errors"""


class InvalidInput(VialError, ValueError):
    """A value that must be positive/numeric was not"""


class InvariantViolation(VialError):
    """A caller asked for a transition the vial lifecycle does not allow"""

    def __init__(self, message: str, vial_id: Optional[str] = None):
        super().__init__(message)
        self.vial_id = vial_id
