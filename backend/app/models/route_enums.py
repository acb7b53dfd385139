"""
Route-related enumerations.
"""

import enum


class RouteDirection(str, enum.Enum):
    """Which way the van is travelling."""
    TO_SCHOOL = "to_school"  # Students first, school last
    TO_HOME = "to_home"  # School first, then students


class StopKind(str, enum.Enum):
    STUDENT = "student"
    SCHOOL = "school"


class StopStatus(str, enum.Enum):
    """
    Stop status enumeration.

    Strictly forward: PENDING -> PICKED_UP -> DROPPED_OFF.
    """
    PENDING = "pending"  # Not yet visited
    PICKED_UP = "picked_up"  # Student boarded the van
    DROPPED_OFF = "dropped_off"  # Student left the van (terminal)

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [StopStatus.PENDING, StopStatus.PICKED_UP, StopStatus.DROPPED_OFF]
