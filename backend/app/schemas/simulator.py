"""
Movement Simulator Schemas.
"""

from pydantic import BaseModel

from backend.app.schemas.route import Coordinate


class SimulatorStatus(BaseModel):
    is_moving: bool
    finished: bool
    location: Coordinate
