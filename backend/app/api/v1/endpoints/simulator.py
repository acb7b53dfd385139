"""
Movement Simulator API Endpoints.

Drives the demo van along its waypoints in place of a live GPS feed.
"""

from fastapi import APIRouter, Depends

from backend.app.core.dependencies import get_simulator
from backend.app.schemas.simulator import SimulatorStatus
from backend.app.services.movement_simulator import MovementSimulator

router = APIRouter(prefix="/simulator", tags=["Simulator"])


def _status(simulator: MovementSimulator) -> SimulatorStatus:
    return SimulatorStatus(
        is_moving=simulator.is_moving,
        finished=simulator.finished,
        location=simulator.current_location(),
    )


@router.get("", response_model=SimulatorStatus)
async def simulator_status(simulator: MovementSimulator = Depends(get_simulator)):
    return _status(simulator)


@router.post("/start", response_model=SimulatorStatus)
async def start_simulator(simulator: MovementSimulator = Depends(get_simulator)):
    """Start ticking. No-op while already moving or after the last waypoint (reset first)."""
    simulator.start_movement()
    return _status(simulator)


@router.post("/stop", response_model=SimulatorStatus)
async def stop_simulator(simulator: MovementSimulator = Depends(get_simulator)):
    simulator.stop_movement()
    return _status(simulator)


@router.post("/reset", response_model=SimulatorStatus)
async def reset_simulator(simulator: MovementSimulator = Depends(get_simulator)):
    """Stop and rewind to the first waypoint."""
    simulator.reset()
    return _status(simulator)
