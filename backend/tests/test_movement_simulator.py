"""
Movement simulator tests.
"""

import asyncio

import pytest

from backend.app.schemas.route import Coordinate
from backend.app.services.movement_simulator import DEFAULT_WAYPOINTS, MovementSimulator

A = Coordinate(latitude=0.0, longitude=0.0)
B = Coordinate(latitude=1.0, longitude=0.0)
C = Coordinate(latitude=1.0, longitude=1.0)


@pytest.mark.asyncio
async def test_steps_interpolate_and_stop_after_last_waypoint():
    simulator = MovementSimulator([A, B, C], step_fraction=0.25)
    positions = []
    while not simulator.finished:
        positions.append(await simulator.step())

    # 4 steps per leg, 2 legs, plus the final waypoint
    assert len(positions) == 9
    assert positions[0] == A
    assert positions[1].latitude == pytest.approx(0.25)
    assert positions[4] == B
    assert positions[-1] == C
    assert simulator.finished
    assert await simulator.step() is None


@pytest.mark.asyncio
async def test_default_fraction_gives_ten_steps_per_leg():
    simulator = MovementSimulator([A, B])
    count = 0
    while await simulator.step() is not None:
        count += 1
    assert count == 11


@pytest.mark.asyncio
async def test_positions_are_published():
    simulator = MovementSimulator([A, B], step_fraction=0.5)
    received = []
    simulator.dispatcher.subscribe("test", received.append)

    await simulator.step()
    await simulator.step()

    assert [p.latitude for p in received] == [0.0, 0.5]


@pytest.mark.asyncio
async def test_stream_ends_after_last_waypoint():
    simulator = MovementSimulator([A, B], tick_seconds=0.001, step_fraction=0.5)

    async def collect():
        return [p async for p in simulator.stream()]

    collector = asyncio.create_task(collect())
    await asyncio.sleep(0)
    simulator.start_movement()
    positions = await asyncio.wait_for(collector, timeout=2)

    assert [p.latitude for p in positions] == [0.0, 0.5, 1.0]


@pytest.mark.asyncio
async def test_runs_to_completion_on_its_own():
    simulator = MovementSimulator([A, B], tick_seconds=0.001, step_fraction=0.5)
    received = []
    simulator.dispatcher.subscribe("test", received.append)

    assert simulator.start_movement() is True
    assert simulator.start_movement() is False
    for _ in range(200):
        if simulator.finished:
            break
        await asyncio.sleep(0.005)

    assert simulator.finished
    assert not simulator.is_moving
    assert len(received) == 3
    assert simulator.start_movement() is False


@pytest.mark.asyncio
async def test_no_tick_after_stop():
    simulator = MovementSimulator([A, B], tick_seconds=0.01, step_fraction=0.01)
    received = []
    simulator.dispatcher.subscribe("test", received.append)

    simulator.start_movement()
    await asyncio.sleep(0.05)
    simulator.stop_movement()
    count = len(received)
    await asyncio.sleep(0.05)

    assert not simulator.is_moving
    assert len(received) == count


@pytest.mark.asyncio
async def test_stop_from_inside_an_observer():
    simulator = MovementSimulator([A, B], tick_seconds=0.001, step_fraction=0.1)
    received = []

    def observer(position):
        received.append(position)
        simulator.stop_movement()

    simulator.dispatcher.subscribe("test", observer)
    simulator.start_movement()
    await asyncio.sleep(0.05)

    assert len(received) == 1
    assert not simulator.is_moving


@pytest.mark.asyncio
async def test_reset_rewinds():
    simulator = MovementSimulator([A, B], step_fraction=0.5)
    while await simulator.step() is not None:
        pass

    simulator.reset()

    assert not simulator.finished
    assert simulator.current_location() == A


def test_rejects_bad_configuration():
    with pytest.raises(ValueError):
        MovementSimulator([])
    with pytest.raises(ValueError):
        MovementSimulator([A, B], step_fraction=0)


def test_default_route_is_sao_paulo():
    simulator = MovementSimulator()
    assert simulator.waypoints == DEFAULT_WAYPOINTS
    assert simulator.current_location().latitude == pytest.approx(-23.5505)
