"""
Movement simulator.

Deterministic stand-in for a live GPS feed: walks a fixed list of waypoints,
emitting linearly interpolated positions on a fixed tick. Positions go out
through a Dispatcher, so the route manager consumes them exactly as it would
consume a live feed.
"""

import asyncio
import logging
import math
from typing import AsyncIterator, List, Optional, Sequence

from backend.app.schemas.route import Coordinate
from backend.app.services.dispatcher import Dispatcher, Subscription
from backend.app.services.geo import interpolate

logger = logging.getLogger("van_tracking.simulator")

# Demo route through central São Paulo
DEFAULT_WAYPOINTS = [
    Coordinate(latitude=-23.5505, longitude=-46.6333),  # Av. Paulista
    Coordinate(latitude=-23.5475, longitude=-46.6361),  # Rua Augusta
    Coordinate(latitude=-23.5558, longitude=-46.6396),  # Av. Brigadeiro Luís Antônio
    Coordinate(latitude=-23.5431, longitude=-46.6291),  # Rua da Consolação
    Coordinate(latitude=-23.5489, longitude=-46.6388),  # Av. 9 de Julho
]


class MovementSimulator:

    def __init__(
        self,
        waypoints: Sequence[Coordinate] = DEFAULT_WAYPOINTS,
        tick_seconds: float = 2.0,
        step_fraction: float = 0.1,
    ):
        if not waypoints:
            raise ValueError("simulator needs at least one waypoint")
        if not 0 < step_fraction <= 1:
            raise ValueError("step_fraction must be in (0, 1]")
        self.waypoints: List[Coordinate] = list(waypoints)
        self.tick_seconds = tick_seconds
        # Integer step count per leg avoids float drift from summing fractions
        self.steps_per_leg = max(1, math.ceil(1 / step_fraction - 1e-9))
        self.dispatcher: Dispatcher = Dispatcher("positions")
        self._leg = 0
        self._step = 0
        self._finished = False
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_moving(self) -> bool:
        return self._running

    @property
    def finished(self) -> bool:
        return self._finished

    def current_location(self) -> Coordinate:
        last = len(self.waypoints) - 1
        if self._leg >= last:
            return self.waypoints[last]
        return interpolate(
            self.waypoints[self._leg],
            self.waypoints[self._leg + 1],
            self._step / self.steps_per_leg,
        )

    async def step(self) -> Optional[Coordinate]:
        """Emit the current position and advance one step. None once the last waypoint was emitted."""
        if self._finished:
            return None

        position = self.current_location()
        if self._leg >= len(self.waypoints) - 1:
            self._finished = True
        else:
            self._step += 1
            if self._step >= self.steps_per_leg:
                self._leg += 1
                self._step = 0
                logger.debug("Waypoint reached", extra={"waypoint": self._leg})

        await self.dispatcher.publish(position)
        if self._finished:
            logger.info("Simulated route finished")
        return position

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.tick_seconds)
            if not self._running:
                break
            await self.step()
            if self._finished:
                self._running = False
                self._task = None

    def start_movement(self) -> bool:
        """Start ticking on the running event loop. False if already moving or finished."""
        if self._running or self._finished:
            return False
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Simulated movement started", extra={"tick_seconds": self.tick_seconds})
        return True

    def stop_movement(self) -> None:
        """Stop ticking. No tick is emitted after this returns."""
        was_running = self._running
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            # A tick observer may stop us from inside the task; it exits on the flag
            if task is not current:
                task.cancel()
        if was_running:
            logger.info("Simulated movement stopped")

    def reset(self) -> None:
        self.stop_movement()
        self._leg = 0
        self._step = 0
        self._finished = False

    def attach(self, manager) -> Subscription:
        """Feed every simulated position into manager.update_location."""
        return self.dispatcher.subscribe("route-manager", manager.update_location)

    async def stream(self) -> AsyncIterator[Coordinate]:
        """Async iterator over emitted positions, ending after the last waypoint."""
        queue: asyncio.Queue = asyncio.Queue()
        subscription = self.dispatcher.subscribe("stream", queue.put_nowait)
        try:
            while not (self._finished and queue.empty()):
                yield await queue.get()
        finally:
            subscription.unsubscribe()
