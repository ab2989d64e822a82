"""Replay controller: play/pause/reset/seek over a lap-indexed race.

The controller owns the current lap and playback status. While playing, a
single timer advances one lap per tick; reaching the last lap stops
playback. Every lap change is immediately followed by a fresh projection,
so ``lap`` and ``race_state`` are never observed out of step.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from pitwall.constants import SIMULATION_TICK_S
from pitwall.projector import RaceProjector, RaceState, clamp_lap

logger = logging.getLogger(__name__)


class PlaybackStatus(enum.Enum):
    PAUSED = "paused"
    PLAYING = "playing"


@dataclass(frozen=True)
class SimulationSnapshot:
    """Point-in-time copy of the controller's observable state."""

    lap: int
    max_laps: int
    is_playing: bool
    race_state: RaceState


Listener = Callable[["SimulationController"], None]


class SimulationController:
    """Stateful driver of the race replay.

    Parameters
    ----------
    projector:
        Projector bound to the telemetry and results stores.
    tick_interval_s:
        Autoplay period. The timer runs on the asyncio loop that is running
        when ``play()`` is called; without a running loop the host is
        expected to call ``tick()`` itself.
    """

    def __init__(
        self,
        projector: RaceProjector,
        tick_interval_s: float = SIMULATION_TICK_S,
    ) -> None:
        self._projector = projector
        self._tick_interval_s = tick_interval_s
        self._max_laps = projector.max_laps
        self._status = PlaybackStatus.PAUSED
        self._lap = 1
        self._race_state = projector.project(1)
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[Listener] = []

    # -- Read accessors -------------------------------------------------------

    @property
    def lap(self) -> int:
        return self._lap

    @property
    def max_laps(self) -> int:
        return self._max_laps

    @property
    def race_state(self) -> RaceState:
        return self._race_state

    @property
    def is_playing(self) -> bool:
        return self._status is PlaybackStatus.PLAYING

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def tick_interval_s(self) -> float:
        return self._tick_interval_s

    @property
    def projector(self) -> RaceProjector:
        return self._projector

    def snapshot(self) -> SimulationSnapshot:
        return SimulationSnapshot(
            lap=self._lap,
            max_laps=self._max_laps,
            is_playing=self.is_playing,
            race_state=self._race_state,
        )

    # -- Listeners ------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked after every lap or playback change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Simulation listener %r failed", listener)

    # -- Operations -----------------------------------------------------------

    def play(self) -> None:
        """Start autoplay. No-op when already playing."""
        if self._status is PlaybackStatus.PLAYING:
            return
        self._status = PlaybackStatus.PLAYING
        self._arm_timer()
        logger.debug("Playback started at lap %d", self._lap)
        self._notify()

    def pause(self) -> None:
        """Stop autoplay. No-op when already paused."""
        if self._status is PlaybackStatus.PAUSED:
            return
        self._stop()
        logger.debug("Playback paused at lap %d", self._lap)
        self._notify()

    def reset(self) -> None:
        """Pause and rewind to lap 1."""
        self._stop()
        self._set_lap(1)
        self._notify()

    def go_to_lap(self, target: float) -> None:
        """Pause and jump to *target*, clamped to ``[1, max_laps]``."""
        self._stop()
        self._set_lap(clamp_lap(target, self._max_laps))
        self._notify()

    def tick(self) -> None:
        """Advance one lap. Ignored while paused.

        Stepping past the last lap leaves ``lap`` at ``max_laps`` and pauses.
        """
        if self._status is not PlaybackStatus.PLAYING:
            return

        next_lap = self._lap + 1
        if next_lap > self._max_laps:
            self._stop()
            self._set_lap(self._max_laps)
            logger.info("Replay reached the final lap (%d), playback stopped", self._max_laps)
        else:
            self._set_lap(next_lap)
        self._notify()

    # -- Internals ------------------------------------------------------------

    def _set_lap(self, lap: int) -> None:
        self._lap = lap
        self._race_state = self._projector.project(lap)

    def _stop(self) -> None:
        """Cancel any pending tick and mark paused, before touching the lap."""
        self._cancel_timer()
        self._status = PlaybackStatus.PAUSED

    def _arm_timer(self) -> None:
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; autoplay ticks are driven by the host")
            return
        self._timer = loop.call_later(self._tick_interval_s, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self.tick()
        if self._status is PlaybackStatus.PLAYING:
            self._arm_timer()
