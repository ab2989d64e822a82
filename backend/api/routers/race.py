"""Race replay endpoints: state, leaderboard, playback controls and live stream."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pitwall.simulation import SimulationController
from pitwall.standings import leaderboard, map_lap_distance, telemetry_gauges, track_position

from backend.api.dependencies import get_race
from backend.api.schemas.race import (
    CarDetailResponse,
    LeaderboardResponse,
    RaceStateResponse,
    SeekRequest,
    SelectRequest,
    TrackPointSchema,
)
from backend.api.services import race_store
from backend.api.services.race_store import RaceSession
from backend.api.services.serializers import (
    car_state_to_schema,
    gauge_to_schema,
    leaderboard_row_to_schema,
    snapshot_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _state(race: RaceSession) -> RaceStateResponse:
    return snapshot_to_response(race.controller.snapshot(), race.effective_selection)


@router.get("/state", response_model=RaceStateResponse)
async def get_state(race: Annotated[RaceSession, Depends(get_race)]) -> RaceStateResponse:
    """Current lap, playback status and every car on track."""
    return _state(race)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(race: Annotated[RaceSession, Depends(get_race)]) -> LeaderboardResponse:
    """Position-ordered leaderboard rows for the current lap."""
    controller = race.controller
    rows = leaderboard(controller.race_state, race.effective_selection)
    return LeaderboardResponse(
        lap=controller.lap,
        max_laps=controller.max_laps,
        rows=[leaderboard_row_to_schema(r) for r in rows],
    )


@router.get("/cars/{car_number}", response_model=CarDetailResponse)
async def get_car(
    car_number: str,
    race: Annotated[RaceSession, Depends(get_race)],
) -> CarDetailResponse:
    """Telemetry gauges and track position for one car on the current lap."""
    car = race.controller.race_state.get(car_number)
    if car is None:
        raise HTTPException(
            status_code=404,
            detail=f"Car {car_number} is not on track at lap {race.controller.lap}",
        )
    x, y = track_position(map_lap_distance(car))
    return CarDetailResponse(
        state=car_state_to_schema(car),
        gauges=[gauge_to_schema(g) for g in telemetry_gauges(car)],
        track_position=TrackPointSchema(x=x, y=y),
    )


@router.post("/play", response_model=RaceStateResponse)
async def play(race: Annotated[RaceSession, Depends(get_race)]) -> RaceStateResponse:
    race.controller.play()
    return _state(race)


@router.post("/pause", response_model=RaceStateResponse)
async def pause(race: Annotated[RaceSession, Depends(get_race)]) -> RaceStateResponse:
    race.controller.pause()
    return _state(race)


@router.post("/reset", response_model=RaceStateResponse)
async def reset(race: Annotated[RaceSession, Depends(get_race)]) -> RaceStateResponse:
    race.controller.reset()
    return _state(race)


@router.post("/seek", response_model=RaceStateResponse)
async def seek(
    body: SeekRequest,
    race: Annotated[RaceSession, Depends(get_race)],
) -> RaceStateResponse:
    """Pause and jump to a lap. Out-of-range laps are clamped, never rejected."""
    race.controller.go_to_lap(body.lap)
    return _state(race)


@router.post("/select", response_model=RaceStateResponse)
async def select_car(
    body: SelectRequest,
    race: Annotated[RaceSession, Depends(get_race)],
) -> RaceStateResponse:
    """Choose the car shown in the telemetry panel and used for strategy calls."""
    if body.car_number not in race.telemetry.car_numbers:
        raise HTTPException(status_code=404, detail=f"Car {body.car_number} not found")
    race.selected_car = body.car_number
    return _state(race)


def _apply_command(race: RaceSession, data: Any) -> str | None:
    """Run one playback command received over the stream. Returns an error or None."""
    if not isinstance(data, dict):
        return "Commands must be JSON objects"
    action = data.get("action")
    controller = race.controller
    if action == "play":
        controller.play()
    elif action == "pause":
        controller.pause()
    elif action == "reset":
        controller.reset()
    elif action == "seek":
        try:
            controller.go_to_lap(float(data.get("lap", 1)))
        except (TypeError, ValueError):
            return "seek requires a numeric 'lap'"
    elif action == "select":
        car_number = str(data.get("car_number", ""))
        if car_number not in race.telemetry.car_numbers:
            return f"Car {car_number} not found"
        race.selected_car = car_number
        return None
    else:
        return f"Unknown action: {action!r}"
    return None


@router.websocket("/stream")
async def race_stream(websocket: WebSocket) -> None:
    """WebSocket feed of the replay.

    Protocol:
    - Server pushes ``{"type": "state", ...RaceStateResponse}`` on connect and
      after every lap or playback change.
    - Client may send ``{"action": "play" | "pause" | "reset"}``,
      ``{"action": "seek", "lap": n}`` or ``{"action": "select", "car_number": s}``.
    - Invalid commands get ``{"type": "error", "detail": "..."}``.
    """
    await websocket.accept()

    race = race_store.get_session()
    if race is None:
        await websocket.send_json({"type": "error", "detail": "No race loaded"})
        await websocket.close()
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _push_state() -> None:
        queue.put_nowait({"type": "state", **_state(race).model_dump()})

    def _on_change(_controller: SimulationController) -> None:
        # Controller callbacks can arrive from another thread's loop
        loop.call_soon_threadsafe(_push_state)

    async def _send_pending() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    race.controller.add_listener(_on_change)
    _push_state()
    sender = asyncio.create_task(_send_pending())
    try:
        while True:
            data = await websocket.receive_json()
            error = _apply_command(race, data)
            if error is not None:
                queue.put_nowait({"type": "error", "detail": error})
            elif isinstance(data, dict) and data.get("action") == "select":
                _push_state()
    except WebSocketDisconnect:
        logger.debug("Race stream client disconnected")
    finally:
        race.controller.remove_listener(_on_change)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            # The client went away mid-send; nothing left to deliver
            logger.debug("Race stream sender stopped: %s", exc)
