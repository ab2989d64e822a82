"""AI commentary endpoints: strategy calls, race analysis and WebSocket Q&A chat."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pitwall.commentary import (
    CommentaryError,
    WhatIfScenario,
    ask_race_question,
    generate_driver_analysis,
    generate_head_to_head,
    generate_history_analysis,
    generate_strategy_recommendation,
    run_what_if_simulation,
)
from pitwall.projector import CarState
from pitwall.simulation import Listener, SimulationController
from pitwall.topic_guardrail import (
    INPUT_TOO_LONG_RESPONSE,
    OFF_TOPIC_RESPONSE,
    RaceRoster,
    classify_topic,
)

from backend.api.dependencies import get_race
from backend.api.schemas.commentary import (
    ChatMessage,
    HeadToHeadRequest,
    StrategyResponse,
    TextResponse,
    WhatIfRequest,
)
from backend.api.services import race_store
from backend.api.services.commentary_store import (
    get_chat_context,
    get_strategy,
    is_generating,
    mark_generating,
    store_strategy,
    unmark_generating,
)
from backend.api.services.race_store import RaceSession

logger = logging.getLogger(__name__)

router = APIRouter()

_background_tasks: set[asyncio.Task[None]] = set()


def trigger_strategy(car: CarState, total_laps: int) -> bool:
    """Start background strategy generation for *car*.

    Returns False if one is already running for that car. Must be called
    from within a running event loop.
    """
    if is_generating(car.car_number):
        return False
    mark_generating(car.car_number)
    task = asyncio.get_running_loop().create_task(_run_strategy(car, total_laps))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return True


async def _run_strategy(car: CarState, total_laps: int) -> None:
    """Background task that generates and stores a strategy recommendation."""
    try:
        rec = await asyncio.to_thread(generate_strategy_recommendation, car, total_laps)
        store_strategy(
            car.car_number,
            StrategyResponse(
                car_number=car.car_number,
                status="ready",
                lap=car.lap,
                recommendation=rec.recommendation.value,
                confidence=rec.confidence,
                reasoning=rec.reasoning,
                color=rec.color.value,
            ),
        )
    except CommentaryError as exc:
        logger.warning("Strategy generation failed for car #%s: %s", car.car_number, exc)
        store_strategy(
            car.car_number,
            StrategyResponse(
                car_number=car.car_number, status="error", lap=car.lap, error=str(exc)
            ),
        )
    except Exception:
        logger.exception("Unexpected failure generating strategy for car #%s", car.car_number)
        store_strategy(
            car.car_number,
            StrategyResponse(
                car_number=car.car_number,
                status="error",
                lap=car.lap,
                error="Strategy is temporarily unavailable. Please retry shortly.",
            ),
        )
    finally:
        unmark_generating(car.car_number)


def install_auto_strategy(race: RaceSession, every_laps: int) -> Listener:
    """Request a strategy call for the selected car every *every_laps* laps of playback.

    Returns the registered listener so callers can remove it.
    """
    seen = (0, False)

    def _on_change(controller: SimulationController) -> None:
        nonlocal seen
        lap = controller.lap
        previous, seen = seen, (lap, controller.is_playing)
        # Only a change of lap or play state counts, so a replayed lap triggers again
        if seen == previous:
            return
        if every_laps <= 0 or not controller.is_playing or lap % every_laps != 0:
            return
        car_number = race.effective_selection
        car = controller.race_state.get(car_number) if car_number is not None else None
        if car is None:
            return
        try:
            started = trigger_strategy(car, controller.max_laps)
        except RuntimeError:
            logger.debug("No running event loop; skipping auto strategy at lap %d", lap)
            return
        if started:
            logger.info("Auto strategy requested for car #%s at lap %d", car_number, lap)

    race.controller.add_listener(_on_change)
    return _on_change


@router.post("/strategy/{car_number}", response_model=StrategyResponse)
async def request_strategy(
    car_number: str,
    race: Annotated[RaceSession, Depends(get_race)],
) -> StrategyResponse:
    """Trigger a strategy recommendation for a car at the current lap.

    Returns immediately with status="generating"; poll GET until the status
    is "ready" or "error". A ready recommendation for the current lap is
    returned as is.
    """
    car = race.controller.race_state.get(car_number)
    if car is None:
        raise HTTPException(
            status_code=404,
            detail=f"Car {car_number} is not on track at lap {race.controller.lap}",
        )

    if is_generating(car_number):
        return StrategyResponse(car_number=car_number, status="generating")

    existing = get_strategy(car_number)
    if existing is not None and existing.status == "ready" and existing.lap == car.lap:
        return existing

    trigger_strategy(car, race.controller.max_laps)
    return StrategyResponse(car_number=car_number, status="generating", lap=car.lap)


@router.get("/strategy/{car_number}", response_model=StrategyResponse)
async def get_strategy_for_car(car_number: str) -> StrategyResponse:
    """Latest recommendation for a car, a "generating" status, or 404."""
    if is_generating(car_number):
        return StrategyResponse(car_number=car_number, status="generating")

    strategy = get_strategy(car_number)
    if strategy is not None:
        return strategy

    raise HTTPException(status_code=404, detail=f"No strategy found for car {car_number}")


@router.post("/history", response_model=TextResponse)
async def history_analysis(race: Annotated[RaceSession, Depends(get_race)]) -> TextResponse:
    """Expert summary of the final classification."""
    content = await asyncio.to_thread(generate_history_analysis, list(race.results))
    return TextResponse(content=content)


@router.post("/what-if", response_model=TextResponse)
async def what_if(
    body: WhatIfRequest,
    race: Annotated[RaceSession, Depends(get_race)],
) -> TextResponse:
    """Predict the result of an alternate strategy decision."""
    samples = race.telemetry.samples_for_car(body.car_number)
    if not samples:
        raise HTTPException(status_code=404, detail=f"Car {body.car_number} not found")
    if body.decision_lap > race.telemetry.max_laps:
        raise HTTPException(
            status_code=422,
            detail=f"decision_lap must be between 1 and {race.telemetry.max_laps}",
        )

    result = race.results.get(body.car_number)
    original_finish = result.position if result is not None else samples[-1].position
    scenario = WhatIfScenario(
        car_number=body.car_number,
        decision_lap=body.decision_lap,
        action=body.action,
        original_finish=original_finish,
    )
    content = await asyncio.to_thread(
        run_what_if_simulation, scenario, race.telemetry, race.telemetry.max_laps
    )
    return TextResponse(content=content)


@router.post("/driver/{car_number}", response_model=TextResponse)
async def driver_analysis(
    car_number: str,
    race: Annotated[RaceSession, Depends(get_race)],
) -> TextResponse:
    """Coaching feedback from one driver's lap and sector times."""
    content = await asyncio.to_thread(generate_driver_analysis, car_number, race.telemetry)
    return TextResponse(content=content)


@router.post("/head-to-head", response_model=TextResponse)
async def head_to_head_analysis(
    body: HeadToHeadRequest,
    race: Annotated[RaceSession, Depends(get_race)],
) -> TextResponse:
    """Battle analysis between two cars as of the current lap."""
    if body.car_a == body.car_b:
        raise HTTPException(status_code=422, detail="Pick two different cars")
    content = await asyncio.to_thread(
        generate_head_to_head,
        body.car_a,
        body.car_b,
        race.telemetry,
        race.controller.race_state,
    )
    return TextResponse(content=content)


@router.websocket("/chat")
async def race_chat(websocket: WebSocket) -> None:
    """WebSocket endpoint for free-form race Q&A.

    Protocol:
    - Client sends JSON: {"content": "question text"}
    - Server responds with JSON: {"role": "assistant", "content": "answer"}

    Each answer is grounded in the replay snapshot at the moment the
    question arrives.
    """
    await websocket.accept()

    race = race_store.get_session()
    if race is None:
        await websocket.send_json(
            ChatMessage(role="assistant", content="No race is loaded yet.").model_dump()
        )
        await websocket.close()
        return

    ctx = get_chat_context()
    roster = RaceRoster.from_race(race.results, race.telemetry.car_numbers)

    try:
        while True:
            data = await websocket.receive_json()
            question = str(data.get("content", "")) if isinstance(data, dict) else ""

            if not question.strip():
                await websocket.send_json(
                    ChatMessage(
                        role="assistant",
                        content="Please ask a question about the race.",
                    ).model_dump()
                )
                continue

            classification = await asyncio.to_thread(classify_topic, question, roster)
            if not classification.on_topic:
                content = (
                    INPUT_TOO_LONG_RESPONSE
                    if classification.source == "too_long"
                    else OFF_TOPIC_RESPONSE
                )
                reply = ChatMessage(role="assistant", content=content)
                await websocket.send_json(reply.model_dump())
                continue

            answer = await asyncio.to_thread(
                ask_race_question, ctx, question, race.controller.snapshot()
            )
            await websocket.send_json(ChatMessage(role="assistant", content=answer).model_dump())
    except WebSocketDisconnect:
        logger.debug("Race chat client disconnected")
