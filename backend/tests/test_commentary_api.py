"""Tests for the AI commentary endpoints and race chat."""

from __future__ import annotations

import asyncio
import sys
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient
from pitwall.commentary import (
    CommentaryError,
    Recommendation,
    RecommendationColor,
    StrategyRecommendation,
)
from pitwall.topic_guardrail import OFF_TOPIC_RESPONSE, TopicClassification

from backend.api.main import app
from backend.api.routers.commentary import install_auto_strategy
from backend.api.services.commentary_store import get_strategy, is_generating
from backend.api.services.race_store import RaceSession
from tests.conftest import make_mock_anthropic

_ROUTER = "backend.api.routers.commentary"

_PUSH = StrategyRecommendation(
    recommendation=Recommendation.PUSH,
    confidence=72.0,
    reasoning="Fresh gap to the car behind, tires still fine.",
    color=RecommendationColor.GREEN,
)


async def _wait_for_strategy(client: AsyncClient, car_number: str) -> dict:
    """Poll until the background strategy task has finished."""
    for _ in range(100):
        resp = await client.get(f"/api/commentary/strategy/{car_number}")
        data = resp.json()
        if data["status"] != "generating":
            return data
        await asyncio.sleep(0.01)
    raise AssertionError("strategy generation did not finish")


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_strategy_generated_in_background(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
        resp = await client.post("/api/commentary/strategy/1")
        assert resp.status_code == 200
        assert resp.json()["status"] == "generating"
        assert resp.json()["lap"] == 1
        data = await _wait_for_strategy(client, "1")

    assert data["status"] == "ready"
    assert data["recommendation"] == "PUSH"
    assert data["color"] == "green"
    assert data["confidence"] == 72.0
    assert data["lap"] == 1
    car, total_laps = mock_gen.call_args.args
    assert car.car_number == "1"
    assert total_laps == 3


@pytest.mark.asyncio
async def test_ready_strategy_for_same_lap_is_reused(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
        await client.post("/api/commentary/strategy/1")
        await _wait_for_strategy(client, "1")
        resp = await client.post("/api/commentary/strategy/1")
    assert resp.json()["status"] == "ready"
    assert mock_gen.call_count == 1


@pytest.mark.asyncio
async def test_new_lap_requests_fresh_strategy(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
        await client.post("/api/commentary/strategy/1")
        await _wait_for_strategy(client, "1")
        await client.post("/api/race/seek", json={"lap": 3})
        resp = await client.post("/api/commentary/strategy/1")
        assert resp.json()["status"] == "generating"
        data = await _wait_for_strategy(client, "1")
    assert data["lap"] == 3
    assert mock_gen.call_count == 2


@pytest.mark.asyncio
async def test_strategy_error_is_reported(client: AsyncClient) -> None:
    with patch(
        f"{_ROUTER}.generate_strategy_recommendation",
        side_effect=CommentaryError("Malformed strategy response"),
    ):
        await client.post("/api/commentary/strategy/2")
        data = await _wait_for_strategy(client, "2")
    assert data["status"] == "error"
    assert data["error"] == "Malformed strategy response"
    assert not is_generating("2")


@pytest.mark.asyncio
async def test_unexpected_strategy_failure_is_generic(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_strategy_recommendation", side_effect=RuntimeError("boom")):
        await client.post("/api/commentary/strategy/2")
        data = await _wait_for_strategy(client, "2")
    assert data["status"] == "error"
    assert "boom" not in data["error"]


@pytest.mark.asyncio
async def test_strategy_for_car_not_on_track(client: AsyncClient) -> None:
    resp = await client.post("/api/commentary/strategy/404")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_strategy_not_found(client: AsyncClient) -> None:
    resp = await client.get("/api/commentary/strategy/1")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No strategy found for car 1"


@pytest.mark.asyncio
async def test_auto_strategy_while_playing(client: AsyncClient, race: RaceSession) -> None:
    listener = install_auto_strategy(race, every_laps=2)
    try:
        with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
            await client.post("/api/race/play")
            for _ in range(100):
                if not race.controller.is_playing and not is_generating("2"):
                    break
                await asyncio.sleep(0.01)
    finally:
        race.controller.remove_listener(listener)

    # Car 2 leads lap 2 and is the default selection there
    strategy = get_strategy("2")
    assert strategy is not None
    assert strategy.lap == 2
    assert mock_gen.call_count == 1


@pytest.mark.asyncio
async def test_auto_strategy_ignores_seek(client: AsyncClient, race: RaceSession) -> None:
    listener = install_auto_strategy(race, every_laps=2)
    try:
        with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
            await client.post("/api/race/seek", json={"lap": 2})
    finally:
        race.controller.remove_listener(listener)
    assert mock_gen.call_count == 0


async def _wait_until_idle(car_number: str) -> None:
    for _ in range(100):
        if not is_generating(car_number):
            return
        await asyncio.sleep(0.01)
    raise AssertionError("strategy generation did not finish")


@pytest.mark.asyncio
async def test_auto_strategy_fires_again_on_replayed_lap(race: RaceSession) -> None:
    listener = install_auto_strategy(race, every_laps=2)
    controller = race.controller
    try:
        with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
            controller.play()
            controller.tick()
            controller.pause()
            await _wait_until_idle("2")

            controller.go_to_lap(1)
            controller.play()
            controller.tick()
            controller.pause()
            await _wait_until_idle("2")
    finally:
        race.controller.remove_listener(listener)

    assert mock_gen.call_count == 2
    assert get_strategy("2").lap == 2


@pytest.mark.asyncio
async def test_auto_strategy_fires_when_resumed_on_cadence_lap(race: RaceSession) -> None:
    race.controller.go_to_lap(2)
    listener = install_auto_strategy(race, every_laps=2)
    try:
        with patch(f"{_ROUTER}.generate_strategy_recommendation", return_value=_PUSH) as mock_gen:
            race.controller.play()
            race.controller.pause()
            await _wait_until_idle("2")
    finally:
        race.controller.remove_listener(listener)
    assert mock_gen.call_count == 1


# ---------------------------------------------------------------------------
# Text analyses
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_history(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_history_analysis", return_value="**Recap**") as mock_gen:
        resp = await client.post("/api/commentary/history")
    assert resp.status_code == 200
    assert resp.json() == {"content": "**Recap**"}
    results = mock_gen.call_args.args[0]
    assert [r.number for r in results] == ["1", "2"]


@pytest.mark.asyncio
async def test_what_if(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.run_what_if_simulation", return_value="P1 again") as mock_gen:
        resp = await client.post(
            "/api/commentary/what-if",
            json={"car_number": "2", "decision_lap": 2, "action": "Stay Out"},
        )
    assert resp.status_code == 200
    assert resp.json()["content"] == "P1 again"
    scenario, _telemetry, total_laps = mock_gen.call_args.args
    assert scenario.car_number == "2"
    assert scenario.decision_lap == 2
    assert scenario.action == "Stay Out"
    assert scenario.original_finish == 2
    assert total_laps == 3


@pytest.mark.asyncio
async def test_what_if_unknown_car(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/commentary/what-if", json={"car_number": "404", "decision_lap": 2}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_what_if_lap_out_of_range(client: AsyncClient) -> None:
    resp = await client.post("/api/commentary/what-if", json={"car_number": "1", "decision_lap": 9})
    assert resp.status_code == 422
    resp = await client.post("/api/commentary/what-if", json={"car_number": "1", "decision_lap": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_driver_analysis(client: AsyncClient) -> None:
    with patch(f"{_ROUTER}.generate_driver_analysis", return_value="Consistent.") as mock_gen:
        resp = await client.post("/api/commentary/driver/1")
    assert resp.json()["content"] == "Consistent."
    assert mock_gen.call_args.args[0] == "1"


@pytest.mark.asyncio
async def test_head_to_head_uses_current_lap(client: AsyncClient) -> None:
    await client.post("/api/race/seek", json={"lap": 2})
    with patch(f"{_ROUTER}.generate_head_to_head", return_value="Close fight.") as mock_gen:
        resp = await client.post(
            "/api/commentary/head-to-head", json={"car_a": "1", "car_b": "2"}
        )
    assert resp.json()["content"] == "Close fight."
    car_a, car_b, _telemetry, race_state = mock_gen.call_args.args
    assert (car_a, car_b) == ("1", "2")
    assert race_state.lap == 2


@pytest.mark.asyncio
async def test_head_to_head_same_car(client: AsyncClient) -> None:
    resp = await client.post("/api/commentary/head-to-head", json={"car_a": "1", "car_b": "1"})
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Pick two different cars"


# ---------------------------------------------------------------------------
# Chat WebSocket
# ---------------------------------------------------------------------------


def test_chat_answers_on_topic_question() -> None:
    client = TestClient(app)
    with (
        patch(
            f"{_ROUTER}.classify_topic",
            return_value=TopicClassification(on_topic=True, source="classifier"),
        ),
        patch(f"{_ROUTER}.ask_race_question", return_value="Car #1 leads.") as mock_ask,
        client.websocket_connect("/api/commentary/chat") as ws,
    ):
        ws.send_json({"content": "Who leads?"})
        reply = ws.receive_json()
    assert reply == {"role": "assistant", "content": "Car #1 leads."}
    _ctx, question, snapshot = mock_ask.call_args.args
    assert question == "Who leads?"
    assert snapshot.lap == 1


def test_chat_question_naming_a_driver_skips_classifier() -> None:
    client = TestClient(app)
    classifier = make_mock_anthropic('{"on_topic": false}')
    with (
        patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-test"}),
        patch.dict(sys.modules, {"anthropic": classifier}),
        patch(f"{_ROUTER}.ask_race_question", return_value="Turing leads.") as mock_ask,
        client.websocket_connect("/api/commentary/chat") as ws,
    ):
        ws.send_json({"content": "How is Turing doing on old tires?"})
        reply = ws.receive_json()
    assert reply["content"] == "Turing leads."
    assert mock_ask.call_args.args[1] == "How is Turing doing on old tires?"
    classifier.Anthropic.return_value.messages.create.assert_not_called()


def test_chat_rejects_off_topic() -> None:
    client = TestClient(app)
    with (
        patch(
            f"{_ROUTER}.classify_topic",
            return_value=TopicClassification(on_topic=False, source="classifier"),
        ),
        patch(f"{_ROUTER}.ask_race_question") as mock_ask,
        client.websocket_connect("/api/commentary/chat") as ws,
    ):
        ws.send_json({"content": "Best pizza in town?"})
        reply = ws.receive_json()
    assert reply["content"] == OFF_TOPIC_RESPONSE
    mock_ask.assert_not_called()


def test_chat_empty_question() -> None:
    client = TestClient(app)
    with client.websocket_connect("/api/commentary/chat") as ws:
        ws.send_json({"content": "   "})
        reply = ws.receive_json()
    assert reply["content"] == "Please ask a question about the race."


def test_chat_without_race(no_race: None) -> None:
    client = TestClient(app)
    with client.websocket_connect("/api/commentary/chat") as ws:
        reply = ws.receive_json()
    assert reply == {"role": "assistant", "content": "No race is loaded yet."}
