"""Claude API integration for AI race commentary, strategy and coaching.

Every entry point receives plain facts (snapshots, samples, result rows) and
returns either markdown text or a ``StrategyRecommendation``. Nothing here
holds a reference to the live replay, so a slow or failing request can never
affect the simulation.
"""

from __future__ import annotations

import contextlib
import enum
import json
import logging
import os
from collections.abc import Sequence
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any

from pitwall.analysis import compute_driver_stats
from pitwall.constants import (
    LOW_FUEL_PCT,
    NEW_TIRE_ADVANTAGE_S,
    PIT_STOP_LOSS_S,
    PIT_WINDOW_LAPS,
    TIRE_DEGRADATION_LAPS,
    TRACK_NAME,
)
from pitwall.projector import CarState, RaceState
from pitwall.results import RaceResult
from pitwall.simulation import SimulationSnapshot
from pitwall.standings import HeadToHead, format_gap, head_to_head, sort_by_position
from pitwall.telemetry import TelemetryStore
from pitwall.topic_guardrail import TOPIC_RESTRICTION_PROMPT

logger = logging.getLogger(__name__)

# Anthropic client settings for resilience against transient API errors (429, 529, 5xx)
_API_MAX_RETRIES = 3
_API_TIMEOUT_S = 60.0
_MODEL = "claude-haiku-4-5-20251001"

_HISTORY_ROWS = 15
_PROMPT_LAPS = 15

NO_API_KEY_MESSAGE = "Set ANTHROPIC_API_KEY environment variable to enable AI commentary."
NO_DRIVER_DATA_MESSAGE = "No data available for this driver."

SYSTEM_PROMPT = (
    'You are "Pit Commander," a world-class race strategist and driver coach '
    "for the Toyota GR Cup. You are precise, concise and grounded in the data "
    "you are given. Never invent lap times or positions."
)

_QA_SYSTEM = (
    SYSTEM_PROMPT
    + "\nThe user is watching a replay of the race and asks questions about it. "
    "Answer from the race snapshot provided. Use markdown, keep answers short."
    + TOPIC_RESTRICTION_PROMPT
)


class CommentaryError(Exception):
    """The commentary model failed or returned an unusable payload."""


class Recommendation(str, enum.Enum):
    PIT_NOW = "PIT_NOW"
    PIT_IN_2_LAPS = "PIT_IN_2_LAPS"
    STAY_OUT = "STAY_OUT"
    PUSH = "PUSH"
    CONSERVE_TIRES = "CONSERVE_TIRES"


class RecommendationColor(str, enum.Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


@dataclass(frozen=True)
class StrategyRecommendation:
    """Structured strategy call for one car."""

    recommendation: Recommendation
    confidence: float  # 0-100
    reasoning: str
    color: RecommendationColor

    @property
    def label(self) -> str:
        return self.recommendation.value.replace("_", " ")


@dataclass(frozen=True)
class WhatIfScenario:
    """An alternate strategy decision to simulate for one car."""

    car_number: str
    decision_lap: int
    action: str  # e.g. "Pit Now", "Stay Out"
    original_finish: int


@dataclass
class CommentaryContext:
    """Conversation history for the multi-turn race Q&A."""

    messages: list[dict[str, str]] = field(default_factory=list)


# -- Client ---------------------------------------------------------------------


def _create_client() -> Any:
    """Create an Anthropic client, or None if the API key is not set.

    The SDK retries 429, 500 and 529 errors with exponential backoff.
    """
    import anthropic

    api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    if not api_key:
        return None
    return anthropic.Anthropic(
        api_key=api_key,
        max_retries=_API_MAX_RETRIES,
        timeout=_API_TIMEOUT_S,
    )


def _call_model(
    client: Any,
    messages: list[dict[str, str]],
    *,
    system: str = SYSTEM_PROMPT,
    max_tokens: int = 1024,
) -> str:
    """Send one request and return the first text block.

    Raises CommentaryError on any transport or API failure.
    """
    try:
        msg = client.messages.create(
            model=_MODEL,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
        )
    except Exception as exc:
        logger.warning("Commentary API call failed: %s", exc)
        raise CommentaryError(f"Could not reach the commentary service: {exc}") from exc

    if not msg.content:
        raise CommentaryError("Commentary service returned an empty response")
    block = msg.content[0]
    return block.text if hasattr(block, "text") else str(block)


def _error_markdown(exc: Exception) -> str:
    return (
        "**Error:** Could not generate analysis. Please check your API key "
        f"and network connection. Details: {exc}"
    )


def _generate_text(prompt: str, *, max_tokens: int = 1024) -> str:
    """Run a single-turn markdown prompt; failures become user-visible text."""
    client = _create_client()
    if client is None:
        return NO_API_KEY_MESSAGE
    try:
        return _call_model(client, [{"role": "user", "content": prompt}], max_tokens=max_tokens)
    except CommentaryError as exc:
        return _error_markdown(exc)


# -- Prompt formatting -------------------------------------------------------------


def _format_results_table(results: Sequence[RaceResult]) -> str:
    lines = ["Pos | Driver | Team | Laps | Gap | Fastest Lap"]
    lines.append("--- | --- | --- | --- | --- | ---")
    for r in results[:_HISTORY_ROWS]:
        lines.append(
            f"P{r.position} | #{r.number} {r.driver_full_name} | {r.team} | {r.laps} "
            f"| {r.gap_first} | {r.fastest_lap_time}"
        )
    return "\n".join(lines)


def _format_car_state(car: CarState) -> str:
    return "\n".join(
        [
            f"- Position: P{car.position}",
            f"- Tire Age: {car.tire_age} laps",
            f"- Fuel Remaining: {car.fuel:.1f}%",
            f"- Gap to Leader: {car.gap_to_leader:.2f}s",
            f"- Gap to Car Ahead: {car.gap_to_ahead:.2f}s",
            f"- Last Lap: {car.lap_time:.3f}s",
        ]
    )


def _format_driver_laps(telemetry: TelemetryStore, car_number: str, *, sectors: bool) -> str:
    samples = telemetry.samples_for_car(car_number)[:_PROMPT_LAPS]
    if sectors:
        lines = ["Lap | Time | S1 | S2 | S3 | Pos", "--- | --- | --- | --- | --- | ---"]
        lines.extend(
            f"L{s.lap} | {s.lap_time:.3f} | {s.sector1:.3f} | {s.sector2:.3f} "
            f"| {s.sector3:.3f} | P{s.position}"
            for s in samples
        )
    else:
        lines = ["Lap | Time | Pos", "--- | --- | ---"]
        lines.extend(f"L{s.lap} | {s.lap_time:.3f} | P{s.position}" for s in samples)
    return "\n".join(lines)


def _format_snapshot(snapshot: SimulationSnapshot) -> str:
    lines = [
        f"Lap {snapshot.lap} of {snapshot.max_laps}",
        "Pos | Car | Driver | Team | Gap | Interval | Last Lap | Tires | Fuel",
        "--- | --- | --- | --- | --- | --- | --- | --- | ---",
    ]
    for car in sort_by_position(snapshot.race_state):
        gap = "Leader" if car.position == 1 else format_gap(car.gap_to_leader)
        interval = "" if car.position == 1 else format_gap(car.gap_to_ahead)
        lines.append(
            f"P{car.position} | #{car.car_number} | {car.driver_full_name} | {car.team} "
            f"| {gap} | {interval} | {car.lap_time:.3f} | {car.tire_age} laps | {car.fuel:.0f}%"
        )
    return "\n".join(lines)


def _format_head_to_head(h2h: HeadToHead) -> str:
    lines = [
        f"Lap | #{h2h.car_a} time | #{h2h.car_b} time | Delta | "
        f"Pos #{h2h.car_a} | Pos #{h2h.car_b}",
        "--- | --- | --- | --- | --- | ---",
    ]
    lines.extend(
        f"L{lap.lap} | {lap.lap_time_a:.3f} | {lap.lap_time_b:.3f} | {lap.lap_time_delta:+.3f} "
        f"| P{lap.position_a} | P{lap.position_b}"
        for lap in h2h.laps
    )
    return "\n".join(lines)


# -- Response parsing --------------------------------------------------------------


def _extract_json(text: str) -> Any:
    """Pull a JSON object out of a response that may be wrapped in code fences."""
    json_text = text.strip()
    if "```json" in json_text:
        json_text = json_text.split("```json", 1)[1]
        json_text = json_text.split("```", 1)[0]
    elif "```" in json_text:
        json_text = json_text.split("```", 1)[1]
        json_text = json_text.split("```", 1)[0]

    data = None
    try:
        data = json.loads(json_text.strip())
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            with contextlib.suppress(json.JSONDecodeError):
                data = json.loads(text[start : end + 1])
    return data


def _parse_strategy_response(text: str) -> StrategyRecommendation:
    """Validate the model's JSON into a StrategyRecommendation.

    Raises CommentaryError when the payload is not an object, names an
    unknown recommendation or color, or has a confidence outside 0-100.
    """
    data = _extract_json(text)
    if not isinstance(data, dict):
        raise CommentaryError("Strategy response was not valid JSON")

    try:
        recommendation = Recommendation(str(data["recommendation"]).strip().upper())
        color = RecommendationColor(str(data["color"]).strip().lower())
        confidence = float(data["confidence"])
        reasoning = str(data["reasoning"])
    except (KeyError, ValueError, TypeError) as exc:
        raise CommentaryError(f"Malformed strategy response: {exc}") from exc

    if not 0.0 <= confidence <= 100.0:
        raise CommentaryError(f"Strategy confidence {confidence} is outside 0-100")

    return StrategyRecommendation(
        recommendation=recommendation,
        confidence=confidence,
        reasoning=reasoning,
        color=color,
    )


# -- Entry points --------------------------------------------------------------------


def generate_history_analysis(results: Sequence[RaceResult]) -> str:
    """Expert summary of the final classification."""
    prompt = f"""Analyze the following final race results from the {TRACK_NAME}.
Provide a concise, expert summary of the race.

Focus on:
1. The battle for the lead: how close was the finish, who were the main contenders?
2. Standout performances: drivers with a notable result, e.g. a great fastest lap \
despite a lower finishing position.
3. Key strategic takeaways: based on the gaps and results, what could have been a \
decisive moment or strategy? Keep it brief and insightful.

Format your response in Markdown. Use bold for emphasis.

## Race Results
{_format_results_table(results)}"""
    return _generate_text(prompt)


def _build_strategy_prompt(car: CarState, total_laps: int) -> str:
    deg_lo, deg_hi = TIRE_DEGRADATION_LAPS
    win_lo, win_hi = PIT_WINDOW_LAPS
    return f"""It is lap {car.lap} of {total_laps}.
Analyze the current state of car #{car.car_number} ({car.driver_full_name}) and \
provide a strategy recommendation.

## Current State
{_format_car_state(car)}

## Rules
- A pit stop costs about {PIT_STOP_LOSS_S:.0f} seconds.
- Tires start to degrade significantly after {deg_lo}-{deg_hi} laps.
- The ideal pit window is typically between laps {win_lo} and {win_hi}.
- Low fuel (under {LOW_FUEL_PCT:.0f}%) is critical.

Respond in JSON with this exact structure:
{{
  "recommendation": "<one of PIT_NOW, PIT_IN_2_LAPS, STAY_OUT, PUSH, CONSERVE_TIRES>",
  "confidence": <number between 0 and 100>,
  "reasoning": "<short, clear explanation>",
  "color": "<red for urgent actions (PIT_NOW), yellow for warnings or upcoming \
actions, green for safe states>"
}}"""


def generate_strategy_recommendation(car: CarState, total_laps: int) -> StrategyRecommendation:
    """Ask the model for a structured strategy call.

    Raises CommentaryError if the API key is missing, the call fails, or the
    response is malformed.
    """
    client = _create_client()
    if client is None:
        raise CommentaryError(NO_API_KEY_MESSAGE)

    prompt = _build_strategy_prompt(car, total_laps)
    text = _call_model(client, [{"role": "user", "content": prompt}], max_tokens=512)
    recommendation = _parse_strategy_response(text)
    logger.info(
        "Strategy for car #%s on lap %d: %s (%.0f%%)",
        car.car_number,
        car.lap,
        recommendation.recommendation.value,
        recommendation.confidence,
    )
    return recommendation


@dataclass(frozen=True)
class StrategyOutcome:
    """A finished background strategy call: a recommendation or an error message."""

    car_number: str
    lap: int
    recommendation: StrategyRecommendation | None = None
    error: str | None = None


class StrategyWorker:
    """Runs strategy calls off the caller's thread, one at a time.

    ``submit`` returns at once; the host polls for the outcome on a later
    refresh and keeps advancing the replay meanwhile.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor
        self._pending: tuple[CarState, Future[StrategyRecommendation]] | None = None

    @property
    def pending_car(self) -> str | None:
        return self._pending[0].car_number if self._pending is not None else None

    def submit(self, car: CarState, total_laps: int) -> bool:
        """Start a call for *car*. Returns False if one is still in flight."""
        if self._pending is not None:
            return False
        future = self._executor.submit(generate_strategy_recommendation, car, total_laps)
        self._pending = (car, future)
        return True

    def poll(self) -> StrategyOutcome | None:
        """The outcome of the pending call once it has finished, else None."""
        if self._pending is None or not self._pending[1].done():
            return None
        car, future = self._pending
        self._pending = None
        try:
            rec = future.result()
        except CommentaryError as exc:
            return StrategyOutcome(car.car_number, car.lap, error=str(exc))
        return StrategyOutcome(car.car_number, car.lap, recommendation=rec)


def run_what_if_simulation(
    scenario: WhatIfScenario,
    telemetry: TelemetryStore,
    total_laps: int | None = None,
) -> str:
    """Predict the outcome of an alternate strategy decision."""
    total_laps = total_laps or telemetry.max_laps
    prompt = f"""A user wants to know what would have happened in the race at the \
{TRACK_NAME} if a different strategy was used for car #{scenario.car_number}.

## Scenario
- Car: #{scenario.car_number}
- Original Finishing Position: P{scenario.original_finish}
- Decision Point: Lap {scenario.decision_lap}
- Alternate Action: {scenario.action}

## Race Dynamics
- A standard pit stop adds ~{PIT_STOP_LOSS_S:.0f} seconds to a lap time.
- New tires are worth ~{NEW_TIRE_ADVANTAGE_S}s per lap for the first 5 laps, then \
the advantage decays.
- The race is {total_laps} laps long.

## Original Lap Times (first {_PROMPT_LAPS} laps)
{_format_driver_laps(telemetry, scenario.car_number, sectors=False)}

Analyze this alternate scenario. Predict the new finishing position and explain \
your reasoning lap by lap. Format the output in Markdown. Start with a bold \
"Simulated Outcome" summary, then a brief "Analysis" section."""
    return _generate_text(prompt)


def generate_driver_analysis(car_number: str, telemetry: TelemetryStore) -> str:
    """Coaching feedback from a driver's lap and sector times."""
    stats = compute_driver_stats(telemetry, car_number)
    if stats is None:
        return NO_DRIVER_DATA_MESSAGE

    sector_lines = "\n".join(
        f"- S{s.sector}: best {s.best_s:.3f}s, mean {s.mean_s:.3f}s, std {s.std_s:.3f}s"
        for s in stats.sectors
    )
    excluded = ", ".join(f"L{n}" for n in stats.anomalous_laps) or "none"

    prompt = f"""Analyze the performance of driver #{car_number} at the {TRACK_NAME} \
based on their lap data.

## Key Data Points
- Best Lap: L{stats.best_lap} with a time of {stats.best_lap_time_s:.3f}s
- Theoretical best (best sectors combined): {stats.theoretical_best_s:.3f}s
- Consistency score: {stats.consistency_score:.0f}/100 (std {stats.std_dev_s:.3f}s)
- Pit/incident laps excluded from statistics: {excluded}

## Sector Statistics
{sector_lines}

## Lap by Lap (first {_PROMPT_LAPS} laps)
{_format_driver_laps(telemetry, car_number, sectors=True)}

Provide a concise performance analysis in Markdown. Focus on:
1. **Overall Consistency:** are the lap times consistent or erratic?
2. **Sector Performance:** is there a sector where the driver is consistently \
strong or weak?
3. **Actionable Feedback:** one or two concrete improvement recommendations."""
    return _generate_text(prompt)


def generate_head_to_head(
    car_a: str,
    car_b: str,
    telemetry: TelemetryStore,
    race_state: RaceState,
) -> str:
    """Battle analysis between two cars up to the lap of *race_state*."""
    h2h = head_to_head(telemetry, car_a, car_b, up_to_lap=race_state.lap)
    if not h2h.laps:
        return f"No common laps to compare for #{car_a} and #{car_b}."
    if car_a not in race_state or car_b not in race_state:
        return f"Both #{car_a} and #{car_b} must be on track at lap {race_state.lap}."
    return _head_to_head_text(race_state[car_a], race_state[car_b], h2h)


def _head_to_head_text(car_a: CarState, car_b: CarState, h2h: HeadToHead) -> str:
    prompt = f"""Compare the race of car #{car_a.car_number} ({car_a.driver_full_name}, \
{car_a.team}) against car #{car_b.car_number} ({car_b.driver_full_name}, {car_b.team}) \
as of lap {car_a.lap}.

## #{car_a.car_number} now
{_format_car_state(car_a)}

## #{car_b.car_number} now
{_format_car_state(car_b)}

## Lap by Lap (delta = #{car_a.car_number} minus #{car_b.car_number})
{_format_head_to_head(h2h)}

Summary: #{car_a.car_number} was faster on {h2h.laps_a_faster} laps, \
#{car_b.car_number} on {h2h.laps_b_faster}; mean delta {h2h.mean_delta:+.3f}s.

In Markdown, explain who has the upper hand and why, where the battle was won \
or lost, and what each driver should do over the remaining laps."""
    return _generate_text(prompt)


def ask_race_question(
    context: CommentaryContext,
    question: str,
    snapshot: SimulationSnapshot,
) -> str:
    """Answer a free-form question about the race, keeping conversation history.

    The snapshot is embedded in the user turn so each answer reflects the lap
    that was on screen when the question was asked.
    """
    client = _create_client()
    if client is None:
        return "Set ANTHROPIC_API_KEY to enable the race Q&A."

    content = f"## Race snapshot\n{_format_snapshot(snapshot)}\n\n## Question\n{question}"
    pending = [*context.messages, {"role": "user", "content": content}]

    try:
        answer = _call_model(client, pending, system=_QA_SYSTEM)
    except CommentaryError:
        return (
            "AI commentary is temporarily unavailable (the service is overloaded). "
            "Please try again in a moment."
        )

    context.messages.extend([pending[-1], {"role": "assistant", "content": answer}])
    return answer
