"""Conversions from pitwall dataclasses to the API's Pydantic schemas."""

from __future__ import annotations

from dataclasses import asdict

from pitwall.projector import CarState
from pitwall.results import RaceResult
from pitwall.simulation import SimulationSnapshot
from pitwall.standings import Gauge, LeaderboardRow, sort_by_position

from backend.api.schemas.race import (
    CarStateSchema,
    GaugeSchema,
    LeaderboardRowSchema,
    RaceStateResponse,
)
from backend.api.schemas.results import RaceResultSchema


def car_state_to_schema(car: CarState) -> CarStateSchema:
    return CarStateSchema(**asdict(car))


def snapshot_to_response(
    snapshot: SimulationSnapshot,
    selected_car: str | None = None,
) -> RaceStateResponse:
    """Controller snapshot with cars listed in position order."""
    return RaceStateResponse(
        lap=snapshot.lap,
        max_laps=snapshot.max_laps,
        is_playing=snapshot.is_playing,
        selected_car=selected_car,
        cars=[car_state_to_schema(c) for c in sort_by_position(snapshot.race_state)],
    )


def leaderboard_row_to_schema(row: LeaderboardRow) -> LeaderboardRowSchema:
    return LeaderboardRowSchema(**asdict(row))


def gauge_to_schema(gauge: Gauge) -> GaugeSchema:
    return GaugeSchema(
        label=gauge.label,
        value=gauge.value,
        maximum=gauge.maximum,
        unit=gauge.unit,
        fraction=gauge.fraction,
    )


def result_to_schema(result: RaceResult) -> RaceResultSchema:
    return RaceResultSchema(
        position=result.position,
        number=result.number,
        status=result.status,
        laps=result.laps,
        total_time=result.total_time,
        gap_first=result.gap_first,
        gap_previous=result.gap_previous,
        fastest_lap_num=result.fastest_lap_num,
        fastest_lap_time=result.fastest_lap_time,
        fastest_lap_kph=result.fastest_lap_kph,
        team=result.team,
        car_class=result.car_class,
        vehicle=result.vehicle,
        driver_full_name=result.driver_full_name,
        driver_short_name=result.driver_short_name,
        driver_country=result.driver_country,
    )
