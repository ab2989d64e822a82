"""Pydantic schemas for race replay endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CarStateSchema(BaseModel):
    """One car's state on the current lap."""

    car_number: str
    driver_short_name: str
    driver_full_name: str
    team: str
    lap: int
    lap_time: float
    sector1: float
    sector2: float
    sector3: float
    position: int
    gap_to_leader: float
    gap_to_ahead: float
    speed: float
    rpm: float
    gear: int
    throttle: float
    brake: float
    tire_age: int
    fuel: float
    lap_distance: float


class RaceStateResponse(BaseModel):
    """Controller snapshot: lap, playback status and every car on track."""

    lap: int
    max_laps: int
    is_playing: bool
    selected_car: str | None = None
    cars: list[CarStateSchema]


class LeaderboardRowSchema(BaseModel):
    position: int
    car_number: str
    driver_short_name: str
    driver_full_name: str
    team: str
    timing: str
    interval: str
    tire_age: int
    is_selected: bool


class LeaderboardResponse(BaseModel):
    lap: int
    max_laps: int
    rows: list[LeaderboardRowSchema]


class GaugeSchema(BaseModel):
    label: str
    value: float
    maximum: float
    unit: str
    fraction: float


class TrackPointSchema(BaseModel):
    x: float
    y: float


class CarDetailResponse(BaseModel):
    """Live telemetry panel for one car."""

    state: CarStateSchema
    gauges: list[GaugeSchema]
    track_position: TrackPointSchema


class SeekRequest(BaseModel):
    """Target lap; out-of-range values are clamped."""

    lap: float = Field(allow_inf_nan=False)


class SelectRequest(BaseModel):
    car_number: str
