"""Pydantic schemas for historical results endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class RaceResultSchema(BaseModel):
    """One row of the final classification."""

    position: int
    number: str
    status: str
    laps: int
    total_time: str
    gap_first: str
    gap_previous: str
    fastest_lap_num: int
    fastest_lap_time: str
    fastest_lap_kph: float
    team: str
    car_class: str
    vehicle: str
    driver_full_name: str
    driver_short_name: str
    driver_country: str


class ResultsListResponse(BaseModel):
    results: list[RaceResultSchema]
    total: int


class FastestLapEntry(BaseModel):
    number: str
    driver_full_name: str
    fastest_lap_time: str
    delta_s: float


class FastestLapsResponse(BaseModel):
    entries: list[FastestLapEntry]
