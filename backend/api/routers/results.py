"""Historical results endpoints: final classification and fastest laps."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.api.dependencies import get_race
from backend.api.schemas.results import (
    FastestLapEntry,
    FastestLapsResponse,
    RaceResultSchema,
    ResultsListResponse,
)
from backend.api.services.race_store import RaceSession
from backend.api.services.serializers import result_to_schema

router = APIRouter()


@router.get("", response_model=ResultsListResponse)
async def list_results(race: Annotated[RaceSession, Depends(get_race)]) -> ResultsListResponse:
    """Final classification ordered by finishing position."""
    items = [result_to_schema(r) for r in race.results]
    return ResultsListResponse(results=items, total=len(items))


@router.get("/fastest-laps", response_model=FastestLapsResponse)
async def fastest_laps(
    race: Annotated[RaceSession, Depends(get_race)],
    top_n: Annotated[int, Query(ge=1, le=100)] = 10,
) -> FastestLapsResponse:
    """Fastest lap of the top finishers with the delta to the winner's fastest lap."""
    entries = [
        FastestLapEntry(
            number=r.number,
            driver_full_name=r.driver_full_name,
            fastest_lap_time=r.fastest_lap_time,
            delta_s=round(delta, 3),
        )
        for r, delta in race.results.fastest_lap_deltas(top_n)
    ]
    return FastestLapsResponse(entries=entries)


@router.get("/{number}", response_model=RaceResultSchema)
async def get_result(
    number: str,
    race: Annotated[RaceSession, Depends(get_race)],
) -> RaceResultSchema:
    result = race.results.get(number)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No result for car {number}")
    return result_to_schema(result)
