"""Seeded synthetic telemetry for replaying a race without a timing feed.

Produces one sample per car per lap. Positions and gaps are derived from
cumulative race time at the end of each lap, so every lap satisfies the
``{1..N}`` position invariant and gaps are non-negative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pitwall.constants import PIT_STOP_LOSS_S
from pitwall.telemetry import TelemetrySample, TelemetryStore

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_LAPS = 23
BASE_LAP_TIME_S = 101.0
BASE_LAP_SPREAD_S = 2.0  # per-car base pace drawn from [base, base + spread)
LAP_NOISE_S = 1.5  # peak-to-peak natural variation
TIRE_DEG_S_PER_LAP = 0.05
FUEL_PER_LAP_PCT = 4.3
SECTOR1_SHARE = 0.35
SECTOR2_SHARE = 0.33


@dataclass(frozen=True)
class CarEntry:
    """A car taking part in the generated race."""

    car_number: str
    driver_short_name: str


DEFAULT_ENTRIES: tuple[CarEntry, ...] = (
    CarEntry("13", "WRK"),
    CarEntry("55", "KHL"),
    CarEntry("7", "BEL"),
    CarEntry("2", "ROB"),
    CarEntry("88", "DRU"),
)

# car_number -> lap on which the car stops
DEFAULT_PIT_STOPS: dict[str, int] = {"88": 10, "2": 12}


@dataclass
class _CarRun:
    entry: CarEntry
    base_lap_time_s: float
    total_time_s: float = 0.0
    tire_age: int = 0
    fuel: float = 100.0


def generate_telemetry(
    entries: tuple[CarEntry, ...] | list[CarEntry] = DEFAULT_ENTRIES,
    total_laps: int = DEFAULT_TOTAL_LAPS,
    *,
    pit_stops: dict[str, int] | None = None,
    seed: int = 42,
) -> TelemetryStore:
    """Generate a full race of lap-end telemetry.

    Parameters
    ----------
    entries:
        Cars in the race, in grid order.
    total_laps:
        Number of laps to simulate (>= 1).
    pit_stops:
        Mapping of car number to the lap on which it pits. A pit lap costs
        ``PIT_STOP_LOSS_S`` and resets tire age and fuel.
    seed:
        RNG seed; the same seed always yields the same store.
    """
    if total_laps < 1:
        raise ValueError(f"total_laps must be >= 1, got {total_laps}")
    if not entries:
        raise ValueError("At least one car entry is required")

    stops = DEFAULT_PIT_STOPS if pit_stops is None else pit_stops
    rng = np.random.default_rng(seed)

    runs = [
        _CarRun(entry=e, base_lap_time_s=BASE_LAP_TIME_S + rng.random() * BASE_LAP_SPREAD_S)
        for e in entries
    ]

    samples: list[TelemetrySample] = []
    for lap in range(1, total_laps + 1):
        lap_times: dict[str, tuple[float, float, float, float]] = {}
        for run in runs:
            lap_time = run.base_lap_time_s + (rng.random() - 0.5) * LAP_NOISE_S
            lap_time += run.tire_age * TIRE_DEG_S_PER_LAP

            if stops.get(run.entry.car_number) == lap:
                lap_time += PIT_STOP_LOSS_S
                run.tire_age = 0
                run.fuel = 100.0

            run.total_time_s += lap_time
            run.tire_age += 1
            run.fuel = max(0.0, run.fuel - FUEL_PER_LAP_PCT)

            s1 = lap_time * SECTOR1_SHARE + (rng.random() - 0.5)
            s2 = lap_time * SECTOR2_SHARE + (rng.random() - 0.5)
            lap_times[run.entry.car_number] = (lap_time, s1, s2, lap_time - s1 - s2)

        order = sorted(runs, key=lambda r: r.total_time_s)
        leader_total = order[0].total_time_s
        for idx, run in enumerate(order):
            lap_time, s1, s2, s3 = lap_times[run.entry.car_number]
            braking = rng.random() > 0.8
            samples.append(
                TelemetrySample(
                    car_number=run.entry.car_number,
                    lap=lap,
                    lap_time=float(lap_time),
                    sector1=float(s1),
                    sector2=float(s2),
                    sector3=float(s3),
                    position=idx + 1,
                    gap_to_leader=float(run.total_time_s - leader_total),
                    gap_to_ahead=(
                        0.0 if idx == 0 else float(run.total_time_s - order[idx - 1].total_time_s)
                    ),
                    speed=float(250.0 + (rng.random() - 0.5) * 40.0),
                    rpm=float(7500.0 + rng.random() * 1000.0),
                    gear=6,
                    throttle=float(90.0 + rng.random() * 10.0),
                    brake=float(rng.random() * 20.0) if braking else 0.0,
                    tire_age=run.tire_age,
                    fuel=float(run.fuel),
                    lap_distance=100.0,
                    driver_short_name=run.entry.driver_short_name,
                )
            )

    logger.info("Generated %d telemetry samples for %d cars", len(samples), len(runs))
    return TelemetryStore(samples)
