"""Derived views over a RaceState: leaderboard, gaps, track map, gauges, head-to-head.

All functions here are stateless and read-only. Positions and gaps are taken
verbatim from the telemetry; nothing is re-ranked from lap times.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.interpolate import interp1d

from pitwall.projector import CarState, RaceState
from pitwall.telemetry import TelemetryStore


@dataclass(frozen=True)
class LeaderboardRow:
    """One display row of the live leaderboard."""

    position: int
    car_number: str
    driver_short_name: str
    driver_full_name: str
    team: str
    timing: str  # leader: own lap time; others: "+gap to leader"
    interval: str  # "+gap to car ahead", empty for the leader
    tire_age: int
    is_selected: bool = False


def format_lap_time(seconds: float) -> str:
    return f"{seconds:.3f}"


def format_gap(seconds: float) -> str:
    """Gap display: ``+`` prefix, two decimals. Rounding is display only."""
    return f"+{seconds:.2f}"


def sort_by_position(race_state: RaceState) -> list[CarState]:
    """Cars ordered by their reported position (P1 first)."""
    return sorted(race_state.values(), key=lambda c: c.position)


def leaderboard(race_state: RaceState, selected_car: str | None = None) -> list[LeaderboardRow]:
    """Build leaderboard rows in position order.

    The leader row shows its lap time; every other row shows its gap to the
    leader and the interval to the car ahead.
    """
    rows: list[LeaderboardRow] = []
    for car in sort_by_position(race_state):
        is_leader = car.position == 1
        rows.append(
            LeaderboardRow(
                position=car.position,
                car_number=car.car_number,
                driver_short_name=car.driver_short_name,
                driver_full_name=car.driver_full_name,
                team=car.team,
                timing=(
                    format_lap_time(car.lap_time) if is_leader else format_gap(car.gap_to_leader)
                ),
                interval="" if is_leader else format_gap(car.gap_to_ahead),
                tire_age=car.tire_age,
                is_selected=car.car_number == selected_car,
            )
        )
    return rows


def default_selection(race_state: RaceState, selected_car: str | None) -> str | None:
    """Keep the selected car while it is on track, otherwise fall back to P1."""
    if selected_car is not None and selected_car in race_state:
        return selected_car
    leader = race_state.leader()
    return leader.car_number if leader is not None else None


# -- Track map -----------------------------------------------------------------

# Simplified road-course outline in SVG coordinates, start/finish at the first
# vertex, closed back onto it.
TRACK_OUTLINE: tuple[tuple[float, float], ...] = (
    (50.0, 50.0),
    (350.0, 50.0),
    (350.0, 150.0),
    (250.0, 150.0),
    (250.0, 120.0),
    (200.0, 120.0),
    (200.0, 150.0),
    (100.0, 150.0),
    (100.0, 200.0),
    (350.0, 200.0),
    (350.0, 250.0),
    (50.0, 250.0),
    (50.0, 50.0),
)


def _outline_interpolators() -> tuple[interp1d, interp1d]:
    pts = np.asarray(TRACK_OUTLINE)
    seg_len = np.hypot(np.diff(pts[:, 0]), np.diff(pts[:, 1]))
    cum = np.concatenate([[0.0], np.cumsum(seg_len)])
    frac = cum / cum[-1] * 100.0
    fx = interp1d(frac, pts[:, 0], kind="linear")
    fy = interp1d(frac, pts[:, 1], kind="linear")
    return fx, fy


_FX, _FY = _outline_interpolators()


def track_position(lap_distance_pct: float) -> tuple[float, float]:
    """Map percent-of-lap onto the track outline, returning ``(x, y)``.

    Values wrap modulo 100, so 100% lands back on the start/finish line.
    """
    pct = float(lap_distance_pct) % 100.0
    return float(_FX(pct)), float(_FY(pct))


def map_lap_distance(car: CarState) -> float:
    """Percent-of-lap used to place a car on the map.

    Lap-end samples all report 100%, which would stack every car on the
    start/finish line. Those are spread back from the line by position and
    gap so the running order stays readable.
    """
    if 0.0 <= car.lap_distance < 100.0:
        return car.lap_distance
    offset = (car.position * 5.0 + car.gap_to_leader * 2.0) % 100.0
    return (100.0 - offset) % 100.0


# -- Gauges --------------------------------------------------------------------


@dataclass(frozen=True)
class Gauge:
    label: str
    value: float
    maximum: float
    unit: str

    @property
    def fraction(self) -> float:
        return gauge_fraction(self.value, self.maximum)


def gauge_fraction(value: float, maximum: float) -> float:
    """Fill fraction of a gauge, clamped to ``[0, 1]``."""
    if maximum <= 0:
        return 0.0
    return float(np.clip(value / maximum, 0.0, 1.0))


def telemetry_gauges(car: CarState) -> list[Gauge]:
    """Gauge set shown on the live telemetry panel for one car."""
    return [
        Gauge("Speed", car.speed, 300.0, "km/h"),
        Gauge("RPM", car.rpm, 9000.0, ""),
        Gauge("Throttle", car.throttle, 100.0, "%"),
        Gauge("Brake", car.brake, 100.0, "%"),
        Gauge("Fuel", car.fuel, 100.0, "%"),
        Gauge("Tire Age", float(car.tire_age), 25.0, "laps"),
    ]


# -- Head-to-head --------------------------------------------------------------


@dataclass(frozen=True)
class HeadToHeadLap:
    """Lap-by-lap comparison of two cars; deltas are ``a - b``."""

    lap: int
    lap_time_a: float
    lap_time_b: float
    lap_time_delta: float
    position_a: int
    position_b: int
    gap_between: float  # gap_to_leader a - b; negative means a is ahead


@dataclass(frozen=True)
class HeadToHead:
    car_a: str
    car_b: str
    laps: list[HeadToHeadLap]

    @property
    def laps_a_faster(self) -> int:
        return sum(1 for lap in self.laps if lap.lap_time_delta < 0)

    @property
    def laps_b_faster(self) -> int:
        return sum(1 for lap in self.laps if lap.lap_time_delta > 0)

    @property
    def mean_delta(self) -> float:
        if not self.laps:
            return 0.0
        return float(np.mean([lap.lap_time_delta for lap in self.laps]))


def head_to_head(
    telemetry: TelemetryStore,
    car_a: str,
    car_b: str,
    up_to_lap: int | None = None,
) -> HeadToHead:
    """Compare two cars on every lap where both have a sample."""
    samples_b = {s.lap: s for s in telemetry.samples_for_car(car_b)}
    laps: list[HeadToHeadLap] = []
    for a in telemetry.samples_for_car(car_a):
        if up_to_lap is not None and a.lap > up_to_lap:
            break
        b = samples_b.get(a.lap)
        if b is None:
            continue
        laps.append(
            HeadToHeadLap(
                lap=a.lap,
                lap_time_a=a.lap_time,
                lap_time_b=b.lap_time,
                lap_time_delta=a.lap_time - b.lap_time,
                position_a=a.position,
                position_b=b.position,
                gap_between=a.gap_to_leader - b.gap_to_leader,
            )
        )
    return HeadToHead(car_a=car_a, car_b=car_b, laps=laps)
