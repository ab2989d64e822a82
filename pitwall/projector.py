"""Race state projection: telemetry store + lap -> per-car state at the end of that lap."""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass
from types import MappingProxyType

from pitwall.constants import NOT_AVAILABLE
from pitwall.results import ResultsStore
from pitwall.telemetry import TelemetrySample, TelemetryStore


@dataclass(frozen=True)
class CarState(TelemetrySample):
    """A lap's telemetry sample enriched with identity from the results table."""

    team: str = NOT_AVAILABLE
    driver_full_name: str = NOT_AVAILABLE


class RaceState(Mapping[str, CarState]):
    """Immutable snapshot mapping car number -> CarState for exactly one lap.

    Cars without a sample for the lap are absent, never placeholder-filled.
    A new RaceState is built on every lap transition; instances are safe to
    hand to readers that outlive the transition.
    """

    __slots__ = ("_cars", "_lap")

    def __init__(self, lap: int, cars: Mapping[str, CarState] | None = None) -> None:
        self._lap = lap
        self._cars: Mapping[str, CarState] = MappingProxyType(dict(cars or {}))

    @property
    def lap(self) -> int:
        return self._lap

    def __getitem__(self, car_number: str) -> CarState:
        return self._cars[car_number]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cars)

    def __len__(self) -> int:
        return len(self._cars)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RaceState):
            return NotImplemented
        return self._lap == other._lap and dict(self._cars) == dict(other._cars)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"RaceState(lap={self._lap}, cars={sorted(self._cars)})"

    def leader(self) -> CarState | None:
        """The car classified P1 on this lap, if present."""
        for car in self._cars.values():
            if car.position == 1:
                return car
        return None


def clamp_lap(lap: float, max_laps: int) -> int:
    """Clamp a requested lap into ``[1, max_laps]`` as an integer.

    Non-integer targets are floored before clamping; NaN maps to lap 1.
    """
    if isinstance(lap, float) and math.isnan(lap):
        return 1
    if lap >= max_laps:
        return max_laps
    if lap <= 1:
        return 1
    return int(math.floor(lap))


def build_car_state(sample: TelemetrySample, results: ResultsStore) -> CarState:
    """Merge one sample with the identity fields for its car number."""
    identity = results.identity_for(sample.car_number)
    return CarState(
        **asdict(sample),
        team=identity.team,
        driver_full_name=identity.driver_full_name,
    )


class RaceProjector:
    """Pure projection of a telemetry store onto a single lap.

    Holds references to both stores; neither is copied or mutated. Calling
    ``project`` twice with the same lap yields equal RaceStates.
    """

    def __init__(self, telemetry: TelemetryStore, results: ResultsStore) -> None:
        self._telemetry = telemetry
        self._results = results

    @property
    def telemetry(self) -> TelemetryStore:
        return self._telemetry

    @property
    def results(self) -> ResultsStore:
        return self._results

    @property
    def max_laps(self) -> int:
        return self._telemetry.max_laps

    def project(self, lap: float) -> RaceState:
        """Return the race as of the end of *lap* (clamped to the data range)."""
        target = clamp_lap(lap, self._telemetry.max_laps)
        cars = {
            s.car_number: build_car_state(s, self._results)
            for s in self._telemetry.samples_for_lap(target)
        }
        return RaceState(target, cars)


def project(telemetry: TelemetryStore, results: ResultsStore, lap: float) -> RaceState:
    """Functional form of ``RaceProjector(telemetry, results).project(lap)``."""
    return RaceProjector(telemetry, results).project(lap)
