"""Per-car, per-lap telemetry samples and the read-only store that holds them."""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable, Iterator
from dataclasses import asdict, dataclass, fields

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetrySample:
    """One car's state at the end of one lap."""

    car_number: str
    lap: int
    lap_time: float
    sector1: float
    sector2: float
    sector3: float
    position: int
    gap_to_leader: float
    gap_to_ahead: float
    speed: float  # km/h
    rpm: float
    gear: int
    throttle: float  # %
    brake: float  # %
    tire_age: int  # laps
    fuel: float  # %
    lap_distance: float  # % of lap completed
    driver_short_name: str = ""


SAMPLE_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(TelemetrySample))

_INT_COLUMNS = ("lap", "position", "gear", "tire_age")
_CRITICAL_COLUMNS = ("car_number", "lap", "lap_time", "position")


@dataclass(frozen=True)
class LapIssue:
    """A lap whose positions are not exactly ``{1..N}``."""

    lap: int
    positions: tuple[int, ...]


class TelemetryStore:
    """Immutable, ordered collection of telemetry samples.

    Built once at startup and never mutated. Per-lap and per-car indexes are
    computed at construction so lookups do not rescan the samples.
    """

    def __init__(self, samples: Iterable[TelemetrySample]) -> None:
        self._samples: tuple[TelemetrySample, ...] = tuple(samples)
        if not self._samples:
            raise ValueError("Telemetry store requires at least one sample")

        by_lap: dict[int, list[TelemetrySample]] = {}
        by_car: dict[str, list[TelemetrySample]] = {}
        for s in self._samples:
            by_lap.setdefault(s.lap, []).append(s)
            by_car.setdefault(s.car_number, []).append(s)

        self._by_lap = {lap: tuple(group) for lap, group in by_lap.items()}
        self._by_car = {
            car: tuple(sorted(group, key=lambda s: s.lap)) for car, group in by_car.items()
        }
        self._max_laps = max(self._by_lap)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[TelemetrySample]:
        return iter(self._samples)

    @property
    def samples(self) -> tuple[TelemetrySample, ...]:
        return self._samples

    @property
    def max_laps(self) -> int:
        """Highest lap number present anywhere in the store."""
        return self._max_laps

    @property
    def car_numbers(self) -> list[str]:
        """Car numbers in order of first appearance."""
        return list(self._by_car)

    def samples_for_lap(self, lap: int) -> tuple[TelemetrySample, ...]:
        """Samples recorded for *lap*, in store order. Empty if none."""
        return self._by_lap.get(lap, ())

    def samples_for_car(self, car_number: str) -> tuple[TelemetrySample, ...]:
        """All samples for one car, sorted by lap. Empty if unknown."""
        return self._by_car.get(car_number, ())

    def validate(self) -> list[LapIssue]:
        """Return laps whose positions are not exactly ``{1..N}``.

        Malformed laps are logged and reported, never rejected: the replay
        still shows whatever the source data says.
        """
        issues: list[LapIssue] = []
        for lap in sorted(self._by_lap):
            positions = sorted(s.position for s in self._by_lap[lap])
            if positions != list(range(1, len(positions) + 1)):
                issues.append(LapIssue(lap=lap, positions=tuple(positions)))

        if issues:
            logger.warning(
                "Telemetry has %d lap(s) with inconsistent positions: %s",
                len(issues),
                [i.lap for i in issues],
            )
        return issues

    def to_dataframe(self) -> pd.DataFrame:
        """Flat DataFrame view, one row per sample."""
        return pd.DataFrame([asdict(s) for s in self._samples], columns=list(SAMPLE_COLUMNS))


def _row_to_sample(row: dict[str, object]) -> TelemetrySample:
    values = dict(row)
    values["car_number"] = str(values["car_number"])
    for col in _INT_COLUMNS:
        values[col] = int(values[col])  # type: ignore[call-overload]
    values["driver_short_name"] = str(values.get("driver_short_name") or "")
    return TelemetrySample(**values)  # type: ignore[arg-type]


def parse_telemetry_csv(source: str | io.IOBase) -> TelemetryStore:
    """Parse a telemetry CSV with one header row of snake_case column names.

    Parameters
    ----------
    source:
        File path or file-like object containing the CSV data.

    Returns
    -------
    TelemetryStore with rows missing critical fields dropped.
    """
    df = pd.read_csv(source, dtype={"car_number": str})  # type: ignore[arg-type]

    missing = [c for c in SAMPLE_COLUMNS if c != "driver_short_name" and c not in df.columns]
    if missing:
        msg = f"Telemetry CSV is missing required column(s): {', '.join(missing)}"
        raise ValueError(msg)

    if "driver_short_name" not in df.columns:
        df["driver_short_name"] = ""
    df = df[list(SAMPLE_COLUMNS)].copy()

    for col in SAMPLE_COLUMNS:
        if col not in ("car_number", "driver_short_name"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

    n_before = len(df)
    df = df.dropna(subset=list(_CRITICAL_COLUMNS))
    if len(df) < n_before:
        logger.warning("Dropped %d telemetry row(s) missing critical fields", n_before - len(df))

    optional_numeric = [
        c for c in SAMPLE_COLUMNS if c not in _CRITICAL_COLUMNS and c != "driver_short_name"
    ]
    df = df.fillna({c: 0.0 for c in optional_numeric})
    df["driver_short_name"] = df["driver_short_name"].fillna("").astype(str)

    samples = [_row_to_sample(row) for row in df.to_dict(orient="records")]
    return TelemetryStore(samples)


def write_telemetry_csv(store: TelemetryStore, path: str) -> None:
    """Write the store to CSV in the format ``parse_telemetry_csv`` reads."""
    store.to_dataframe().to_csv(path, index=False)
