"""Parse timing-system result exports into the historical results store."""

from __future__ import annotations

import io
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import pandas as pd

from pitwall.constants import NOT_AVAILABLE

logger = logging.getLogger(__name__)

# Timing-system result column positions (0-indexed). The export carries many
# vendor-specific columns between the car and driver blocks, so we select by
# position rather than by header name.
_COL_MAP: dict[int, str] = {
    0: "position",
    1: "number",
    2: "status",
    3: "laps",
    4: "total_time",
    5: "gap_first",
    6: "gap_previous",
    7: "fastest_lap_num",
    8: "fastest_lap_time",
    9: "fastest_lap_kph",
    10: "team",
    11: "car_class",
    12: "group",
    13: "division",
    14: "vehicle",
    15: "tires",
    26: "driver_first_name",
    27: "driver_second_name",
    30: "driver_country",
    31: "driver_short_name",
}

_LAP_TIME_RE = re.compile(r"^(?:(\d+):)?(\d+(?:\.\d+)?)$")


def parse_lap_time(text: str) -> float | None:
    """Convert ``M:SS.mmm`` (or ``SS.mmm``) into seconds. None if unparseable."""
    match = _LAP_TIME_RE.match(text.strip())
    if match is None:
        return None
    minutes = int(match.group(1)) if match.group(1) else 0
    return minutes * 60 + float(match.group(2))


@dataclass(frozen=True)
class RaceResult:
    """One row of the final race classification."""

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
    group: str | None
    division: str
    vehicle: str
    tires: str | None
    driver_first_name: str
    driver_second_name: str
    driver_country: str
    driver_short_name: str = ""

    @property
    def driver_full_name(self) -> str:
        return f"{self.driver_first_name} {self.driver_second_name}".strip()

    @property
    def fastest_lap_s(self) -> float | None:
        return parse_lap_time(self.fastest_lap_time)


@dataclass(frozen=True)
class DriverIdentity:
    """Identity fields joined onto telemetry by car number."""

    team: str
    driver_full_name: str


UNKNOWN_IDENTITY = DriverIdentity(team=NOT_AVAILABLE, driver_full_name=NOT_AVAILABLE)


class ResultsStore:
    """Immutable final classification with a car-number index.

    The index is built once at construction; lookups for unknown cars return
    ``UNKNOWN_IDENTITY`` rather than raising.
    """

    def __init__(self, results: Iterable[RaceResult]) -> None:
        self._results: tuple[RaceResult, ...] = tuple(sorted(results, key=lambda r: r.position))
        self._by_number: dict[str, RaceResult] = {}
        for r in self._results:
            if r.number in self._by_number:
                logger.warning("Duplicate result row for car #%s, keeping the first", r.number)
                continue
            self._by_number[r.number] = r
        self._identities: dict[str, DriverIdentity] = {
            number: DriverIdentity(team=r.team, driver_full_name=r.driver_full_name)
            for number, r in self._by_number.items()
        }

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[RaceResult]:
        return iter(self._results)

    @property
    def results(self) -> tuple[RaceResult, ...]:
        return self._results

    def get(self, number: str) -> RaceResult | None:
        """Return the result row for a car, or None if not classified."""
        return self._by_number.get(number)

    def identity_for(self, number: str) -> DriverIdentity:
        """Team and driver name for a car, or the "N/A" sentinel on a miss."""
        return self._identities.get(number, UNKNOWN_IDENTITY)

    def fastest_lap_deltas(self, top_n: int = 10) -> list[tuple[RaceResult, float]]:
        """Fastest-lap delta to the race winner's fastest lap for the top N.

        Rows whose fastest lap cannot be parsed are skipped. Empty if the
        winner has no parseable fastest lap.
        """
        top = self._results[:top_n]
        if not top or top[0].fastest_lap_s is None:
            return []
        reference = top[0].fastest_lap_s
        deltas: list[tuple[RaceResult, float]] = []
        for r in top:
            t = r.fastest_lap_s
            if t is not None:
                deltas.append((r, t - reference))
        return deltas


def _to_int(value: str, default: int = 0) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _to_float(value: str, default: float = 0.0) -> float:
    try:
        return float(value)
    except ValueError:
        return default


def parse_results_csv(source: str | io.IOBase) -> ResultsStore:
    """Parse a semicolon-delimited race classification export.

    Parameters
    ----------
    source:
        File path or file-like object containing the CSV data.

    Returns
    -------
    ResultsStore holding one RaceResult per classified car.
    """
    df = pd.read_csv(
        source,  # type: ignore[arg-type]
        sep=";",
        header=0,
        dtype=str,
        keep_default_na=False,
    )

    max_col = max(_COL_MAP.keys())
    if len(df.columns) <= max_col:
        msg = (
            f"Results CSV has {len(df.columns)} columns but expected at least {max_col + 1}. "
            "Is this a semicolon-delimited classification export?"
        )
        raise ValueError(msg)

    df = df.iloc[:, list(_COL_MAP.keys())]
    df.columns = list(_COL_MAP.values())
    df = df[df["number"].str.strip() != ""]

    results = [
        RaceResult(
            position=_to_int(row["position"]),
            number=row["number"].strip(),
            status=row["status"],
            laps=_to_int(row["laps"]),
            total_time=row["total_time"],
            gap_first=row["gap_first"],
            gap_previous=row["gap_previous"],
            fastest_lap_num=_to_int(row["fastest_lap_num"]),
            fastest_lap_time=row["fastest_lap_time"],
            fastest_lap_kph=_to_float(row["fastest_lap_kph"]),
            team=row["team"],
            car_class=row["car_class"],
            group=row["group"] or None,
            division=row["division"],
            vehicle=row["vehicle"],
            tires=row["tires"] or None,
            driver_first_name=row["driver_first_name"],
            driver_second_name=row["driver_second_name"],
            driver_country=row["driver_country"],
            driver_short_name=row["driver_short_name"],
        )
        for row in df.to_dict(orient="records")
    ]
    logger.info("Parsed %d race result row(s)", len(results))
    return ResultsStore(results)
