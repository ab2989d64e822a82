"""Shared test fixtures for pitwall tests."""

from __future__ import annotations

import io
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from pitwall.projector import RaceProjector
from pitwall.results import ResultsStore, parse_results_csv
from pitwall.telemetry import TelemetrySample, TelemetryStore

# Type alias for the sample_factory fixture
SampleFactory = Callable[..., TelemetrySample]

_RESULTS_HEADER = (
    "POSITION;NUMBER;STATUS;LAPS;TOTAL_TIME;GAP_FIRST;GAP_PREVIOUS;FL_LAPNUM;FL_TIME;FL_KPH;"
    "TEAM;CLASS;GROUP;DIVISION;VEHICLE;TIRES;ECM Participant Id;ECM Team Id;ECM Category Id;"
    "ECM Car Id;ECM Brand Id;ECM Country Id;*Extra 7;*Extra 8;*Extra 9;Sort Key;"
    "DRIVER_FIRSTNAME;DRIVER_SECONDNAME;DRIVER_LICENSE;DRIVER_HOMETOWN;DRIVER_COUNTRY;"
    "DRIVER_SHORTNAME;DRIVER_ECM Driver Id;DRIVER_ECM Country Id;DRIVER_*Extra 3;"
    "DRIVER_*Extra 4;DRIVER_*Extra 5;"
)


def build_results_row(
    position: int,
    number: str,
    fastest_lap: str,
    team: str,
    first: str,
    last: str,
    short: str,
    gap: str = "-",
) -> str:
    """Build one semicolon-delimited classification row (38 fields)."""
    fields = [""] * 38
    fields[0] = str(position)
    fields[1] = number
    fields[2] = "Classified"
    fields[3] = "3"
    fields[4] = "5:05.000"
    fields[5] = gap
    fields[6] = gap
    fields[7] = "2"
    fields[8] = fastest_lap
    fields[9] = "140.1"
    fields[10] = team
    fields[11] = "Am"
    fields[13] = "GR Cup"
    fields[14] = "Toyota GR86"
    fields[26] = first
    fields[27] = last
    fields[30] = "USA"
    fields[31] = short
    return ";".join(fields)


RESULTS_CSV = "\n".join(
    [
        _RESULTS_HEADER,
        build_results_row(1, "1", "1:40.500", "Alpha Racing", "Ada", "Lovelace", "LOV"),
        build_results_row(2, "2", "1:41.000", "Beta Motorsport", "Alan", "Turing", "TUR", "+1.2"),
    ]
) + "\n"


def make_sample(
    car_number: str,
    lap: int,
    position: int,
    lap_time: float = 100.0,
    gap_to_leader: float = 0.0,
    gap_to_ahead: float = 0.0,
    **overrides: object,
) -> TelemetrySample:
    """Build a TelemetrySample with sensible defaults for everything else."""
    values: dict[str, object] = {
        "car_number": car_number,
        "lap": lap,
        "lap_time": lap_time,
        "sector1": lap_time * 0.35,
        "sector2": lap_time * 0.33,
        "sector3": lap_time * 0.32,
        "position": position,
        "gap_to_leader": gap_to_leader,
        "gap_to_ahead": gap_to_ahead,
        "speed": 250.0,
        "rpm": 8000.0,
        "gear": 6,
        "throttle": 95.0,
        "brake": 0.0,
        "tire_age": lap,
        "fuel": 100.0 - 4.3 * lap,
        "lap_distance": 100.0,
        "driver_short_name": "",
    }
    values.update(overrides)
    return TelemetrySample(**values)  # type: ignore[arg-type]


@pytest.fixture
def sample_factory() -> SampleFactory:
    return make_sample


@pytest.fixture
def two_car_samples() -> list[TelemetrySample]:
    """Cars "1" and "2" over laps 1..3; car 2 passes car 1 on lap 2."""
    return [
        make_sample("1", 1, 1, 100.0),
        make_sample("2", 1, 2, 100.4, gap_to_leader=0.4, gap_to_ahead=0.4),
        make_sample("1", 2, 2, 101.0, gap_to_leader=0.3, gap_to_ahead=0.3),
        make_sample("2", 2, 1, 100.3),
        make_sample("1", 3, 1, 99.5),
        make_sample("2", 3, 2, 100.0, gap_to_leader=0.2, gap_to_ahead=0.2),
    ]


@pytest.fixture
def telemetry(two_car_samples: list[TelemetrySample]) -> TelemetryStore:
    return TelemetryStore(two_car_samples)


@pytest.fixture
def results() -> ResultsStore:
    return parse_results_csv(io.StringIO(RESULTS_CSV))


@pytest.fixture
def projector(telemetry: TelemetryStore, results: ResultsStore) -> RaceProjector:
    return RaceProjector(telemetry, results)


def make_mock_anthropic(response_text: str) -> MagicMock:
    """Create a mock anthropic module returning the given text."""
    mock_msg = MagicMock()
    mock_msg.content = [MagicMock(text=response_text)]
    mock_client = MagicMock()
    mock_client.messages.create.return_value = mock_msg
    mock_module = MagicMock()
    mock_module.Anthropic.return_value = mock_client
    return mock_module
