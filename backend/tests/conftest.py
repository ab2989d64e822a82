"""Test fixtures for the backend test suite."""

from __future__ import annotations

import io
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pitwall.results import parse_results_csv
from pitwall.telemetry import TelemetryStore

from backend.api.main import app
from backend.api.services import race_store
from backend.api.services.commentary_store import clear_all_commentary
from backend.api.services.race_store import RaceSession
from tests.conftest import RESULTS_CSV, make_sample


def build_test_session(tick_interval_s: float = 0.01) -> RaceSession:
    """Two cars over three laps; car 2 leads lap 2, car 1 leads laps 1 and 3."""
    telemetry = TelemetryStore(
        [
            make_sample("1", 1, 1, 100.0, driver_short_name="LOV"),
            make_sample("2", 1, 2, 100.4, 0.4, 0.4, driver_short_name="TUR"),
            make_sample("1", 2, 2, 101.0, 0.3, 0.3, driver_short_name="LOV"),
            make_sample("2", 2, 1, 100.3, driver_short_name="TUR"),
            make_sample("1", 3, 1, 99.5, driver_short_name="LOV"),
            make_sample("2", 3, 2, 100.0, 0.2, 0.2, driver_short_name="TUR"),
        ]
    )
    results = parse_results_csv(io.StringIO(RESULTS_CSV))
    return race_store.build_session(telemetry, results, tick_interval_s)


@pytest.fixture(autouse=True)
def race() -> Generator[RaceSession, None, None]:
    """Install a fresh test race for every test and drop it afterwards."""
    clear_all_commentary()
    session = build_test_session()
    race_store.set_session(session)
    yield session
    race_store.clear_session()
    clear_all_commentary()


@pytest.fixture
def no_race(race: RaceSession) -> Generator[None, None, None]:
    """Run a test with no race loaded."""
    race_store.clear_session()
    yield


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Yield an async HTTP test client wired to the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
