"""In-memory race session store.

The service replays a single race per process. The session bundles the
loaded stores with the projector and controller built on them, plus the
car currently selected in the dashboard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pitwall.generator import generate_telemetry
from pitwall.projector import RaceProjector
from pitwall.results import ResultsStore, parse_results_csv
from pitwall.simulation import SimulationController
from pitwall.standings import default_selection
from pitwall.telemetry import TelemetryStore, parse_telemetry_csv

from backend.api.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class RaceSession:
    """All live objects behind the replay endpoints."""

    telemetry: TelemetryStore
    results: ResultsStore
    projector: RaceProjector
    controller: SimulationController
    selected_car: str | None = None

    @property
    def effective_selection(self) -> str | None:
        """Selected car if it is on track this lap, otherwise the leader."""
        return default_selection(self.controller.race_state, self.selected_car)


# Module-level in-memory store
_current: RaceSession | None = None


def build_session(
    telemetry: TelemetryStore,
    results: ResultsStore,
    tick_interval_s: float,
) -> RaceSession:
    """Wire stores into a projector and a paused controller at lap 1."""
    projector = RaceProjector(telemetry, results)
    controller = SimulationController(projector, tick_interval_s=tick_interval_s)
    return RaceSession(
        telemetry=telemetry,
        results=results,
        projector=projector,
        controller=controller,
    )


def load_session(settings: Settings) -> RaceSession:
    """Load results and telemetry as configured and build a session.

    Telemetry is read from ``telemetry_csv_path`` when set, otherwise it is
    generated with ``telemetry_seed`` for ``total_laps`` laps.
    """
    results = parse_results_csv(settings.results_csv_path)
    logger.info("Loaded %d results from %s", len(results), settings.results_csv_path)

    if settings.telemetry_csv_path:
        telemetry = parse_telemetry_csv(settings.telemetry_csv_path)
        logger.info("Loaded telemetry from %s", settings.telemetry_csv_path)
    else:
        telemetry = generate_telemetry(total_laps=settings.total_laps, seed=settings.telemetry_seed)
        logger.info("Generated telemetry (seed=%d)", settings.telemetry_seed)

    issues = telemetry.validate()
    if issues:
        logger.warning("Telemetry has %d lap(s) with inconsistent positions", len(issues))

    return build_session(telemetry, results, settings.tick_interval_s)


def set_session(session: RaceSession) -> None:
    """Install *session* as the current race, stopping any previous replay."""
    global _current
    if _current is not None:
        _current.controller.pause()
    _current = session


def get_session() -> RaceSession | None:
    """Return the current race, or None if none is loaded."""
    return _current


def clear_session() -> bool:
    """Stop and drop the current race. Returns True if one existed."""
    global _current
    existed = _current is not None
    if _current is not None:
        _current.controller.pause()
    _current = None
    return existed


def results_path_exists(settings: Settings) -> bool:
    return Path(settings.results_csv_path).is_file()
