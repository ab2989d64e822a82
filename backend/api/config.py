"""Application settings via pydantic-settings."""

from __future__ import annotations

import json

from pydantic_settings import BaseSettings, SettingsConfigDict

from pitwall.constants import AUTO_STRATEGY_EVERY_LAPS, SIMULATION_TICK_S


def _parse_cors_origins(raw: str) -> list[str]:
    """Parse a CORS origins string, tolerating non-JSON formats.

    Some deploy CLIs strip inner quotes, turning valid JSON like
    ``["https://a.com"]`` into ``[https://a.com]``.  This handles:
    - Valid JSON arrays: ``["https://a.com","https://b.com"]``
    - Bracketed non-JSON: ``[https://a.com,https://b.com]``
    - Comma-separated: ``https://a.com,https://b.com``
    """
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(x) for x in parsed]
    except (json.JSONDecodeError, ValueError):
        pass

    stripped = raw.strip("[] ")
    return [s.strip().strip('"').strip("'") for s in stripped.split(",") if s.strip()]


class Settings(BaseSettings):
    """Pitwall API configuration.

    Values are loaded from environment variables, falling back to a ``.env``
    file in the project root.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # External APIs
    anthropic_api_key: str = ""

    # CORS: kept as a raw string so pydantic-settings doesn't JSON-parse it
    cors_origins_raw: str = '["http://localhost:3000","http://localhost:8501"]'

    # Race data
    results_csv_path: str = "sample_data/indianapolis_race1_results.csv"
    telemetry_csv_path: str = ""  # empty: generate synthetic telemetry
    telemetry_seed: int = 42
    total_laps: int = 23

    # Replay
    tick_interval_s: float = SIMULATION_TICK_S
    auto_strategy_every_laps: int = AUTO_STRATEGY_EVERY_LAPS

    # Debug mode
    debug: bool = False

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from the raw string."""
        return _parse_cors_origins(self.cors_origins_raw)
