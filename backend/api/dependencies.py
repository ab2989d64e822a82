"""FastAPI dependency injection functions."""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from backend.api.config import Settings
from backend.api.services import race_store
from backend.api.services.race_store import RaceSession


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings."""
    return Settings()


def get_race() -> RaceSession:
    """Return the loaded race, or 503 if startup could not load one."""
    session = race_store.get_session()
    if session is None:
        raise HTTPException(status_code=503, detail="No race loaded")
    return session
