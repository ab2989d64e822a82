"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from backend.api.dependencies import get_settings
from backend.api.routers import commentary, race, results
from backend.api.services import race_store
from backend.api.services.commentary_store import clear_all_commentary

logger = logging.getLogger(__name__)


def _load_race() -> bool:
    """Load the configured race into the in-memory store.

    Returns False (and leaves the store empty) if the data cannot be read;
    the race endpoints then answer 503 instead of the app failing to boot.
    """
    if not race_store.results_path_exists(settings):
        logger.warning("Results file %s not found, no race loaded", settings.results_csv_path)
        return False
    try:
        session = race_store.load_session(settings)
    except (OSError, ValueError):
        logger.exception("Failed to load race data")
        return False

    race_store.set_session(session)
    commentary.install_auto_strategy(session, settings.auto_strategy_every_laps)
    logger.info(
        "Race loaded: %d cars, %d laps",
        len(session.telemetry.car_numbers),
        session.telemetry.max_laps,
    )
    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set, AI commentary is disabled")

    # A race installed before startup (tests, embedding) is kept
    if race_store.get_session() is None:
        _load_race()

    yield

    # Shutdown: stop the replay timer and drop in-memory state
    race_store.clear_session()
    clear_all_commentary()


load_dotenv()  # Populate os.environ from .env before reading settings
settings = get_settings()

app = FastAPI(
    title="Pitwall API",
    description="Race replay, live standings and AI race strategy",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)


# -- Exception handlers --------------------------------------------------------


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs the full traceback server-side but returns a safe generic message
    to the client (no internal details leaked).
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Return 422 for ValueError (bad input data that passed validation)."""
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


# -- Middleware (order matters: last added = first executed) ------------------

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Routers -----------------------------------------------------------------

app.include_router(race.router, prefix="/api/race", tags=["race"])
app.include_router(results.router, prefix="/api/results", tags=["results"])
app.include_router(commentary.router, prefix="/api/commentary", tags=["commentary"])


# -- Health ------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Return a simple health-check response."""
    return {"status": "ok"}
