"""Shared constants for the pitwall replay engine.

Centralises timing values, sentinels and race-rule numbers used across
multiple modules.
"""

from __future__ import annotations

# Autoplay period: one lap advance per tick
SIMULATION_TICK_S: float = 0.5

# Identity fallback for cars missing from the results table
NOT_AVAILABLE: str = "N/A"

# Race rules fed to the strategy prompts
PIT_STOP_LOSS_S: float = 25.0
TIRE_DEGRADATION_LAPS: tuple[int, int] = (15, 18)
PIT_WINDOW_LAPS: tuple[int, int] = (9, 14)
LOW_FUEL_PCT: float = 15.0
NEW_TIRE_ADVANTAGE_S: float = 1.5

# Strategy recommendation cadence while the replay is playing
AUTO_STRATEGY_EVERY_LAPS: int = 3

TRACK_NAME: str = "Indianapolis Motor Speedway"
