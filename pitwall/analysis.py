"""Per-driver lap and sector statistics."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from pitwall.telemetry import TelemetrySample, TelemetryStore

# Laps slower than this multiple of the driver's median are treated as
# pit/incident laps and left out of consistency metrics.
ANOMALY_FACTOR = 1.15

SECTORS = ("sector1", "sector2", "sector3")


@dataclass
class SectorStats:
    """Best/mean/spread for one sector across a driver's clean laps."""

    sector: int
    best_s: float
    mean_s: float
    std_s: float


@dataclass
class DriverLapStats:
    """Lap-time and sector consistency summary for one car."""

    car_number: str
    n_laps: int
    best_lap: int
    best_lap_time_s: float
    mean_lap_time_s: float
    std_dev_s: float
    spread_s: float
    consistency_score: float  # 0-100
    theoretical_best_s: float
    sectors: list[SectorStats]
    anomalous_laps: list[int]

    @property
    def weakest_sector(self) -> int:
        """Sector number with the highest lap-to-lap variation."""
        return max(self.sectors, key=lambda s: s.std_s).sector


def find_anomalous_laps(samples: list[TelemetrySample] | tuple[TelemetrySample, ...]) -> set[int]:
    """Laps slower than ``ANOMALY_FACTOR`` times the median lap time."""
    if len(samples) < 3:
        return set()
    median = float(np.median([s.lap_time for s in samples]))
    return {s.lap for s in samples if s.lap_time > median * ANOMALY_FACTOR}


def _consistency_score(lap_times: list[float]) -> float:
    """Score consistency using exponential decay on normalised choppiness and spread."""
    if len(lap_times) < 2:
        return 100.0
    times = np.array(lap_times)
    mean_time = float(np.mean(times))
    deltas = np.abs(np.diff(times))
    choppiness_norm = float(np.mean(deltas)) / mean_time
    spread_norm = float(np.max(times) - np.min(times)) / mean_time
    jump_norm = float(np.max(deltas)) / mean_time

    choppiness_score = float(np.exp(-10.0 * choppiness_norm)) * 100.0
    spread_score = float(np.exp(-8.0 * spread_norm)) * 100.0
    jump_score = float(np.exp(-8.0 * jump_norm)) * 100.0

    raw = 0.4 * choppiness_score + 0.3 * spread_score + 0.3 * jump_score
    return round(float(np.clip(raw, 0.0, 100.0)), 1)


def compute_driver_stats(telemetry: TelemetryStore, car_number: str) -> DriverLapStats | None:
    """Summarise one car's laps. None if the car has no telemetry."""
    samples = telemetry.samples_for_car(car_number)
    if not samples:
        return None

    anomalous = find_anomalous_laps(samples)
    clean = [s for s in samples if s.lap not in anomalous] or list(samples)

    df = pd.DataFrame(
        {
            "lap": [s.lap for s in clean],
            "lap_time": [s.lap_time for s in clean],
            "sector1": [s.sector1 for s in clean],
            "sector2": [s.sector2 for s in clean],
            "sector3": [s.sector3 for s in clean],
        }
    )

    best_row = df.loc[df["lap_time"].idxmin()]
    sectors = [
        SectorStats(
            sector=i + 1,
            best_s=float(df[col].min()),
            mean_s=float(df[col].mean()),
            std_s=float(df[col].std(ddof=0)),
        )
        for i, col in enumerate(SECTORS)
    ]

    return DriverLapStats(
        car_number=car_number,
        n_laps=len(samples),
        best_lap=int(best_row["lap"]),
        best_lap_time_s=float(best_row["lap_time"]),
        mean_lap_time_s=float(df["lap_time"].mean()),
        std_dev_s=float(df["lap_time"].std(ddof=0)),
        spread_s=float(df["lap_time"].max() - df["lap_time"].min()),
        consistency_score=_consistency_score(df["lap_time"].tolist()),
        theoretical_best_s=sum(s.best_s for s in sectors),
        sectors=sectors,
        anomalous_laps=sorted(anomalous),
    )
