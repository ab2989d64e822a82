"""Tests for pitwall.charts."""

from __future__ import annotations

import plotly.graph_objects as go

from pitwall.charts import (
    fastest_lap_chart,
    lap_times_chart,
    positions_chart,
    track_map_chart,
)
from pitwall.projector import RaceProjector, RaceState
from pitwall.results import ResultsStore
from pitwall.telemetry import TelemetryStore


class TestLapTimesChart:
    def test_returns_figure(self, telemetry: TelemetryStore) -> None:
        fig = lap_times_chart(telemetry, "1")
        assert isinstance(fig, go.Figure)
        # S1, S2, S3 bars plus the lap time line
        assert len(fig.data) == 4
        assert fig.layout.barmode == "stack"

    def test_best_lap_annotated(self, telemetry: TelemetryStore) -> None:
        fig = lap_times_chart(telemetry, "1")
        assert fig.layout.annotations[0].x == "L3"
        assert "99.500" in fig.layout.annotations[0].text

    def test_unknown_car(self, telemetry: TelemetryStore) -> None:
        fig = lap_times_chart(telemetry, "404")
        assert len(fig.data) == 0
        assert "no laps" in fig.layout.title.text


class TestPositionsChart:
    def test_one_trace_per_car(self, telemetry: TelemetryStore) -> None:
        fig = positions_chart(telemetry)
        assert [t.name for t in fig.data] == ["#1", "#2"]
        assert list(fig.data[0].y) == [1, 2, 1]
        assert fig.layout.yaxis.autorange == "reversed"

    def test_up_to_lap(self, telemetry: TelemetryStore) -> None:
        fig = positions_chart(telemetry, up_to_lap=2)
        assert list(fig.data[1].x) == [1, 2]


class TestFastestLapChart:
    def test_bars_and_labels(self, results: ResultsStore) -> None:
        fig = fastest_lap_chart(results.fastest_lap_deltas())
        bar = fig.data[0]
        assert bar.orientation == "h"
        assert list(bar.y) == ["#1 LOV", "#2 TUR"]
        assert list(bar.text) == ["+0.000s", "+0.500s"]

    def test_empty(self) -> None:
        fig = fastest_lap_chart([])
        assert len(fig.data[0].x) == 0


class TestTrackMapChart:
    def test_outline_plus_one_marker_per_car(self, projector: RaceProjector) -> None:
        fig = track_map_chart(projector.project(2), selected_car="1")
        assert len(fig.data) == 3
        assert fig.data[0].mode == "lines"
        assert fig.layout.title.text == "Track Map: Lap 2"

    def test_selected_car_marker_larger(self, projector: RaceProjector) -> None:
        fig = track_map_chart(projector.project(2), selected_car="1")
        markers = {t.text[0]: t.marker.size for t in fig.data[1:]}
        assert markers["1"] > markers["2"]

    def test_empty_race_state(self) -> None:
        fig = track_map_chart(RaceState(1))
        assert len(fig.data) == 1
