"""Plotly chart builders for the race dashboard."""

from __future__ import annotations

import plotly.graph_objects as go

from pitwall.projector import RaceState
from pitwall.results import RaceResult
from pitwall.standings import TRACK_OUTLINE, map_lap_distance, sort_by_position, track_position
from pitwall.telemetry import TelemetryStore


def _car_color(idx: int) -> str:
    """Return a color from a fixed palette for per-car traces."""
    palette = [
        "#636EFA",
        "#EF553B",
        "#00CC96",
        "#AB63FA",
        "#FFA15A",
        "#19D3F3",
        "#FF6692",
        "#B6E880",
        "#FF97FF",
        "#FECB52",
    ]
    return palette[idx % len(palette)]


def lap_times_chart(telemetry: TelemetryStore, car_number: str) -> go.Figure:
    """Stacked sector bars per lap for one car, best lap highlighted."""
    samples = telemetry.samples_for_car(car_number)
    fig = go.Figure()
    if not samples:
        fig.update_layout(title=f"Car #{car_number}: no laps")
        return fig

    labels = [f"L{s.lap}" for s in samples]
    for name, attr, color in (
        ("S1", "sector1", "#636EFA"),
        ("S2", "sector2", "#00CC96"),
        ("S3", "sector3", "#AB63FA"),
    ):
        fig.add_trace(
            go.Bar(x=labels, y=[getattr(s, attr) for s in samples], name=name, marker_color=color)
        )

    best = min(samples, key=lambda s: s.lap_time)
    fig.add_trace(
        go.Scatter(
            x=labels,
            y=[s.lap_time for s in samples],
            mode="lines+markers",
            name="Lap time",
            line={"color": "#FFA15A"},
        )
    )
    fig.add_annotation(
        x=f"L{best.lap}",
        y=best.lap_time,
        text=f"Best {best.lap_time:.3f}s",
        showarrow=True,
        arrowhead=2,
    )
    fig.update_layout(
        title=f"Car #{car_number} Lap & Sector Times",
        xaxis_title="Lap",
        yaxis_title="Time (s)",
        barmode="stack",
        height=400,
    )
    return fig


def positions_chart(telemetry: TelemetryStore, up_to_lap: int | None = None) -> go.Figure:
    """Position of every car by lap, P1 at the top."""
    fig = go.Figure()
    for idx, car in enumerate(telemetry.car_numbers):
        samples = [
            s for s in telemetry.samples_for_car(car) if up_to_lap is None or s.lap <= up_to_lap
        ]
        fig.add_trace(
            go.Scatter(
                x=[s.lap for s in samples],
                y=[s.position for s in samples],
                mode="lines+markers",
                name=f"#{car}",
                line={"color": _car_color(idx)},
            )
        )
    fig.update_layout(
        title="Positions by Lap",
        xaxis_title="Lap",
        yaxis_title="Position",
        yaxis={"autorange": "reversed", "dtick": 1},
        height=400,
    )
    return fig


def fastest_lap_chart(deltas: list[tuple[RaceResult, float]]) -> go.Figure:
    """Horizontal bars of each driver's fastest-lap delta to the winner's."""
    labels = [f"#{r.number} {r.driver_short_name or r.driver_second_name}" for r, _ in deltas]
    values = [d for _, d in deltas]
    colors = ["#00CC96" if d <= 0 else "#EF553B" for d in values]

    fig = go.Figure(
        go.Bar(
            x=values,
            y=labels,
            orientation="h",
            marker_color=colors,
            text=[f"{d:+.3f}s" for d in values],
            textposition="outside",
        )
    )
    fig.update_layout(
        title="Fastest Lap vs Winner",
        xaxis_title="Delta (s)",
        yaxis={"autorange": "reversed"},
        showlegend=False,
        height=400,
    )
    return fig


def track_map_chart(race_state: RaceState, selected_car: str | None = None) -> go.Figure:
    """Circuit outline with a marker per car at its lap-distance position."""
    xs = [p[0] for p in TRACK_OUTLINE]
    ys = [p[1] for p in TRACK_OUTLINE]
    fig = go.Figure(
        go.Scatter(
            x=xs,
            y=ys,
            mode="lines",
            line={"color": "#555", "width": 8},
            hoverinfo="skip",
            showlegend=False,
        )
    )

    for idx, car in enumerate(sort_by_position(race_state)):
        x, y = track_position(map_lap_distance(car))
        selected = car.car_number == selected_car
        fig.add_trace(
            go.Scatter(
                x=[x],
                y=[y],
                mode="markers+text",
                marker={
                    "size": 18 if selected else 12,
                    "color": _car_color(idx),
                    "line": {"color": "white", "width": 3 if selected else 1},
                },
                text=[car.car_number],
                textposition="middle center",
                name=f"P{car.position} #{car.car_number}",
                hovertemplate=f"#{car.car_number} {car.driver_short_name}<br>P{car.position}"
                "<extra></extra>",
            )
        )

    fig.update_layout(
        title=f"Track Map: Lap {race_state.lap}",
        xaxis={"visible": False},
        # SVG coordinates grow downwards
        yaxis={"visible": False, "autorange": "reversed", "scaleanchor": "x"},
        height=350,
        margin={"l": 10, "r": 10, "t": 40, "b": 10},
    )
    return fig
