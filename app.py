"""Pitwall: race replay dashboard with live standings and AI race strategy."""

from __future__ import annotations

import glob
import os
import time
from concurrent.futures import ThreadPoolExecutor

import pandas as pd
import streamlit as st

from pitwall.analysis import compute_driver_stats
from pitwall.charts import fastest_lap_chart, lap_times_chart, positions_chart, track_map_chart
from pitwall.commentary import (
    CommentaryContext,
    StrategyOutcome,
    StrategyWorker,
    WhatIfScenario,
    ask_race_question,
    generate_driver_analysis,
    generate_head_to_head,
    generate_history_analysis,
    run_what_if_simulation,
)
from pitwall.constants import AUTO_STRATEGY_EVERY_LAPS, TRACK_NAME
from pitwall.generator import DEFAULT_TOTAL_LAPS, generate_telemetry
from pitwall.projector import RaceProjector
from pitwall.results import ResultsStore, parse_results_csv
from pitwall.simulation import SimulationController
from pitwall.standings import default_selection, leaderboard, telemetry_gauges
from pitwall.telemetry import TelemetryStore, parse_telemetry_csv
from pitwall.topic_guardrail import (
    INPUT_TOO_LONG_RESPONSE,
    OFF_TOPIC_RESPONSE,
    RaceRoster,
    classify_topic,
)

st.set_page_config(page_title="Pitwall", page_icon="🏁", layout="wide")

st.title("Pitwall")
st.caption(f"Race replay & AI strategy · {TRACK_NAME}")

has_key = bool(os.environ.get("ANTHROPIC_API_KEY"))


# ---------------------------------------------------------------------------
# Data loading
# ---------------------------------------------------------------------------
def _find_results_files() -> list[str]:
    """Find classification exports shipped with the repo."""
    return sorted(glob.glob("sample_data/*results*.csv"))


@st.cache_resource(show_spinner="Loading results...")
def cached_results(path: str) -> ResultsStore:
    return parse_results_csv(path)


@st.cache_resource(show_spinner="Generating telemetry...")
def cached_generated_telemetry(total_laps: int, seed: int) -> TelemetryStore:
    return generate_telemetry(total_laps=total_laps, seed=seed)


@st.cache_resource(show_spinner="Loading telemetry...")
def cached_uploaded_telemetry(file_id: str, _source: object) -> TelemetryStore:
    return parse_telemetry_csv(_source)  # type: ignore[arg-type]


@st.cache_resource
def strategy_executor() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=4, thread_name_prefix="strategy")


st.sidebar.header("Race")

results_files = _find_results_files()
if not results_files:
    st.info("Add a semicolon-delimited results export under sample_data/ to get started.")
    st.stop()
results_path = st.sidebar.selectbox("Results file", results_files)

telemetry_upload = st.sidebar.file_uploader("Telemetry CSV (optional)", type=["csv"])
if telemetry_upload is None:
    total_laps = int(
        st.sidebar.number_input("Laps", min_value=1, max_value=100, value=DEFAULT_TOTAL_LAPS)
    )
    seed = int(st.sidebar.number_input("Seed", min_value=0, value=42))

try:
    results = cached_results(results_path)
    if telemetry_upload is not None:
        data_key = f"{results_path}|upload:{telemetry_upload.file_id}"
        telemetry = cached_uploaded_telemetry(telemetry_upload.file_id, telemetry_upload)
    else:
        data_key = f"{results_path}|gen:{total_laps}:{seed}"
        telemetry = cached_generated_telemetry(total_laps, seed)
except ValueError as exc:
    st.error(f"Failed to load race data: {exc}")
    st.stop()

# One controller per data source, kept across reruns
if st.session_state.get("data_key") != data_key:
    st.session_state["data_key"] = data_key
    st.session_state["controller"] = SimulationController(RaceProjector(telemetry, results))
    st.session_state["selected_car"] = None
    st.session_state["strategy"] = None
    st.session_state["strategy_worker"] = StrategyWorker(strategy_executor())
    st.session_state["last_playback"] = None
    st.session_state["chat_context"] = CommentaryContext()

controller: SimulationController = st.session_state["controller"]
strategy_worker: StrategyWorker = st.session_state["strategy_worker"]

# ---------------------------------------------------------------------------
# Playback controls
# ---------------------------------------------------------------------------
st.sidebar.markdown("---")
st.sidebar.subheader("Replay")
col_play, col_reset = st.sidebar.columns(2)
if controller.is_playing:
    if col_play.button("Pause", use_container_width=True):
        controller.pause()
elif col_play.button("Play", use_container_width=True):
    controller.play()
if col_reset.button("Reset", use_container_width=True):
    controller.reset()


def _on_seek() -> None:
    controller.go_to_lap(st.session_state["seek_lap"])


st.session_state["seek_lap"] = controller.lap
st.sidebar.slider(
    "Lap",
    min_value=1,
    max_value=max(controller.max_laps, 2),
    key="seek_lap",
    on_change=_on_seek,
    disabled=controller.max_laps < 2,
)
st.sidebar.markdown(f"**Lap**: {controller.lap} / {controller.max_laps}")
st.sidebar.markdown(f"**Status**: {'Playing' if controller.is_playing else 'Paused'}")
if not has_key:
    st.sidebar.warning("Set ANTHROPIC_API_KEY to enable AI commentary.")

race_state = controller.race_state
selected_car = default_selection(race_state, st.session_state.get("selected_car"))

# A lap or play-state change since the previous rerun; widget reruns leave it unchanged
playback = (controller.lap, controller.is_playing)
playback_changed = st.session_state["last_playback"] != playback
st.session_state["last_playback"] = playback


def _fmt_time(t: float) -> str:
    m = int(t // 60)
    s = t % 60
    return f"{m}:{s:06.3f}"


def _submit_strategy(car_number: str) -> None:
    car = race_state.get(car_number)
    if car is not None:
        strategy_worker.submit(car, controller.max_laps)


# Strategy calls run on a worker thread; pick up a finished one on this rerun
outcome = strategy_worker.poll()
if outcome is not None:
    st.session_state["strategy"] = outcome


# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------
tab_live, tab_whatif, tab_driver, tab_history = st.tabs(
    ["Live Dashboard", "What-If Simulator", "Driver Analysis", "Race History"]
)

# --- Live Dashboard Tab ---
with tab_live:
    col_board, col_map = st.columns([3, 2])

    with col_board:
        st.subheader(f"Leaderboard · Lap {controller.lap}/{controller.max_laps}")
        rows = leaderboard(race_state, selected_car)
        df_board = pd.DataFrame(
            {
                "Pos": [r.position for r in rows],
                "Car": [f"#{r.car_number}" for r in rows],
                "Driver": [r.driver_short_name or r.driver_full_name for r in rows],
                "Team": [r.team for r in rows],
                "Time / Gap": [r.timing for r in rows],
                "Interval": [r.interval for r in rows],
                "Tires": [r.tire_age for r in rows],
            }
        )
        st.dataframe(df_board, use_container_width=True, hide_index=True)

    with col_map:
        st.plotly_chart(track_map_chart(race_state, selected_car), use_container_width=True)

    car_numbers = [c.car_number for c in sorted(race_state.values(), key=lambda c: c.position)]
    if car_numbers and selected_car is not None:
        chosen = st.selectbox(
            "Selected car",
            car_numbers,
            index=car_numbers.index(selected_car),
            format_func=lambda n: f"#{n} {race_state[n].driver_full_name}",
        )
        st.session_state["selected_car"] = chosen
        car = race_state[chosen]

        st.subheader(f"Telemetry · #{car.car_number} {car.driver_full_name}")
        gauge_cols = st.columns(3)
        for idx, gauge in enumerate(telemetry_gauges(car)):
            with gauge_cols[idx % 3]:
                st.caption(f"{gauge.label}: {gauge.value:.0f} {gauge.unit}")
                st.progress(gauge.fraction)
        st.caption(
            f"Gear {car.gear} · Last lap {_fmt_time(car.lap_time)} · "
            f"S1 {car.sector1:.3f} · S2 {car.sector2:.3f} · S3 {car.sector3:.3f}"
        )

        # Strategy: on demand, and every few laps while the replay is playing
        auto_due = (
            playback_changed
            and controller.is_playing
            and controller.lap % AUTO_STRATEGY_EVERY_LAPS == 0
        )
        if has_key and auto_due:
            _submit_strategy(chosen)

        if st.button("Get Strategy Recommendation", disabled=not has_key):
            _submit_strategy(chosen)

        if strategy_worker.pending_car is not None:
            st.caption(f"Strategist is thinking about car #{strategy_worker.pending_car}...")

        strategy: StrategyOutcome | None = st.session_state.get("strategy")
        if strategy is not None and strategy.car_number == chosen:
            rec = strategy.recommendation
            if rec is None:
                st.error(f"Strategy unavailable: {strategy.error}")
            else:
                message = (
                    f"**{rec.label}** ({rec.confidence:.0f}% confidence, lap {strategy.lap})"
                    f"\n\n{rec.reasoning}"
                )
                if rec.color.value == "red":
                    st.error(message)
                elif rec.color.value == "yellow":
                    st.warning(message)
                else:
                    st.success(message)

    # Race Q&A
    st.markdown("---")
    st.subheader("Ask the Strategist")
    ctx: CommentaryContext = st.session_state["chat_context"]
    question = st.chat_input("Ask about the race, a driver, or strategy...")
    if question:
        roster = RaceRoster.from_race(results, telemetry.car_numbers)
        classification = classify_topic(question, roster)
        if not classification.on_topic:
            answer = (
                INPUT_TOO_LONG_RESPONSE
                if classification.source == "too_long"
                else OFF_TOPIC_RESPONSE
            )
            st.chat_message("assistant").write(answer)
        else:
            with st.spinner("Thinking..."):
                ask_race_question(ctx, question, controller.snapshot())
    for msg in ctx.messages:
        if msg["role"] == "user":
            # The stored user turn carries the race snapshot; show only the question
            st.chat_message("user").write(msg["content"].rsplit("## Question\n", 1)[-1])
        else:
            st.chat_message("assistant").write(msg["content"])

# --- What-If Tab ---
with tab_whatif:
    st.subheader("What-If Simulator")
    whatif_car = st.selectbox("Car", telemetry.car_numbers, key="whatif_car")
    decision_lap = st.slider("Decision lap", 1, max(telemetry.max_laps, 2), 1, key="whatif_lap")
    action = st.radio("Alternate action", ["Pit Now", "Stay Out"], horizontal=True)

    result = results.get(whatif_car)
    samples = telemetry.samples_for_car(whatif_car)
    original_finish = result.position if result is not None else samples[-1].position
    st.caption(f"Original finish: P{original_finish}")

    if st.button("Simulate", disabled=not has_key):
        scenario = WhatIfScenario(
            car_number=whatif_car,
            decision_lap=decision_lap,
            action=action,
            original_finish=original_finish,
        )
        with st.spinner("Simulating alternate race..."):
            st.markdown(run_what_if_simulation(scenario, telemetry))

# --- Driver Analysis Tab ---
with tab_driver:
    driver_car = st.selectbox("Driver", telemetry.car_numbers, key="driver_car")
    stats = compute_driver_stats(telemetry, driver_car)
    if stats is None:
        st.info("No data available for this driver.")
    else:
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Best Lap", _fmt_time(stats.best_lap_time_s), f"L{stats.best_lap}")
        c2.metric("Average", _fmt_time(stats.mean_lap_time_s))
        c3.metric("Theoretical Best", _fmt_time(stats.theoretical_best_s))
        c4.metric("Consistency", f"{stats.consistency_score:.0f}/100")
        if stats.anomalous_laps:
            st.caption(
                "Excluded pit/incident laps: "
                + ", ".join(f"L{n}" for n in stats.anomalous_laps)
            )

        st.plotly_chart(lap_times_chart(telemetry, driver_car), use_container_width=True)

        if st.button("Generate Coaching Analysis", disabled=not has_key):
            with st.spinner("Coach is reviewing the laps..."):
                st.markdown(generate_driver_analysis(driver_car, telemetry))

    st.plotly_chart(positions_chart(telemetry, controller.lap), use_container_width=True)

    st.subheader("Head-to-Head")
    others = [n for n in telemetry.car_numbers if n != driver_car]
    if others:
        rival = st.selectbox("Rival", others, key="rival_car")
        if st.button("Compare", disabled=not has_key):
            with st.spinner("Analyzing the battle..."):
                st.markdown(generate_head_to_head(driver_car, rival, telemetry, race_state))

# --- Race History Tab ---
with tab_history:
    st.subheader("Final Classification")
    df_results = pd.DataFrame(
        {
            "Pos": [r.position for r in results],
            "Car": [f"#{r.number}" for r in results],
            "Driver": [r.driver_full_name for r in results],
            "Team": [r.team for r in results],
            "Laps": [r.laps for r in results],
            "Gap": [r.gap_first for r in results],
            "Fastest Lap": [r.fastest_lap_time for r in results],
        }
    )
    st.dataframe(df_results, use_container_width=True, hide_index=True)
    st.plotly_chart(fastest_lap_chart(results.fastest_lap_deltas()), use_container_width=True)

    if st.button("Analyze Race", disabled=not has_key):
        with st.spinner("Analyzing the race..."):
            st.markdown(generate_history_analysis(list(results)))

# ---------------------------------------------------------------------------
# Autoplay: the script thread has no event loop, so advance one lap per rerun
# ---------------------------------------------------------------------------
if controller.is_playing:
    time.sleep(controller.tick_interval_s)
    controller.tick()
    st.rerun()
elif strategy_worker.pending_car is not None:
    # Paused with a strategy call in flight: poll until it lands
    time.sleep(controller.tick_interval_s)
    st.rerun()
