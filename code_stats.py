"""
code_stats.py

Resuscitation quality metrics computed over a finished (or running) log.
Pure numpy; every metric degrades to None when the log lacks the data.
"""

from __future__ import annotations

from typing import Any

import numpy as np

import counters as ct
from code_model import CATEGORIES, CYCLE_CHECK_LABEL, SHOCK_LABEL, SessionState


def _times(state: SessionState, predicate) -> np.ndarray:
    """Oldest-first sequence_seconds of entries matching predicate."""
    arr = np.asarray(
        [e.sequence_seconds for e in state.logs if predicate(e)],
        dtype=float,
    )
    return np.sort(arr)


def _interval_stats(times: np.ndarray) -> dict[str, float | None]:
    if times.size < 2:
        return {"mean": None, "min": None, "max": None}
    gaps = np.diff(times)
    return {
        "mean": round(float(np.mean(gaps)), 1),
        "min": float(np.min(gaps)),
        "max": float(np.max(gaps)),
    }


def _first(times: np.ndarray) -> float | None:
    if times.size == 0:
        return None
    return float(times[0])


def summarize(state: SessionState) -> dict[str, Any]:
    """
    Build the quality block printed in the report footer.

    Intervals are measured in code time (seconds since start).
    """
    epi = _times(state, ct.is_adrenaline_entry)
    shocks = _times(state, lambda e: e.label == SHOCK_LABEL)
    checks = _times(state, lambda e: e.label == CYCLE_CHECK_LABEL)

    # Pulse-check spacing counts the code start as the first boundary.
    if checks.size:
        checks = np.concatenate(([0.0], checks))

    categories = np.asarray([e.category for e in state.logs], dtype=object)
    per_category = {cat: int(np.count_nonzero(categories == cat)) for cat in CATEGORIES}

    return {
        "duration_sec": int(state.elapsed_seconds),
        "time_to_first_shock_sec": _first(shocks),
        "time_to_first_epinephrine_sec": _first(epi),
        "epinephrine_interval_sec": _interval_stats(epi),
        "pulse_check_interval_sec": _interval_stats(checks),
        "entries_per_category": per_category,
    }


def format_seconds(value: float | None) -> str:
    if value is None:
        return "-"
    return ct.format_clock(int(round(value)))
