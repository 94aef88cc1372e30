"""
counters.py

Derived counters for the code reducer.

Every helper here is pure: cooldown gates, the shockable-rhythm test,
dose arithmetic/formatting, and recounts over the remaining log used
when an entry is retracted.
"""

from __future__ import annotations

import re
from typing import Iterable

from code_model import (
    ADRENALINE,
    AIRWAY_LABEL,
    LABS_LABEL,
    SHOCKABLE_RHYTHMS,
    VASCULAR_LABEL,
    LogEntry,
    RecorderConfig,
)


_DOSE_RE = re.compile(r"([\d.]+) mg")


def is_shockable(rhythm: str | None) -> bool:
    return rhythm in SHOCKABLE_RHYTHMS


def is_epinephrine_ready(elapsed_seconds: int, last_epinephrine_seconds: int | None, cfg: RecorderConfig) -> bool:
    # Never given means ready, including a first dose at T+0.
    if last_epinephrine_seconds is None:
        return True
    return elapsed_seconds - last_epinephrine_seconds >= cfg.epinephrine_interval_sec


def epinephrine_cooldown_remaining(
    elapsed_seconds: int,
    last_epinephrine_seconds: int | None,
    cfg: RecorderConfig,
) -> int:
    if last_epinephrine_seconds is None:
        return 0
    return max(0, cfg.epinephrine_interval_sec - (elapsed_seconds - last_epinephrine_seconds))


def cycle_remaining(cycle_elapsed_seconds: int, cfg: RecorderConfig) -> int:
    """Seconds until the next pulse check; negative once overdue."""
    return cfg.cycle_target_sec - cycle_elapsed_seconds


def compression_fraction(mechanical_cpr: bool, cycle_elapsed_seconds: int, cfg: RecorderConfig) -> int:
    """
    Estimated chest compression fraction for the current cycle.

    Callers pass the cycle count after the tick that advanced it, so the
    warning value appears on the tick that reaches cycle_warning_sec + 1.
    The bedside app this recorder replaces tested the count before
    incrementing and so showed the drop one tick later.
    """
    ccf = cfg.ccf_mechanical if mechanical_cpr else cfg.ccf_nominal
    # The warning value wins in either mode once the cycle runs long.
    if cycle_elapsed_seconds > cfg.cycle_warning_sec:
        ccf = cfg.ccf_warning
    return ccf


def amiodarone_dose_mg(dose_index: int, cfg: RecorderConfig) -> int:
    """Dose for the n-th administration (1-based): 300 mg, then 150 mg."""
    return cfg.amiodarone_first_mg if dose_index <= 1 else cfg.amiodarone_repeat_mg


def amiodarone_total_mg(dose_count: int, cfg: RecorderConfig) -> int:
    if dose_count <= 0:
        return 0
    return cfg.amiodarone_first_mg + cfg.amiodarone_repeat_mg * (dose_count - 1)


def atropine_exceeds_max(total_mg: float, increment_mg: float, cfg: RecorderConfig) -> bool:
    return total_mg + increment_mg > cfg.atropine_max_mg


def format_mg(value: float) -> str:
    """1.0 -> '1', 0.5 -> '0.5'."""
    return f"{value:g}"


def parse_dose_mg(detail: str | None, default: float) -> float:
    if not detail:
        return default
    match = _DOSE_RE.search(detail)
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


def format_clock(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


# --------------------------- Log recounts ---------------------------


def is_adrenaline_entry(entry: LogEntry) -> bool:
    return ADRENALINE in entry.label


def is_airway_entry(entry: LogEntry) -> bool:
    return AIRWAY_LABEL in entry.label


def is_vascular_entry(entry: LogEntry) -> bool:
    return entry.label == VASCULAR_LABEL


def is_labs_entry(entry: LogEntry) -> bool:
    return entry.label == LABS_LABEL


def latest_adrenaline_seconds(logs: Iterable[LogEntry]) -> int | None:
    """sequence_seconds of the most recent adrenaline entry; logs are newest-first."""
    for entry in logs:
        if is_adrenaline_entry(entry):
            return entry.sequence_seconds
    return None


def count_label(logs: Iterable[LogEntry], label: str) -> int:
    return sum(1 for entry in logs if entry.label == label)
