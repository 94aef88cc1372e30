"""
report.py -- CPCR record export.

Read-only consumer of the final SessionState.  Produces:
  - render_text_report(): the fixed-layout record form as plain text
  - write_csv_log():      the event table as CSV (oldest first)
  - export_report():      both files under REPORT_DIR

Any missing optional field renders as "-".
"""

import csv
import logging
import os
import time
from datetime import datetime

import code_stats
import config
import counters as ct
from code_model import ADRENALINE, ROSC_CHECKLIST_LABELS, SHOCK_LABEL, RecorderConfig, SessionState

logger = logging.getLogger(__name__)

PLACEHOLDER = "-"
TABLE_HEADER = ("Time", "T+ (min)", "Cat", "Action", "Detail")
WIDTH = 96


def _or_dash(value) -> str:
    if value is None:
        return PLACEHOLDER
    text = str(value).strip()
    return text or PLACEHOLDER


def format_wall_clock(ts: float) -> str:
    if not ts:
        return PLACEHOLDER
    return datetime.fromtimestamp(ts).strftime("%H:%M:%S")


def table_rows(state: SessionState) -> list:
    """Log rows oldest first: (wall time, offset, category, label, detail)."""
    rows = []
    for entry in reversed(state.logs):
        rows.append((
            format_wall_clock(entry.wall_clock),
            ct.format_clock(entry.sequence_seconds),
            entry.category.upper(),
            entry.label,
            _or_dash(entry.detail),
        ))
    return rows


def assessment_line(state: SessionState) -> str:
    pa = state.pre_assessment
    return (
        f"Initial Assessment: {_or_dash(pa.general_impression)}"
        f" | AVPU: {_or_dash(pa.avpu)}"
        f" | Airway: {_or_dash(pa.airway)}"
        f" | Breathing: {_or_dash(pa.breathing_status)} ({_or_dash(pa.spo2)}% / {_or_dash(pa.rr)}rpm)"
        f" | Circ: {_or_dash(pa.pulse)} ({_or_dash(pa.bp_sys)}/{_or_dash(pa.bp_dia)})"
    )


def summary_line(state: SessionState) -> str:
    epi = sum(1 for e in state.logs if ADRENALINE in e.label)
    shocks = sum(1 for e in state.logs if SHOCK_LABEL in e.label)
    return (
        f"Summary: Adrenaline x{epi} | Shock x{shocks}"
        f" | Duration: {ct.format_clock(state.elapsed_seconds)}"
    )


def medication_totals(state: SessionState, cfg: RecorderConfig = None) -> dict:
    cfg = cfg or RecorderConfig()
    c = state.counters
    return {
        "adrenaline_mg": c.epinephrine_doses * cfg.epinephrine_dose_mg,
        "amiodarone_mg": ct.amiodarone_total_mg(c.amiodarone_doses, cfg),
        "atropine_mg": c.atropine_total_mg,
    }


def _table_text(rows: list) -> list:
    widths = [len(h) for h in TABLE_HEADER]
    for row in rows:
        for i, cell in enumerate(row[:4]):
            widths[i] = max(widths[i], len(cell))
    fmt = "  ".join(f"{{:<{w}}}" for w in widths[:4]) + "  {}"
    lines = [fmt.format(*TABLE_HEADER)]
    lines.append("-" * min(WIDTH, sum(widths[:4]) + 8 + len(TABLE_HEADER[4])))
    for row in rows:
        lines.append(fmt.format(*row))
    if not rows:
        lines.append("(no entries)")
    return lines


def render_text_report(state: SessionState, generated_at: float = None,
                       cfg: RecorderConfig = None) -> str:
    generated_at = generated_at or time.time()
    p = state.patient
    totals = medication_totals(state, cfg)
    stats = code_stats.summarize(state)

    lines = [
        "CPCR RECORD FORM".center(WIDTH).rstrip(),
        f"Generated: {datetime.fromtimestamp(generated_at).strftime('%Y-%m-%d %H:%M:%S')}".center(WIDTH).rstrip(),
        "=" * WIDTH,
        f"HN: {_or_dash(p.hn)}  Name: {_or_dash(p.name)}",
        f"Age: {_or_dash(p.age)} | Wt: {_or_dash(p.weight)} kg",
        f"Leader: {_or_dash(p.leader_name)}",
        assessment_line(state),
        "=" * WIDTH,
        summary_line(state),
        "",
    ]
    lines += _table_text(table_rows(state))
    lines += [
        "",
        "Medication Summary:",
        f"- Adrenaline (Total): {ct.format_mg(totals['adrenaline_mg'])} mg",
        f"- Amiodarone: {totals['amiodarone_mg']} mg",
        f"- Atropine: {ct.format_mg(totals['atropine_mg'])} mg",
        "",
        "Final Airway Status:",
        "Advanced Airway Secured" if state.flags.airway_secured else "Basic / BVM",
    ]
    if state.ended_reason:
        lines += ["", f"Outcome: {state.ended_reason}"]

    ticked = [ROSC_CHECKLIST_LABELS[k] for k, v in state.rosc_checklist if v]
    if ticked:
        lines += ["", "Post-ROSC Checklist:"] + [f"[x] {label}" for label in ticked]

    epi_gap = stats["epinephrine_interval_sec"]
    check_gap = stats["pulse_check_interval_sec"]
    lines += [
        "",
        "Quality Metrics:",
        f"- Time to first shock: {code_stats.format_seconds(stats['time_to_first_shock_sec'])}",
        f"- Time to first adrenaline: {code_stats.format_seconds(stats['time_to_first_epinephrine_sec'])}",
        f"- Adrenaline interval (mean / max): {code_stats.format_seconds(epi_gap['mean'])}"
        f" / {code_stats.format_seconds(epi_gap['max'])}",
        f"- Pulse check interval (mean / max): {code_stats.format_seconds(check_gap['mean'])}"
        f" / {code_stats.format_seconds(check_gap['max'])}",
        "",
        "",
        " " * 56 + "_" * 36,
        " " * 60 + "Leader / Recorder Signature",
    ]
    return "\n".join(lines) + "\n"


def write_csv_log(state: SessionState, path: str) -> str:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(TABLE_HEADER)
        writer.writerows(table_rows(state))
    return path


def report_basename(state: SessionState) -> str:
    hn = (state.patient.hn or "Unknown").strip() or "Unknown"
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in hn)
    return f"ACLS_{safe}"


def export_report(state: SessionState, directory: str = None, cfg: RecorderConfig = None) -> dict:
    """Write the text report and CSV log; returns {"text": path, "csv": path}."""
    directory = directory or config.REPORT_DIR
    os.makedirs(directory, exist_ok=True)
    base = os.path.join(directory, report_basename(state))

    text_path = base + ".txt"
    with open(text_path, "w", encoding="utf-8") as f:
        f.write(render_text_report(state, cfg=cfg))
    csv_path = write_csv_log(state, base + ".csv")

    logger.info("Report exported: %s, %s", text_path, csv_path)
    return {"text": text_path, "csv": csv_path}
