"""
code_state.py

Resuscitation code recorder state machine core.

Design goals:
- Pure reducer transitions: (state, action, now) -> (next_state, advisories)
- Wall-clock `now` is injected; nothing here reads a clock
- Every counter moves in lockstep with the log: adding an entry accounts
  it, retracting an entry reverses exactly that accounting
- One retract path shared by targeted removal and undo
- Unknown or out-of-phase actions return the state unchanged
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace

import counters as ct
from code_model import (
    ADRENALINE,
    AIRWAY_ANNOTATION,
    AIRWAY_LABEL,
    AMIODARONE,
    ATROPINE,
    CATEGORIES,
    CYCLE_CHECK_DETAIL,
    CYCLE_CHECK_LABEL,
    DECISION_LABEL,
    DRUGS,
    FIXED_DRUG_DETAIL,
    LABS_LABEL,
    MECH_OFF_DETAIL,
    MECH_OFF_LABEL,
    MECH_ON_DETAIL,
    MECH_ON_LABEL,
    MECH_TOKEN,
    RHYTHM_LABEL,
    RHYTHMS,
    ROSC_CHECKLIST_LABELS,
    SHOCK_LABEL,
    SKIPPED_SURVEY,
    START_LABEL,
    SURVEY_LABEL,
    VASCULAR_LABEL,
    Advisory,
    Category,
    Counters,
    Drug,
    Flags,
    LogEntry,
    PatientInfo,
    PreAssessment,
    RecorderConfig,
    Rhythm,
    SessionState,
)


DEFAULT_CONFIG = RecorderConfig()


# --------------------------- Actions ---------------------------


@dataclass(frozen=True)
class UpdatePreAssessment:
    field: str
    value: str


@dataclass(frozen=True)
class ProceedToStart:
    pass


@dataclass(frozen=True)
class UpdatePatient:
    field: str
    value: str


@dataclass(frozen=True)
class StartCode:
    rhythm: Rhythm | None


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class ResetCycle:
    pass


@dataclass(frozen=True)
class AddLog:
    category: Category
    label: str
    detail: str | None = None


@dataclass(frozen=True)
class AdministerMedication:
    drug: Drug


@dataclass(frozen=True)
class DeliverShock:
    energy_joules: int


@dataclass(frozen=True)
class SecureAirway:
    detail: str


@dataclass(frozen=True)
class EstablishVascularAccess:
    detail: str


@dataclass(frozen=True)
class SendLabs:
    detail: str


@dataclass(frozen=True)
class ToggleMechanicalCompression:
    pass


@dataclass(frozen=True)
class ChangeRhythm:
    rhythm: Rhythm


@dataclass(frozen=True)
class ToggleRoscChecklistItem:
    key: str


@dataclass(frozen=True)
class EndCode:
    reason: str = "Terminate Resuscitation"


@dataclass(frozen=True)
class RemoveLogEntry:
    entry_id: int


@dataclass(frozen=True)
class UndoLast:
    pass


Action = (
    UpdatePreAssessment
    | ProceedToStart
    | UpdatePatient
    | StartCode
    | Tick
    | ResetCycle
    | AddLog
    | AdministerMedication
    | DeliverShock
    | SecureAirway
    | EstablishVascularAccess
    | SendLabs
    | ToggleMechanicalCompression
    | ChangeRhythm
    | ToggleRoscChecklistItem
    | EndCode
    | RemoveLogEntry
    | UndoLast
)

# Wire names used by the HTTP API and replication payloads.
ACTION_TYPES: dict[str, type] = {
    "update_pre_assessment": UpdatePreAssessment,
    "proceed_to_start": ProceedToStart,
    "update_patient": UpdatePatient,
    "start_code": StartCode,
    "tick": Tick,
    "reset_cycle": ResetCycle,
    "add_log": AddLog,
    "administer_medication": AdministerMedication,
    "deliver_shock": DeliverShock,
    "secure_airway": SecureAirway,
    "establish_vascular_access": EstablishVascularAccess,
    "send_labs": SendLabs,
    "toggle_mechanical_compression": ToggleMechanicalCompression,
    "change_rhythm": ChangeRhythm,
    "toggle_rosc_checklist_item": ToggleRoscChecklistItem,
    "end_code": EndCode,
    "remove_log_entry": RemoveLogEntry,
    "undo_last": UndoLast,
}

_PRE_START_MODES = ("pre_assessment", "pending_start")
_PRE_ASSESSMENT_FIELDS = tuple(f.name for f in fields(PreAssessment))
_PATIENT_FIELDS = tuple(f.name for f in fields(PatientInfo))


# --------------------------- Helpers ---------------------------


def is_epinephrine_ready(state: SessionState, cfg: RecorderConfig = DEFAULT_CONFIG) -> bool:
    return ct.is_epinephrine_ready(state.elapsed_seconds, state.last_epinephrine_seconds, cfg)


def is_shockable(state: SessionState) -> bool:
    return ct.is_shockable(state.current_rhythm)


def find_entry(state: SessionState, entry_id: int) -> LogEntry | None:
    for entry in state.logs:
        if entry.id == entry_id:
            return entry
    return None


def survey_summary(pa: PreAssessment) -> str:
    """Concatenate whichever pre-assessment fields were filled in."""
    parts: list[str] = []
    if pa.general_impression:
        parts.append(f"General: {pa.general_impression}")
    if pa.avpu:
        parts.append(f"AVPU: {pa.avpu}")
    if pa.airway:
        parts.append(f"Airway: {pa.airway}")
    if pa.breathing_status:
        parts.append(f"Breathing: {pa.breathing_status}")
    if pa.spo2:
        parts.append(f"SpO2: {pa.spo2}%")
    if pa.rr:
        parts.append(f"RR: {pa.rr}")
    if pa.pulse:
        parts.append(f"Pulse: {pa.pulse}")
    if pa.bp_sys or pa.bp_dia:
        parts.append(f"BP: {pa.bp_sys or '-'}/{pa.bp_dia or '-'}")
    if pa.skin:
        parts.append(f"Skin: {pa.skin}")
    if pa.notes:
        parts.append(f"Notes: {pa.notes}")
    if not parts:
        return SKIPPED_SURVEY
    return "Survey: " + ", ".join(parts)


def _is_critical_presentation(pa: PreAssessment) -> bool:
    return pa.avpu == "U" and pa.breathing_status == "Apnea" and pa.pulse == "Absent"


def _new_entry(
    state: SessionState,
    category: Category,
    label: str,
    detail: str | None,
    now: float,
) -> tuple[SessionState, LogEntry]:
    entry = LogEntry(
        id=state.next_entry_id,
        sequence_seconds=state.elapsed_seconds,
        wall_clock=now,
        category=category,
        label=label,
        detail=detail,
    )
    return replace(state, next_entry_id=state.next_entry_id + 1), entry


def _account_entry(state: SessionState, entry: LogEntry, cfg: RecorderConfig) -> SessionState:
    """Apply the counter/flag effects implied by an entry's label."""
    c = state.counters
    f = state.flags
    last_epi = state.last_epinephrine_seconds

    if entry.label == SHOCK_LABEL:
        c = replace(c, shock_count=c.shock_count + 1)
    if ct.is_adrenaline_entry(entry):
        c = replace(c, epinephrine_doses=c.epinephrine_doses + 1)
        last_epi = entry.sequence_seconds
    if AMIODARONE in entry.label:
        c = replace(c, amiodarone_doses=c.amiodarone_doses + 1)
    if ATROPINE in entry.label:
        dose = ct.parse_dose_mg(entry.detail, cfg.atropine_increment_mg)
        c = replace(c, atropine_total_mg=c.atropine_total_mg + dose)
    if ct.is_airway_entry(entry):
        f = replace(f, airway_secured=True)
    if ct.is_vascular_entry(entry):
        f = replace(f, vascular_access=True)
    if ct.is_labs_entry(entry):
        f = replace(f, labs_sent=True)

    return replace(state, counters=c, flags=f, last_epinephrine_seconds=last_epi)


def _append(
    state: SessionState,
    category: Category,
    label: str,
    detail: str | None,
    now: float,
    cfg: RecorderConfig,
) -> SessionState:
    st, entry = _new_entry(state, category, label, detail, now)
    st = replace(st, logs=(entry,) + st.logs)
    return _account_entry(st, entry, cfg)


def _retract(state: SessionState, entry_id: int, cfg: RecorderConfig, flip_mechanical: bool = False) -> SessionState:
    """
    Remove one entry and restore the counters it contributed to.

    Counters that cannot simply be decremented (last adrenaline time,
    procedure flags) are rebuilt from the entries that remain.
    """
    entry = find_entry(state, entry_id)
    if entry is None:
        return state

    remaining = tuple(e for e in state.logs if e.id != entry_id)
    c = state.counters
    f = state.flags
    last_epi = state.last_epinephrine_seconds
    mechanical = state.mechanical_cpr

    if entry.label == SHOCK_LABEL:
        c = replace(c, shock_count=max(0, c.shock_count - 1))
    if ct.is_adrenaline_entry(entry):
        c = replace(c, epinephrine_doses=max(0, c.epinephrine_doses - 1))
        last_epi = ct.latest_adrenaline_seconds(remaining)
    if AMIODARONE in entry.label:
        # Surviving entries keep their original dose text.
        c = replace(c, amiodarone_doses=max(0, c.amiodarone_doses - 1))
    if ATROPINE in entry.label:
        dose = ct.parse_dose_mg(entry.detail, cfg.atropine_increment_mg)
        c = replace(c, atropine_total_mg=max(0.0, c.atropine_total_mg - dose))
    if ct.is_airway_entry(entry):
        f = replace(f, airway_secured=any(ct.is_airway_entry(e) for e in remaining))
    if ct.is_vascular_entry(entry):
        f = replace(f, vascular_access=any(ct.is_vascular_entry(e) for e in remaining))
    if ct.is_labs_entry(entry):
        f = replace(f, labs_sent=any(ct.is_labs_entry(e) for e in remaining))
    if flip_mechanical and MECH_TOKEN in entry.label:
        mechanical = not mechanical

    return replace(
        state,
        logs=remaining,
        counters=c,
        flags=f,
        last_epinephrine_seconds=last_epi,
        mechanical_cpr=mechanical,
    )


def _medication_detail(
    state: SessionState,
    drug: str,
    cfg: RecorderConfig,
) -> tuple[str, list[Advisory]]:
    advisories: list[Advisory] = []
    if drug == ADRENALINE:
        dose_index = state.counters.epinephrine_doses + 1
        return f"{ct.format_mg(cfg.epinephrine_dose_mg)} mg IV/IO Push (Dose {dose_index})", advisories
    if drug == AMIODARONE:
        dose_index = state.counters.amiodarone_doses + 1
        dose = ct.amiodarone_dose_mg(dose_index, cfg)
        return f"{dose} mg IV/IO Push (Dose {dose_index})", advisories
    if drug == ATROPINE:
        dose = cfg.atropine_increment_mg
        total = state.counters.atropine_total_mg
        if ct.atropine_exceeds_max(total, dose, cfg):
            advisories.append(
                Advisory("atropine_max", f"Total Atropine > {ct.format_mg(cfg.atropine_max_mg)} mg")
            )
        return f"{ct.format_mg(dose)} mg IV (Total: {ct.format_mg(total + dose)} mg)", advisories
    return FIXED_DRUG_DETAIL[drug], advisories


# --------------------------- Transition ---------------------------


def transition(
    state: SessionState,
    action: Action,
    now: float,
    cfg: RecorderConfig = DEFAULT_CONFIG,
) -> tuple[SessionState, list[Advisory]]:
    """
    Pure reducer for one action.

    `now` is wall-clock epoch seconds; it stamps new entries and keys the
    medication debounce. Clinical timing uses `elapsed_seconds` only.
    """
    advisories: list[Advisory] = []
    st = state

    if isinstance(action, Tick):
        if not st.is_active:
            return st, advisories
        cycle = st.cycle_elapsed_seconds + 1
        st = replace(
            st,
            elapsed_seconds=st.elapsed_seconds + 1,
            cycle_elapsed_seconds=cycle,
            compression_fraction=ct.compression_fraction(st.mechanical_cpr, cycle, cfg),
        )
        return st, advisories

    if isinstance(action, AdministerMedication):
        if action.drug not in DRUGS:
            return st, advisories
        if st.last_med_at is not None and now - st.last_med_at < cfg.med_debounce_sec:
            return st, advisories
        detail, advisories = _medication_detail(st, action.drug, cfg)
        st = _append(st, "medication", f"Given {action.drug}", detail, now, cfg)
        st = replace(st, last_med_at=now)
        return st, advisories

    if isinstance(action, AddLog):
        if action.category not in CATEGORIES or not action.label:
            return st, advisories
        return _append(st, action.category, action.label, action.detail, now, cfg), advisories

    if isinstance(action, ResetCycle):
        st = replace(st, cycle_elapsed_seconds=0)
        return _append(st, "procedure", CYCLE_CHECK_LABEL, CYCLE_CHECK_DETAIL, now, cfg), advisories

    if isinstance(action, DeliverShock):
        if not st.is_active or not is_shockable(st):
            return st, advisories
        return _append(st, "procedure", SHOCK_LABEL, f"{action.energy_joules}J", now, cfg), advisories

    if isinstance(action, SecureAirway):
        detail = f"{action.detail} {AIRWAY_ANNOTATION}".strip()
        return _append(st, "procedure", AIRWAY_LABEL, detail, now, cfg), advisories

    if isinstance(action, EstablishVascularAccess):
        return _append(st, "procedure", VASCULAR_LABEL, action.detail, now, cfg), advisories

    if isinstance(action, SendLabs):
        return _append(st, "lab", LABS_LABEL, action.detail, now, cfg), advisories

    if isinstance(action, ToggleMechanicalCompression):
        turning_on = not st.mechanical_cpr
        st = replace(
            st,
            mechanical_cpr=turning_on,
            compression_fraction=cfg.ccf_mechanical if turning_on else st.compression_fraction,
        )
        if turning_on:
            return _append(st, "procedure", MECH_ON_LABEL, MECH_ON_DETAIL, now, cfg), advisories
        return _append(st, "procedure", MECH_OFF_LABEL, MECH_OFF_DETAIL, now, cfg), advisories

    if isinstance(action, ChangeRhythm):
        if action.rhythm not in RHYTHMS:
            return st, advisories
        st = replace(st, current_rhythm=action.rhythm)
        return _append(st, "rhythm", RHYTHM_LABEL, f"New Rhythm: {action.rhythm}", now, cfg), advisories

    if isinstance(action, RemoveLogEntry):
        return _retract(st, action.entry_id, cfg), advisories

    if isinstance(action, UndoLast):
        if not st.logs:
            return st, advisories
        return _retract(st, st.logs[0].id, cfg, flip_mechanical=True), advisories

    if isinstance(action, StartCode):
        if st.mode not in _PRE_START_MODES:
            return st, advisories
        if action.rhythm is not None and action.rhythm not in RHYTHMS:
            return st, advisories
        st = replace(
            st,
            mode="active",
            is_active=True,
            started_at=now,
            elapsed_seconds=0,
            cycle_elapsed_seconds=0,
            current_rhythm=action.rhythm,
            compression_fraction=cfg.ccf_initial,
            counters=Counters(),
            flags=Flags(),
            last_epinephrine_seconds=None,
            logs=(),
        )
        st, survey = _new_entry(st, "survey", SURVEY_LABEL, survey_summary(st.pre_assessment), now)
        st, marker = _new_entry(st, "info", START_LABEL, f"Initial Rhythm: {action.rhythm or 'Unknown'}", now)
        return replace(st, logs=(marker, survey)), advisories

    if isinstance(action, EndCode):
        if st.mode != "active":
            return st, advisories
        st = replace(st, mode="ended", is_active=False, ended_reason=action.reason)
        return _append(st, "info", DECISION_LABEL, action.reason, now, cfg), advisories

    if isinstance(action, UpdatePreAssessment):
        if action.field not in _PRE_ASSESSMENT_FIELDS:
            return st, advisories
        value = "" if action.value is None else str(action.value).strip()
        pa = replace(st.pre_assessment, **{action.field: value})
        st = replace(st, pre_assessment=pa)
        if st.mode == "pre_assessment" and _is_critical_presentation(pa):
            st = replace(st, mode="pending_start")
        return st, advisories

    if isinstance(action, ProceedToStart):
        if st.mode != "pre_assessment":
            return st, advisories
        return replace(st, mode="pending_start"), advisories

    if isinstance(action, UpdatePatient):
        if action.field not in _PATIENT_FIELDS:
            return st, advisories
        value = "" if action.value is None else str(action.value).strip()
        return replace(st, patient=replace(st.patient, **{action.field: value})), advisories

    if isinstance(action, ToggleRoscChecklistItem):
        if action.key not in ROSC_CHECKLIST_LABELS:
            return st, advisories
        checklist = tuple((k, (not v) if k == action.key else v) for k, v in st.rosc_checklist)
        return replace(st, rosc_checklist=checklist), advisories

    return st, advisories


# --------------------------- Views ---------------------------


def status_view(state: SessionState, cfg: RecorderConfig = DEFAULT_CONFIG) -> dict:
    """Derived, read-only figures a front end renders next to the raw state."""
    shockable = is_shockable(state)
    amio_doses = state.counters.amiodarone_doses
    return {
        "elapsed_clock": ct.format_clock(state.elapsed_seconds),
        "cycle_clock": ct.format_clock(state.cycle_elapsed_seconds),
        "cycle_remaining_sec": ct.cycle_remaining(state.cycle_elapsed_seconds, cfg),
        "cycle_overdue": state.cycle_elapsed_seconds >= cfg.cycle_target_sec,
        "shockable": shockable,
        "epinephrine_ready": is_epinephrine_ready(state, cfg),
        "epinephrine_cooldown_sec": ct.epinephrine_cooldown_remaining(
            state.elapsed_seconds, state.last_epinephrine_seconds, cfg
        ),
        # The reducer permits further doses; the front end stops after two.
        "amiodarone_available": shockable and amio_doses < 2,
        "amiodarone_next_dose_mg": ct.amiodarone_dose_mg(amio_doses + 1, cfg),
        "atropine_total_mg": state.counters.atropine_total_mg,
    }


def check_invariants(state: SessionState) -> list[str]:
    """
    Consistency checker between the log and its derived state.
    """
    violations: list[str] = []

    if state.is_active != (state.mode == "active"):
        violations.append("is_active must be true iff mode is active")

    ids = [e.id for e in state.logs]
    if len(ids) != len(set(ids)):
        violations.append("duplicate log entry id")
    if ids and max(ids) >= state.next_entry_id:
        violations.append("next_entry_id must exceed every assigned id")

    seconds = [e.sequence_seconds for e in state.logs]
    if any(a < b for a, b in zip(seconds, seconds[1:])):
        violations.append("logs must be ordered most recent first")

    if state.counters.shock_count != ct.count_label(state.logs, SHOCK_LABEL):
        violations.append("shock_count out of sync with log")
    if state.counters.epinephrine_doses != sum(1 for e in state.logs if ct.is_adrenaline_entry(e)):
        violations.append("epinephrine_doses out of sync with log")
    if state.counters.amiodarone_doses != sum(1 for e in state.logs if AMIODARONE in e.label):
        violations.append("amiodarone_doses out of sync with log")
    if state.last_epinephrine_seconds != ct.latest_adrenaline_seconds(state.logs):
        violations.append("last_epinephrine_seconds out of sync with log")
    if state.counters.atropine_total_mg < 0:
        violations.append("atropine total must be >= 0")

    if state.flags.airway_secured != any(ct.is_airway_entry(e) for e in state.logs):
        violations.append("airway flag out of sync with log")
    if state.flags.vascular_access != any(ct.is_vascular_entry(e) for e in state.logs):
        violations.append("vascular access flag out of sync with log")
    if state.flags.labs_sent != any(ct.is_labs_entry(e) for e in state.logs):
        violations.append("labs flag out of sync with log")

    if not 0 <= state.compression_fraction <= 100:
        violations.append("compression fraction must be within 0..100")
    if state.elapsed_seconds < 0 or state.cycle_elapsed_seconds < 0:
        violations.append("clocks must be non-negative")

    return violations


# --------------------------- Serialization ---------------------------


def to_dict(state: SessionState) -> dict:
    return {
        "mode": state.mode,
        "is_active": state.is_active,
        "started_at": state.started_at,
        "elapsed_seconds": state.elapsed_seconds,
        "cycle_elapsed_seconds": state.cycle_elapsed_seconds,
        "current_rhythm": state.current_rhythm,
        "compression_fraction": state.compression_fraction,
        "mechanical_cpr": state.mechanical_cpr,
        "counters": dict(state.counters.__dict__),
        "flags": dict(state.flags.__dict__),
        "last_epinephrine_seconds": state.last_epinephrine_seconds,
        "last_med_at": state.last_med_at,
        "logs": [dict(e.__dict__) for e in state.logs],
        "next_entry_id": state.next_entry_id,
        "pre_assessment": dict(state.pre_assessment.__dict__),
        "patient": dict(state.patient.__dict__),
        "rosc_checklist": {k: v for k, v in state.rosc_checklist},
        "ended_reason": state.ended_reason,
    }


def from_dict(data: dict) -> SessionState:
    checklist_data = data.get("rosc_checklist") or {}
    logs = tuple(
        LogEntry(
            id=int(e["id"]),
            sequence_seconds=int(e.get("sequence_seconds", 0)),
            wall_clock=float(e.get("wall_clock", 0.0)),
            category=e.get("category", "info"),
            label=str(e.get("label", "")),
            detail=e.get("detail"),
        )
        for e in data.get("logs", [])
    )
    counters = data.get("counters") or {}
    flags = data.get("flags") or {}
    return SessionState(
        mode=data.get("mode", "pre_assessment"),
        is_active=bool(data.get("is_active", False)),
        started_at=data.get("started_at"),
        elapsed_seconds=int(data.get("elapsed_seconds", 0)),
        cycle_elapsed_seconds=int(data.get("cycle_elapsed_seconds", 0)),
        current_rhythm=data.get("current_rhythm"),
        compression_fraction=int(data.get("compression_fraction", 0)),
        mechanical_cpr=bool(data.get("mechanical_cpr", False)),
        counters=Counters(
            shock_count=int(counters.get("shock_count", 0)),
            epinephrine_doses=int(counters.get("epinephrine_doses", 0)),
            amiodarone_doses=int(counters.get("amiodarone_doses", 0)),
            atropine_total_mg=float(counters.get("atropine_total_mg", 0.0)),
        ),
        flags=Flags(
            airway_secured=bool(flags.get("airway_secured", False)),
            vascular_access=bool(flags.get("vascular_access", False)),
            labs_sent=bool(flags.get("labs_sent", False)),
        ),
        last_epinephrine_seconds=data.get("last_epinephrine_seconds"),
        last_med_at=data.get("last_med_at"),
        logs=logs,
        next_entry_id=int(data.get("next_entry_id", max((e.id for e in logs), default=0) + 1)),
        pre_assessment=PreAssessment(
            **{k: str(v) for k, v in (data.get("pre_assessment") or {}).items() if k in _PRE_ASSESSMENT_FIELDS}
        ),
        patient=PatientInfo(
            **{k: str(v) for k, v in (data.get("patient") or {}).items() if k in _PATIENT_FIELDS}
        ),
        rosc_checklist=tuple((k, bool(checklist_data.get(k, False))) for k in ROSC_CHECKLIST_LABELS),
        ended_reason=data.get("ended_reason"),
    )


def action_from_dict(data: dict) -> Action:
    """
    Build an Action from its wire form, e.g.
    {"type": "administer_medication", "drug": "Adrenaline"}.

    Raises ValueError for unknown types or malformed payloads.
    """
    if not isinstance(data, dict):
        raise ValueError("action must be an object")
    name = str(data.get("type") or "").strip()
    cls = ACTION_TYPES.get(name)
    if cls is None:
        raise ValueError(f"unknown action: {name}")

    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.type == "int":
            try:
                value = int(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name}.{f.name} must be an integer") from exc
        elif value is None:
            if "None" not in f.type:
                raise ValueError(f"{name}.{f.name} is required")
        elif not isinstance(value, str):
            # Every other action field is text or a text literal.
            raise ValueError(f"{name}.{f.name} must be a string")
        kwargs[f.name] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"invalid payload for {name}: {exc}") from exc
