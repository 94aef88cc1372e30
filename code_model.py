"""
code_model.py

Data model for the resuscitation event logger.

Everything here is an immutable value:
- SessionState is the aggregate root for one code event
- LogEntry rows are never edited, only removed whole
- RecorderConfig carries the clinical timing constants
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Rhythm = Literal["VF", "pVT", "Asystole", "PEA", "ROSC"]
Mode = Literal["pre_assessment", "pending_start", "active", "ended"]
Category = Literal["medication", "procedure", "rhythm", "info", "lab", "survey"]
Drug = Literal[
    "Adrenaline",
    "Amiodarone",
    "Atropine",
    "Dopamine",
    "Magnesium Sulfate",
    "Sodium Bicarbonate",
    "Calcium Gluconate",
    "Lidocaine",
]

RHYTHMS: tuple[str, ...] = ("VF", "pVT", "Asystole", "PEA", "ROSC")
SHOCKABLE_RHYTHMS: tuple[str, ...] = ("VF", "pVT")
CATEGORIES: tuple[str, ...] = ("medication", "procedure", "rhythm", "info", "lab", "survey")

# --------------------------- Canonical labels ---------------------------

SHOCK_LABEL = "Defibrillation"
START_LABEL = "STARTED CODE BLUE"
SURVEY_LABEL = "Primary Survey"
CYCLE_CHECK_LABEL = "Cycle Check (2 Min)"
CYCLE_CHECK_DETAIL = "Pulse Check / Rotate Compressor"
AIRWAY_LABEL = "Advanced Airway Secured"
AIRWAY_ANNOTATION = "(Continuous CPR)"
VASCULAR_LABEL = "Vascular Access"
LABS_LABEL = "Labs / Specimen"
RHYTHM_LABEL = "Rhythm Change"
MECH_ON_LABEL = "Start Auto CPR"
MECH_OFF_LABEL = "Stop Auto CPR"
MECH_ON_DETAIL = "Mechanical Compression ON"
MECH_OFF_DETAIL = "Switch to Manual CPR"
MECH_TOKEN = "Auto CPR"
DECISION_LABEL = "DECISION"
SKIPPED_SURVEY = "Assessment skipped"

ADRENALINE = "Adrenaline"
AMIODARONE = "Amiodarone"
ATROPINE = "Atropine"

# Fixed dosing text for drugs without a counter effect.
FIXED_DRUG_DETAIL: dict[str, str] = {
    "Dopamine": "Start Infusion (Titrate)",
    "Magnesium Sulfate": "2 g IV Slow Push (Diluted)",
    "Sodium Bicarbonate": "50 mEq IV Push",
    "Calcium Gluconate": "10% 10ml IV Slow Push",
    "Lidocaine": "1-1.5 mg/kg IV",
}

DRUGS: tuple[str, ...] = (ADRENALINE, AMIODARONE, ATROPINE) + tuple(FIXED_DRUG_DETAIL)

ROSC_CHECKLIST_LABELS: dict[str, str] = {
    "Airway": "Airway : early ETT placement, recheck ETT",
    "Breathing": "Breathing : RR 10/min, SpO2 92-98%, PaCO2 35-45",
    "Circulation": "Circulation : SBP > 90, MAP > 65",
    "Diagnosis": "Diagnosis : 5H 5T",
    "ECG": "ECG 12 leads : PCI if STEMI, ECMO",
    "Commands": "Follow commands? : if not TTM, EEG, CT",
    "ICU": "Consider ICU admission",
}


@dataclass(frozen=True)
class RecorderConfig:
    epinephrine_interval_sec: int = 180
    cycle_target_sec: int = 120
    cycle_warning_sec: int = 115
    med_debounce_sec: float = 0.5
    epinephrine_dose_mg: float = 1.0
    amiodarone_first_mg: int = 300
    amiodarone_repeat_mg: int = 150
    atropine_increment_mg: float = 0.5
    atropine_max_mg: float = 3.0
    ccf_initial: int = 100
    ccf_mechanical: int = 100
    ccf_nominal: int = 98
    ccf_warning: int = 85


@dataclass(frozen=True)
class LogEntry:
    id: int
    sequence_seconds: int
    wall_clock: float
    category: Category
    label: str
    detail: str | None = None


@dataclass(frozen=True)
class PreAssessment:
    general_impression: str = ""
    avpu: str = ""
    airway: str = ""
    breathing_status: str = ""
    spo2: str = ""
    rr: str = ""
    pulse: str = ""
    bp_sys: str = ""
    bp_dia: str = ""
    skin: str = ""
    notes: str = ""


@dataclass(frozen=True)
class PatientInfo:
    hn: str = ""
    name: str = ""
    age: str = ""
    weight: str = ""
    leader_name: str = ""


@dataclass(frozen=True)
class Counters:
    shock_count: int = 0
    epinephrine_doses: int = 0
    amiodarone_doses: int = 0
    atropine_total_mg: float = 0.0


@dataclass(frozen=True)
class Flags:
    airway_secured: bool = False
    vascular_access: bool = False
    labs_sent: bool = False


def _default_checklist() -> tuple[tuple[str, bool], ...]:
    return tuple((key, False) for key in ROSC_CHECKLIST_LABELS)


@dataclass(frozen=True)
class SessionState:
    mode: Mode = "pre_assessment"
    is_active: bool = False
    started_at: float | None = None
    elapsed_seconds: int = 0
    cycle_elapsed_seconds: int = 0
    current_rhythm: Rhythm | None = None
    compression_fraction: int = 0
    mechanical_cpr: bool = False
    counters: Counters = field(default_factory=Counters)
    flags: Flags = field(default_factory=Flags)
    last_epinephrine_seconds: int | None = None
    last_med_at: float | None = None
    # Most recent first.
    logs: tuple[LogEntry, ...] = ()
    next_entry_id: int = 1
    pre_assessment: PreAssessment = field(default_factory=PreAssessment)
    patient: PatientInfo = field(default_factory=PatientInfo)
    rosc_checklist: tuple[tuple[str, bool], ...] = field(default_factory=_default_checklist)
    ended_reason: str | None = None


@dataclass(frozen=True)
class Advisory:
    kind: str
    message: str
