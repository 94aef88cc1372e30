"""
action_builders.py -- Turn input-screen selections into reducer actions.

The recorder's forms (airway, vascular access, labs, vital signs, the
H's and T's checklist) only ever produce an action with a text payload.
These helpers build that payload the same way every front end should,
so the log reads identically whichever client recorded it.
"""

from __future__ import annotations

import code_state as cs


LAB_OPTIONS: tuple[str, ...] = ("DTX", "CBC", "Elyte", "BUN/Cr", "Hemo/Coag", "Trop-T", "Lactate", "ABG")

VENTILATION_METHODS: tuple[str, ...] = ("BVM", "Oxylator")

# Reversible causes of arrest: (group, id, label).
REVERSIBLE_CAUSES: tuple[tuple[str, str, str], ...] = (
    ("H", "Hypovolemia", "Hypovolemia"),
    ("H", "Hypoxia", "Hypoxia"),
    ("H", "Hydrogen", "Hydrogen Ion (Acidosis)"),
    ("H", "Hyperkalemia", "Hypo/Hyperkalemia"),
    ("H", "Hypothermia", "Hypothermia"),
    ("T", "TensionPneumo", "Tension Pneumothorax"),
    ("T", "Tamponade", "Tamponade, Cardiac"),
    ("T", "Toxins", "Toxins"),
    ("T", "ThrombosisPulm", "Thrombosis, Pulmonary"),
    ("T", "ThrombosisCoronary", "Thrombosis, Coronary"),
)

BEDSIDE_PROCEDURES: tuple[str, ...] = (
    "FAST Scan",
    "Needle Decompress",
    "ICD Placement",
    "Pericardiocentesis",
    "Consult MED",
    "Consult Sx",
)

DEFAULT_SHOCK_ENERGY_J = 200


def secure_airway(device: str = "ETT", tube_size: str = "7.5", depth_cm: str = "22",
                  ventilation: str = "BVM") -> cs.SecureAirway:
    if device == "ETT":
        detail = f"ETT No.{tube_size} dept.{depth_cm}cms via {ventilation}"
    else:
        detail = f"{device} via {ventilation}"
    return cs.SecureAirway(detail=detail)


def establish_vascular_access(site: str = "Peripheral IV", fluid: str = "NSS 0.9%",
                              rate: str = "Free Flow") -> cs.EstablishVascularAccess:
    return cs.EstablishVascularAccess(detail=f"{site} {fluid} ({rate})")


def send_labs(selected, dtx_value: str = "", custom: str = "") -> cs.SendLabs | None:
    """
    Build a SendLabs action from a lab checklist.

    DTX is listed last with its reading when one was entered.  Returns
    None when nothing was selected (no entry should be logged).  Raises
    ValueError unless *selected* is a list or tuple.
    """
    if not isinstance(selected, (list, tuple)):
        raise ValueError("selected must be a list of labs")
    selected = [str(lab) for lab in selected if lab]
    parts = []
    standard = [lab for lab in selected if lab != "DTX"]
    if standard:
        parts.append(", ".join(standard))
    if "DTX" in selected:
        parts.append(f"DTX: {dtx_value} mg%" if dtx_value else "DTX")
    custom = str(custom or "").strip()
    if custom:
        parts.append(custom)
    if not parts:
        return None
    return cs.SendLabs(detail=", ".join(parts))


def vital_signs_note(bp_sys: str = "", bp_dia: str = "", hr: str = "", rr: str = "",
                     spo2: str = "", note: str = "") -> cs.AddLog | None:
    parts = []
    if bp_sys or bp_dia:
        parts.append(f"BP: {bp_sys}/{bp_dia}")
    if hr:
        parts.append(f"HR: {hr}")
    if rr:
        parts.append(f"RR: {rr}")
    if spo2:
        parts.append(f"SpO2: {spo2}%")
    vitals = ", ".join(parts)

    if not vitals and not note:
        return None
    if not vitals:
        return cs.AddLog(category="info", label="Clinical Note", detail=note)
    detail = f"{vitals} | {note}" if note else vitals
    return cs.AddLog(category="info", label="Vital Signs", detail=detail)


def _cause_label(cause_id: str) -> str:
    for _group, cid, label in REVERSIBLE_CAUSES:
        if cid == cause_id:
            return label
    raise ValueError(f"unknown reversible cause: {cause_id}")


def rule_out(cause_id: str) -> cs.AddLog:
    return cs.AddLog(category="info", label=f"Rule Out {_cause_label(cause_id)}", detail="Diagnostic")


def treating(cause_id: str) -> cs.AddLog:
    return cs.AddLog(category="procedure", label=f"Treating {_cause_label(cause_id)}", detail="Therapeutic")


def bedside_procedure(name: str) -> cs.AddLog:
    if name not in BEDSIDE_PROCEDURES:
        raise ValueError(f"unknown procedure: {name}")
    return cs.AddLog(category="procedure", label=name)


def shock(energy_joules: int = DEFAULT_SHOCK_ENERGY_J) -> cs.DeliverShock:
    return cs.DeliverShock(energy_joules=int(energy_joules))


def terminate(reason: str = "Terminate Resuscitation") -> cs.EndCode:
    return cs.EndCode(reason=str(reason))
