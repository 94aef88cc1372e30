"""
config.py -- All tunable parameters for the code recorder.

Every value here is loaded from environment variables so you can configure
a bedside or kiosk install (or a local .env file) without touching code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you raise/lower it
    3. The default and why it was chosen
"""

import os
import logging

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Integrations  (NEVER hard-code these -- always use env vars)
# ---------------------------------------------------------------------------

# Telegram bot token (from @BotFather) and the team chat ID.
# Used for code-start / code-end notices and clinical advisories.
TELEGRAM_BOT_TOKEN: str = _env("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID: str = _env("TELEGRAM_CHAT_ID", "")

# Supabase (PostgREST) -- replication channel for live session documents.
# If not set, the recorder runs fine with the local snapshot file only.
SUPABASE_URL: str = _env("SUPABASE_URL", "")
SUPABASE_KEY: str = _env("SUPABASE_KEY", "")

# Table holding one row per session: (session_id pk, data jsonb, updated_at).
SUPABASE_TABLE: str = _env("SUPABASE_TABLE", "code_sessions")

# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

# Opaque identifier shared by every device following the same code.
# Empty = generate a fresh one at startup.
SESSION_ID: str = _env("SESSION_ID", "")

# When True this process is a read-only viewer of SESSION_ID:
# it mirrors the remote document and refuses local actions.
FOLLOW_SESSION: bool = _env("FOLLOW_SESSION", False, bool)

# ---------------------------------------------------------------------------
# Clinical timing
# ---------------------------------------------------------------------------

# Minimum spacing between adrenaline doses (seconds of code time).
# ACLS recommends every 3-5 minutes; 180 marks the earliest next dose.
EPINEPHRINE_INTERVAL_SEC: int = _env("EPINEPHRINE_INTERVAL_SEC", 180, int)

# Target length of one CPR cycle before a pulse/rhythm check.
CYCLE_TARGET_SEC: int = _env("CYCLE_TARGET_SEC", 120, int)

# Past this point in a cycle the compression fraction estimate drops to
# its warning value.  A few seconds before CYCLE_TARGET_SEC so the team
# gets an early nudge.
CYCLE_WARNING_SEC: int = _env("CYCLE_WARNING_SEC", 115, int)

# Double-tap guard for medication buttons, in milliseconds of real time.
# Raising it: fewer accidental double doses, but slower deliberate repeats.
MED_DEBOUNCE_MS: int = _env("MED_DEBOUNCE_MS", 500, int)

# Cumulative atropine above this raises a (non-blocking) advisory.
ATROPINE_MAX_MG: float = _env("ATROPINE_MAX_MG", 3.0, float)

# A warning threshold at or past the target would never fire before the
# pulse check is due.
if CYCLE_WARNING_SEC >= CYCLE_TARGET_SEC:
    logging.getLogger("config").warning(
        "Clamping CYCLE_WARNING_SEC=%d below CYCLE_TARGET_SEC=%d", CYCLE_WARNING_SEC, CYCLE_TARGET_SEC
    )
    CYCLE_WARNING_SEC = max(0, CYCLE_TARGET_SEC - 5)

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

# Real seconds between clock ticks.  Each tick counts as exactly one
# second of code time, so leave this at 1 outside of demos.
TICK_INTERVAL_SEC: float = _env("TICK_INTERVAL_SEC", 1.0, float)

# How often the replication writer flushes queued session documents.
# Every accepted action (and every tick) queues one; only the newest
# per session is sent.
SYNC_INTERVAL_SEC: float = _env("SYNC_INTERVAL_SEC", 2.0, float)

# Poll interval used by follow mode to pick up remote changes.
SUBSCRIBE_POLL_SEC: float = _env("SUBSCRIBE_POLL_SEC", 2.0, float)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Python log level.  DEBUG shows ignored actions and every sync; INFO is
# normal operations.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")

# Directory for the state snapshot.  Relative to the working directory.
LOG_DIR: str = _env("LOG_DIR", "logs")

# State snapshot file for resuming a code across restarts.
STATE_FILE: str = _env("STATE_FILE", os.path.join(LOG_DIR, "state.json"))

# Where exported reports (text + CSV) are written.
REPORT_DIR: str = _env("REPORT_DIR", "reports")

# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

# Port for the JSON API (status, actions, report).  Set to 0 to disable.
HEALTH_PORT: int = _env("PORT", _env("HEALTH_PORT", 8080, int), int)


def print_banner():
    """Print a startup summary so operators can verify the configuration."""
    mode = "FOLLOW (read-only)" if FOLLOW_SESSION else "RECORDER"
    lines = [
        "",
        "=" * 60,
        "  ACLS CODE RECORDER",
        "=" * 60,
        f"  Mode:            {mode}",
        f"  Session:         {SESSION_ID or '(new)'}",
        f"  Adrenaline gap:  {EPINEPHRINE_INTERVAL_SEC}s",
        f"  Cycle target:    {CYCLE_TARGET_SEC}s (warn after {CYCLE_WARNING_SEC}s)",
        f"  Med debounce:    {MED_DEBOUNCE_MS}ms",
        f"  Atropine max:    {ATROPINE_MAX_MG:g} mg (advisory)",
        f"  Tick interval:   {TICK_INTERVAL_SEC:g}s",
        f"  HTTP port:       {HEALTH_PORT}",
        f"  Log level:       {LOG_LEVEL}",
        f"  State file:      {STATE_FILE}",
        f"  Telegram:        {'configured' if TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID else 'NOT SET'}",
        f"  Supabase:        {'configured' if SUPABASE_URL and SUPABASE_KEY else 'NOT SET'}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
