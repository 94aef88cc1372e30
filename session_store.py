"""
session_store.py -- Live replication of code sessions through Supabase.

Every device following a code reads and writes one row keyed by an
opaque session id.  The row's `data` column holds the flat session
document; writers merge into it and the last write wins.

Nothing here raises into the recorder and nothing blocks the reducer:
  publish()    queue a payload; a daemon thread merges it over the
               remote document and upserts every SYNC_INTERVAL_SEC
  subscribe()  poll the row and hand the document to a callback each
               time updated_at moves
  load_session()  one-shot read

With SUPABASE_URL / SUPABASE_KEY unset all three are no-ops.

Table:
  create table code_sessions (
    session_id text primary key,
    data jsonb not null default '{}'::jsonb,
    updated_at double precision
  );
"""

import collections
import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request

import config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pending writes
# ---------------------------------------------------------------------------

# Oldest payloads are dropped past this many queued writes.
MAX_QUEUE_SIZE = 1000

# (session_id, payload) pairs in publish order.
_write_queue: collections.deque = collections.deque(maxlen=MAX_QUEUE_SIZE)

_writer_thread: threading.Thread = None
_writer_stop = threading.Event()

# Prefer header per request kind.
_PREFER = {
    "read": "return=representation",
    "write": "return=minimal",
    "upsert": "return=minimal, resolution=merge-duplicates",
}


def _enabled() -> bool:
    return bool(config.SUPABASE_URL and config.SUPABASE_KEY)


def _table_path() -> str:
    return f"/rest/v1/{config.SUPABASE_TABLE}"


def _headers(kind: str) -> dict:
    return {
        "apikey": config.SUPABASE_KEY,
        "Authorization": f"Bearer {config.SUPABASE_KEY}",
        "Content-Type": "application/json",
        "Prefer": _PREFER[kind],
        "User-Agent": "ACLSCodeRecorder/1.0",
    }


# ---------------------------------------------------------------------------
# PostgREST transport
# ---------------------------------------------------------------------------

def _request(method: str, path: str, body=None,
             params: dict = None, timeout: int = 10,
             upsert: bool = False):
    """
    One PostgREST call.

    GETs ask for the rows back; writes with upsert=True merge on the
    conflict key named in params["on_conflict"].

    Returns the decoded JSON reply ({} for an empty body), or None when
    Supabase is unconfigured or the call failed.
    """
    if not _enabled():
        return None

    query = "?" + urllib.parse.urlencode(params, doseq=True) if params else ""
    url = config.SUPABASE_URL.rstrip("/") + path + query
    kind = "read" if method == "GET" else ("upsert" if upsert else "write")
    payload = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=payload, headers=_headers(kind), method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")[:200]
        logger.warning("Supabase %s %s rejected (HTTP %d): %s", method, path, e.code, detail)
        return None
    except Exception as e:
        logger.warning("Supabase %s %s unreachable: %s", method, path, e)
        return None

    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.warning("Supabase %s %s returned bad JSON: %s", method, path, e)
        return None


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------

def _load_row(session_id: str):
    """
    Fetch the raw row for a session.

    Returns the row dict, {} when the session does not exist yet,
    or None when the request failed.
    """
    result = _request("GET", _table_path(), params={
        "session_id": f"eq.{session_id}",
        "select": "session_id,data,updated_at",
        "limit": "1",
    })
    if result is None:
        return None
    if isinstance(result, list) and result:
        row = result[0]
        return row if isinstance(row, dict) else {}
    return {}


def load_session(session_id: str) -> dict:
    """
    Load the full session document.

    Returns the document dict, or {} on failure / unknown session /
    Supabase not configured.
    """
    if not _enabled() or not session_id:
        return {}
    row = _load_row(session_id)
    if not row:
        if row is None:
            logger.warning("Supabase: failed to load session %s", session_id)
        return {}
    data = row.get("data") or {}
    if not isinstance(data, dict):
        return {}
    logger.info("Supabase: loaded session %s", session_id)
    return data


# ---------------------------------------------------------------------------
# Write operations (queue-based, non-blocking)
# ---------------------------------------------------------------------------

def publish(session_id: str, doc: dict):
    """Queue a merge-write of *doc* into the session document."""
    if not _enabled() or not session_id:
        return
    if not isinstance(doc, dict) or not doc:
        return
    _write_queue.append((session_id, dict(doc)))


def _flush_queue():
    """Flush all pending writes, one merged upsert per session."""
    if not _write_queue:
        return

    pending: dict = {}
    while _write_queue:
        try:
            session_id, payload = _write_queue.popleft()
        except IndexError:
            break
        pending.setdefault(session_id, {}).update(payload)

    for session_id, payload in pending.items():
        row = _load_row(session_id)
        if row is None:
            # Without the remote document a write could drop its fields.
            logger.debug("Supabase: deferring write for %s (read failed)", session_id)
            _write_queue.appendleft((session_id, payload))
            continue

        merged = dict(row.get("data") or {})
        merged.update(payload)
        result = _request(
            "POST", _table_path(),
            body={"session_id": session_id, "data": merged, "updated_at": time.time()},
            params={"on_conflict": "session_id"},
            upsert=True,
        )
        if result is None:
            logger.debug("Supabase: session upsert failed for %s", session_id)
            _write_queue.appendleft((session_id, payload))
        else:
            logger.debug("Supabase: synced session %s (%d fields)", session_id, len(payload))


# ---------------------------------------------------------------------------
# Background writer thread
# ---------------------------------------------------------------------------

def _writer_loop():
    """Background writer: flush queue every SYNC_INTERVAL_SEC."""
    logger.info("Supabase writer thread started")
    while not _writer_stop.is_set():
        try:
            _flush_queue()
        except Exception as e:
            logger.warning("Supabase writer error: %s", e)
        _writer_stop.wait(max(0.2, float(config.SYNC_INTERVAL_SEC)))

    # Final flush on shutdown
    try:
        _flush_queue()
    except Exception as e:
        logger.warning("Supabase final flush failed: %s", e)
    logger.info("Supabase writer thread stopped")


def start_writer_thread():
    """Start the background writer daemon thread."""
    global _writer_thread

    if not _enabled():
        logger.info("Supabase not configured -- replication disabled")
        return

    _writer_stop.clear()
    _writer_thread = threading.Thread(target=_writer_loop, daemon=True, name="supabase-writer")
    _writer_thread.start()
    logger.info("Supabase replication enabled (URL: %s...)", config.SUPABASE_URL[:40])


def stop_writer_thread(timeout: float = 5.0):
    """Signal the writer to do a final flush and wait for it."""
    global _writer_thread
    if _writer_thread is None:
        return
    _writer_stop.set()
    _writer_thread.join(timeout=timeout)
    _writer_thread = None


# ---------------------------------------------------------------------------
# Subscribe (polling)
# ---------------------------------------------------------------------------

def subscribe(session_id: str, on_update, interval_sec: float = None):
    """
    Poll a session and call on_update(doc) whenever it changes.

    Returns a zero-arg callable that stops the subscription.  When
    Supabase is not configured the returned callable does nothing.
    """
    stop = threading.Event()
    if not _enabled() or not session_id:
        return stop.set

    interval = max(0.2, float(interval_sec if interval_sec is not None else config.SUBSCRIBE_POLL_SEC))

    def _poll():
        last_seen = None
        while not stop.is_set():
            row = _load_row(session_id)
            if row:
                stamp = row.get("updated_at")
                if stamp != last_seen:
                    last_seen = stamp
                    data = row.get("data") or {}
                    try:
                        on_update(dict(data))
                    except Exception as e:
                        logger.warning("Session %s update handler failed: %s", session_id, e)
            stop.wait(interval)

    thread = threading.Thread(target=_poll, daemon=True, name=f"subscribe-{session_id}")
    thread.start()
    logger.info("Subscribed to session %s (every %.1fs)", session_id, interval)
    return stop.set
