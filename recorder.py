"""
ACLS code recorder runtime.

Owns one SessionState and funnels every change through the reducer:
- user actions arrive over the JSON API (or tests call dispatch directly)
- the code clock dispatches Tick once per second while the code is active
- accepted actions are snapshotted to STATE_FILE and published to the
  replication channel; the reducer never waits on either
- follow mode mirrors a remote session read-only
"""

from __future__ import annotations

from collections import deque
import json
import logging
import os
import signal
import threading
import time
import uuid
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Any

import action_builders as ab
import code_state as cs
import code_stats
import config
import counters as ct
import notifier
import report
import session_store
from code_clock import CodeClock
from code_model import RecorderConfig, SessionState


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def _now() -> float:
    return time.time()


def _recorder_cfg() -> RecorderConfig:
    return RecorderConfig(
        epinephrine_interval_sec=int(config.EPINEPHRINE_INTERVAL_SEC),
        cycle_target_sec=int(config.CYCLE_TARGET_SEC),
        cycle_warning_sec=int(config.CYCLE_WARNING_SEC),
        med_debounce_sec=max(0, int(config.MED_DEBOUNCE_MS)) / 1000.0,
        atropine_max_mg=float(config.ATROPINE_MAX_MG),
    )


# Input-screen forms accepted by POST /api/form.
FORM_BUILDERS = {
    "secure_airway": ab.secure_airway,
    "establish_vascular_access": ab.establish_vascular_access,
    "send_labs": ab.send_labs,
    "vital_signs": ab.vital_signs_note,
    "rule_out": ab.rule_out,
    "treating": ab.treating,
    "bedside_procedure": ab.bedside_procedure,
    "shock": ab.shock,
    "terminate": ab.terminate,
}


def build_form_action(body: dict):
    """
    Turn {"form": name, "fields": {...}} into an action.

    Returns None when the form produced nothing to log.  Raises
    ValueError for unknown forms or bad fields.
    """
    name = str(body.get("form") or "").strip()
    builder = FORM_BUILDERS.get(name)
    if builder is None:
        raise ValueError(f"unknown form: {name}")
    fields = body.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValueError("fields must be an object")
    try:
        return builder(**fields)
    except TypeError as exc:
        raise ValueError(f"invalid fields for {name}: {exc}") from exc


class RecorderRuntime:
    def __init__(self, session_id: str | None = None, follow: bool | None = None,
                 tick_interval_sec: float | None = None) -> None:
        self.lock = threading.RLock()
        self.started_at = _now()
        self.running = True
        self._stopped = False

        self.session_id = session_id or config.SESSION_ID or uuid.uuid4().hex[:12]
        self.follow = bool(config.FOLLOW_SESSION if follow is None else follow)
        self.cfg = _recorder_cfg()
        self.state = SessionState()

        self.advisories: deque[dict] = deque(maxlen=50)
        self.clock = CodeClock(self._tick, tick_interval_sec)
        self._unsubscribe = None

    # ------------------ Lifecycle ------------------

    def initialize(self) -> None:
        if self.follow:
            doc = session_store.load_session(self.session_id)
            if doc:
                self.apply_remote(doc)
            self._unsubscribe = session_store.subscribe(self.session_id, self.apply_remote)
            logger.info("Following session %s (read-only)", self.session_id)
        else:
            self.load_snapshot()
            session_store.start_writer_thread()
            self._publish()
            self.clock.sync(self.state.is_active)
            logger.info("Recording session %s (mode=%s)", self.session_id, self.state.mode)
        notifier.notify_startup(self.session_id, follow=self.follow)

    def shutdown(self, reason: str) -> None:
        with self.lock:
            if self._stopped:
                return
            self._stopped = True
            self.running = False
            if not self.follow:
                self._save_snapshot()
        self.clock.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        session_store.stop_writer_thread()
        notifier.notify_shutdown(reason, self.session_id)
        logger.info("Recorder stopped: %s", reason)

    # ------------------ Dispatch ------------------

    def dispatch(self, action: cs.Action, now: float | None = None) -> tuple[bool, str]:
        """
        Apply one action.  Returns (accepted, message).

        Reducer no-ops are accepted with message "ignored"; only follow
        mode refuses an action outright.
        """
        name = type(action).__name__
        if self.follow:
            logger.debug("Refused %s: session %s is read-only", name, self.session_id)
            return False, "read-only session"

        now = _now() if now is None else now
        with self.lock:
            before = self.state
            after, advisories = cs.transition(before, action, now, self.cfg)
            self.state = after
            changed = after != before

            if changed:
                if isinstance(action, cs.Tick):
                    logger.debug("Tick -> T+%s", ct.format_clock(after.elapsed_seconds))
                else:
                    logger.info("%s applied (entries=%d, mode=%s)", name, len(after.logs), after.mode)
                self._save_snapshot()
                self._publish()
            else:
                logger.debug("%s ignored", name)

            for adv in advisories:
                logger.warning("Advisory %s: %s", adv.kind, adv.message)
                self.advisories.append({"kind": adv.kind, "message": adv.message, "at": now})
            active = after.is_active

        for adv in advisories:
            notifier.notify_advisory(adv.message, self.session_id)
        if before.mode != "active" and after.mode == "active":
            notifier.notify_code_started(self.session_id, after.current_rhythm)
        if before.mode == "active" and after.mode == "ended":
            notifier.notify_code_ended(
                after.ended_reason or "", ct.format_clock(after.elapsed_seconds), self.session_id
            )

        # Outside the lock: stopping the clock joins its thread.
        self.clock.sync(active)
        return True, "applied" if changed else "ignored"

    def _tick(self) -> bool:
        self.dispatch(cs.Tick())
        with self.lock:
            return self.running and self.state.is_active

    # ------------------ Replication ------------------

    def _publish(self) -> None:
        session_store.publish(self.session_id, cs.to_dict(self.state))

    def apply_remote(self, doc: dict) -> bool:
        """Replace local state with a remote session document (last write wins)."""
        try:
            remote = cs.from_dict(doc)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed session document for %s: %s", self.session_id, e)
            return False
        with self.lock:
            self.state = remote
        logger.info("Session %s updated from remote (entries=%d)", self.session_id, len(remote.logs))
        return True

    # ------------------ Snapshot ------------------

    def _save_snapshot(self) -> None:
        path = config.STATE_FILE
        payload = {"session_id": self.session_id, "saved_at": _now(), "state": cs.to_dict(self.state)}
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp = path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, path)
        except OSError as e:
            logger.warning("Failed to write snapshot %s: %s", path, e)

    def load_snapshot(self) -> bool:
        path = config.STATE_FILE
        if not os.path.exists(path):
            logger.info("No snapshot at %s -- starting a fresh session", path)
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                snap = json.load(f)
            snap_session = str(snap.get("session_id") or "")
            if config.SESSION_ID and snap_session and snap_session != config.SESSION_ID:
                logger.info("Snapshot belongs to session %s -- ignoring", snap_session)
                return False
            state = cs.from_dict(snap["state"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Corrupt snapshot %s (%s) -- starting a fresh session", path, e)
            return False

        with self.lock:
            self.state = state
            if snap_session:
                self.session_id = snap_session
        for violation in cs.check_invariants(state):
            logger.warning("Snapshot invariant: %s", violation)
        logger.info("Restored session %s from snapshot (mode=%s, entries=%d)",
                    self.session_id, state.mode, len(state.logs))
        return True

    # ------------------ Views ------------------

    def status_payload(self) -> dict:
        with self.lock:
            st = self.state
            return {
                "session_id": self.session_id,
                "follow": self.follow,
                "uptime_sec": round(_now() - self.started_at, 1),
                "clock_running": self.clock.running,
                "state": cs.to_dict(st),
                "view": cs.status_view(st, self.cfg),
                "stats": code_stats.summarize(st),
                "advisories": list(self.advisories),
            }

    def report_text(self) -> str:
        with self.lock:
            st = self.state
        return report.render_text_report(st, cfg=self.cfg)

    def export(self, directory: str | None = None) -> dict:
        with self.lock:
            st = self.state
        return report.export_report(st, directory=directory, cfg=self.cfg)


_RUNTIME: RecorderRuntime | None = None


class ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True


class RecorderHandler(BaseHTTPRequestHandler):
    def log_message(self, fmt: str, *args: Any) -> None:  # noqa: D401
        logger.debug("HTTP %s - %s", self.address_string(), fmt % args)

    def _send_json(self, data: dict, code: int = 200) -> None:
        payload = json.dumps(data).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _send_text(self, text: str, code: int = 200) -> None:
        body = text.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json(self) -> dict:
        n = int(self.headers.get("Content-Length", "0") or "0")
        if n <= 0:
            return {}
        raw = self.rfile.read(n)
        try:
            body = json.loads(raw.decode("utf-8"))
        except Exception as exc:
            raise ValueError("invalid request body") from exc
        if not isinstance(body, dict):
            raise ValueError("invalid request body")
        return body

    def do_GET(self) -> None:  # noqa: N802
        if _RUNTIME is None:
            self._send_json({"error": "runtime not ready"}, 503)
            return
        try:
            if self.path.startswith("/api/status"):
                self._send_json(_RUNTIME.status_payload())
                return
            if self.path.startswith("/api/report"):
                self._send_text(_RUNTIME.report_text())
                return
            self._send_json({"error": "not found"}, 404)
        except Exception:
            logger.exception("Unhandled exception in GET %s", self.path)
            self._send_json({"error": "internal server error"}, 500)

    def do_POST(self) -> None:  # noqa: N802
        try:
            if not self.path.startswith(("/api/action", "/api/form", "/api/export")):
                self._send_json({"ok": False, "message": "not found"}, 404)
                return
            if _RUNTIME is None:
                self._send_json({"ok": False, "message": "runtime not ready"}, 503)
                return

            try:
                body = self._read_json()
            except ValueError:
                self._send_json({"ok": False, "message": "invalid request body"}, 400)
                return

            if self.path.startswith("/api/export"):
                paths = _RUNTIME.export()
                self._send_json({"ok": True, "message": "exported", "files": paths})
                return

            try:
                if self.path.startswith("/api/form"):
                    action = build_form_action(body)
                else:
                    action = cs.action_from_dict(body)
            except ValueError as e:
                self._send_json({"ok": False, "message": str(e)}, 400)
                return

            if action is None:
                self._send_json({"ok": True, "message": "nothing to log"})
                return

            ok, msg = _RUNTIME.dispatch(action)
            self._send_json({"ok": bool(ok), "message": str(msg)}, 200 if ok else 400)
        except Exception:
            logger.exception("Unhandled exception in POST %s", self.path)
            self._send_json({"ok": False, "message": "internal server error"}, 500)


def start_http_server() -> ThreadingHTTPServer | None:
    if config.HEALTH_PORT <= 0:
        return None
    server = ThreadingHTTPServer(("0.0.0.0", int(config.HEALTH_PORT)), RecorderHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True, name="recorder-http")
    thread.start()
    logger.info("HTTP API started on :%s", config.HEALTH_PORT)
    return server


def run() -> None:
    global _RUNTIME
    setup_logging()
    config.print_banner()

    rt = RecorderRuntime()
    _RUNTIME = rt

    def _handle_signal(signum, _frame):
        logger.info("Signal %s received", signum)
        rt.running = False

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGBREAK"):
        signal.signal(signal.SIGBREAK, _handle_signal)

    server = None
    try:
        rt.initialize()
        server = start_http_server()
        while rt.running:
            time.sleep(0.5)
    finally:
        if server is not None:
            server.shutdown()
        rt.shutdown("process exit")


if __name__ == "__main__":
    run()
