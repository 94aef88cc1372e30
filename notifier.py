"""
notifier.py -- Telegram alerts for the code team.

Messages go to one team chat:
  - recorder started / stopped, with the session id to follow
  - code started, with the initial rhythm
  - clinical advisories from the reducer (atropine ceiling)
  - code ended, with the decision and total duration

Configure TELEGRAM_BOT_TOKEN (from @BotFather) and TELEGRAM_CHAT_ID.
Without them every notify_* call is a logged no-op that returns False.

Transport is a JSON POST to the Bot API with urllib.request; nothing here
raises into the recorder.
"""

import html
import json
import logging
import urllib.error
import urllib.request

import config

logger = logging.getLogger(__name__)

API_ROOT = "https://api.telegram.org"
REQUEST_TIMEOUT_SEC = 10


def _api_url(method: str) -> str:
    return f"{API_ROOT}/bot{config.TELEGRAM_BOT_TOKEN}/{method}"


def _telegram_api(method: str, payload: dict) -> dict:
    """
    POST *payload* to a Bot API method.

    Returns the decoded reply when Telegram answers ok=true, else {}.
    HTTP errors, timeouts and bad replies are logged at WARNING.
    """
    if not config.TELEGRAM_BOT_TOKEN:
        logger.debug("Telegram token not set, dropping %s", method)
        return {}

    req = urllib.request.Request(
        _api_url(method),
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", "User-Agent": "ACLSCodeRecorder/1.0"},
    )
    try:
        with urllib.request.urlopen(req, timeout=REQUEST_TIMEOUT_SEC) as resp:
            reply = json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")[:200]
        logger.warning("Telegram %s rejected (HTTP %d): %s", method, e.code, detail)
        return {}
    except Exception as e:
        logger.warning("Telegram %s unreachable: %s", method, e)
        return {}

    if not isinstance(reply, dict) or not reply.get("ok"):
        logger.warning("Telegram %s answered without ok: %s", method, reply)
        return {}
    return reply


def _send_message(text: str) -> bool:
    """Send HTML *text* to the team chat; True when Telegram accepted it."""
    chat_id = config.TELEGRAM_CHAT_ID
    if not chat_id:
        logger.debug("Telegram chat not set, message dropped")
        return False
    reply = _telegram_api("sendMessage", {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    })
    return bool(reply)


def _session_tag(session_id: str) -> str:
    return f" <code>{html.escape(session_id)}</code>" if session_id else ""


# ---------------------------------------------------------------------------
# One sender per team-facing event
# ---------------------------------------------------------------------------

def notify_startup(session_id: str, follow: bool = False) -> bool:
    """Send startup notification with the session being recorded or followed."""
    mode = "FOLLOW (read-only)" if follow else "RECORDING"
    text = (
        f"🩺 <b>Code Recorder Started</b>{_session_tag(session_id)}\n\n"
        f"Mode: {mode}\n"
        f"Adrenaline interval: {config.EPINEPHRINE_INTERVAL_SEC}s\n"
        f"CPR cycle: {config.CYCLE_TARGET_SEC}s"
    )
    return _send_message(text)


def notify_shutdown(reason: str = "Manual", session_id: str = "") -> bool:
    text = f"🛑 <b>Code Recorder Stopped</b>{_session_tag(session_id)}\n\nReason: {html.escape(reason)}"
    return _send_message(text)


def notify_code_started(session_id: str, rhythm) -> bool:
    text = (
        f"🚨 <b>CODE BLUE</b>{_session_tag(session_id)}\n\n"
        f"Initial rhythm: {html.escape(rhythm or 'Unknown')}"
    )
    return _send_message(text)


def notify_advisory(message: str, session_id: str = "") -> bool:
    text = f"⚠️ <b>Advisory</b>{_session_tag(session_id)}\n\n{html.escape(message)}"
    return _send_message(text)


def notify_code_ended(reason: str, duration: str, session_id: str = "") -> bool:
    """Send the decision that closed the code with its total duration."""
    text = (
        f"🏁 <b>Code Ended</b>{_session_tag(session_id)}\n\n"
        f"Decision: {html.escape(reason)}\n"
        f"Duration: {duration}"
    )
    return _send_message(text)

