import logging
from typing import Optional

import requests

log = logging.getLogger(__name__)

DISCORD_LIMIT = 2000  # Discord message hard limit


def _truncate_for_discord(text: str, limit: int = DISCORD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 20] + "\n… (truncated)"


def format_abort(origin: str, error: BaseException) -> str:
    """Alert text for a run stopped by a fatal pull error."""
    lines = [f"❗️ **Porter pull aborted**: `{origin}`", f"- Reason: {error}"]
    ledger = getattr(error, "ledger", None) or []
    for entry in ledger:
        lines.append(f"- HTTP {entry.get('code')}: {str(entry.get('message', ''))[:200]}")
    return "\n".join(lines)


def send_discord_alert(message: str, webhook_url: str, username: Optional[str] = "Porter Sync Alert",
                       avatar_url: Optional[str] = None) -> bool:
    """
    Post `message` to a Discord webhook. Never raises; returns True when Discord accepted it.
    Discord answers 204 unless the webhook URL ends in '?wait=true' (then 200).
    """
    if not webhook_url:
        log.warning("No Discord webhook URL configured, skipping alert.")
        return False

    payload = {
        "content": _truncate_for_discord(message),
        "username": username,
    }
    if avatar_url:
        payload["avatar_url"] = avatar_url

    try:
        response = requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        log.exception("Exception while sending Discord alert: %s", e)
        return False

    if response.status_code in (200, 204):
        log.info("Discord alert sent successfully (status %s).", response.status_code)
        return True
    log.error("Failed to send Discord alert: status=%s body=%s", response.status_code, response.text)
    return False
