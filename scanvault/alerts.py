"""
alerts.py – Alerting när en uppladdning klassas som skadlig.

Skickar en JSON-payload till ALERT_WEBHOOK_URL (Slack/Teams/valfri webhook).
Utan URL är modulen en no-op.

Miljövariabler:
  ALERT_WEBHOOK_URL          – URL att POST:a JSON-payload till
  ALERT_WEBHOOK_TIMEOUT      – Timeout i sekunder (default 5)
  ALERT_ENV_NAME             – Miljönamn som visas i alertet (default "production")
"""

import asyncio
import logging
import os

import requests

logger = logging.getLogger("scanvault.alerts")

ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL", "").strip()
ALERT_WEBHOOK_TIMEOUT = float(os.getenv("ALERT_WEBHOOK_TIMEOUT", "5"))
ALERT_ENV_NAME = os.getenv("ALERT_ENV_NAME", "production")


def _build_payload(
    filename: str,
    sha256: str,
    reason: str,
    username: str,
    client_ip: str,
) -> dict:
    """Bygg en strukturerad payload för webhooken."""
    return {
        "env": ALERT_ENV_NAME,
        "event": "malicious_upload",
        "severity": "critical" if reason == "hash match" else "high",
        "filename": filename,
        "sha256": sha256,
        "reason": reason,
        "username": username,
        "client_ip": client_ip,
    }


def _send_webhook(payload: dict) -> None:
    """Synkron webhook-avsändning (körs i en tråd via asyncio.to_thread)."""
    if not ALERT_WEBHOOK_URL:
        return
    try:
        resp = requests.post(ALERT_WEBHOOK_URL, json=payload, timeout=ALERT_WEBHOOK_TIMEOUT)
        resp.raise_for_status()
        logger.info("Alert webhook delivered, status=%s", resp.status_code)
    except requests.RequestException as exc:
        logger.error("Alert webhook failed: %s", exc)


async def maybe_send_alert(
    filename: str,
    sha256: str,
    reason: str,
    username: str = "anonymous",
    client_ip: str = "unknown",
) -> None:
    """
    Anropas från scan-endpointen efter en skadlig klassning.
    Fel i alerting ska aldrig blockera scan-svaret.
    """
    logger.warning(
        "ALERT triggered: file=%s sha256=%s reason=%s user=%s ip=%s",
        filename, sha256, reason, username, client_ip,
    )
    if not ALERT_WEBHOOK_URL:
        return

    payload = _build_payload(
        filename=filename,
        sha256=sha256,
        reason=reason,
        username=username,
        client_ip=client_ip,
    )
    await asyncio.to_thread(_send_webhook, payload)
