from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from . import settings

logger = logging.getLogger(__name__)

BOOKING_CONFIRMED = "booking_confirmed"
SESSION_CANCELLED = "session_cancelled"
BOOKING_CANCELLED = "booking_cancelled"


def send_notification(kind: str, payload: Dict[str, Any]) -> bool:
    """
    Deliver a member-facing notification to the configured webhook.

    Returns True when the webhook accepted it. Without GYMDESK_NOTIFY_URL the
    notification is only logged. Delivery failures are logged and reported
    as False so the admin action that triggered them still goes through.
    """
    if not settings.NOTIFY_URL:
        logger.info("notification %s (no webhook configured): %s", kind, payload)
        return False

    body = {"kind": kind, "payload": payload}
    try:
        with httpx.Client(timeout=settings.NOTIFY_TIMEOUT_S) as client:
            r = client.post(settings.NOTIFY_URL, json=body)
            r.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("notification %s to %s failed: %s", kind, settings.NOTIFY_URL, exc)
        return False
    return True
