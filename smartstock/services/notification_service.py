import logging

import httpx

from smartstock.config import settings
from smartstock.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


def _build_payload(subject: str, html: str, recipient: str) -> dict:
    return {
        "from": settings.EMAIL_FROM,
        "to": [recipient],
        "subject": subject,
        "html": html,
    }


async def _deliver(payload: dict) -> None:
    headers = {"Authorization": f"Bearer {settings.EMAIL_API_KEY}"}
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(settings.EMAIL_API_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise NotificationDeliveryError(f"E-mail API unreachable: {e}") from e
    if not resp.is_success:
        raise NotificationDeliveryError(f"E-mail API answered {resp.status_code}: {resp.text[:200]}")


async def send_email(subject: str, html: str, recipient: str | None = None) -> bool:
    """Fire-and-forget e-mail. Returns whether it was handed off; never raises."""
    to = recipient or settings.INVENTORY_ALERT_EMAIL
    if not settings.EMAIL_API_KEY:
        logger.warning("EMAIL_API_KEY not configured, dropping notification: %s", subject)
        return False

    try:
        await _deliver(_build_payload(subject, html, to))
    except NotificationDeliveryError as e:
        logger.error(f"Notification '{subject}' to {to} failed: {e}")
        return False

    logger.info("Notification sent to %s: %s", to, subject)
    return True
