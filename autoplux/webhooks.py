"""
Webhook system for sending marketplace event notifications.

Allows external systems to subscribe to order and booking events
(order.created, order.status_changed, booking.status_changed, ...).
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from . import config

logger = logging.getLogger(__name__)


async def send_webhook(event_type: str, data: Dict[str, Any], urls: Optional[List[str]] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "order.status_changed")
        data: Event data payload
        urls: Override for the configured WEBHOOK_URLS
    """
    targets = config.WEBHOOK_URLS if urls is None else urls
    if not targets:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }

    async with httpx.AsyncClient(timeout=config.WEBHOOK_TIMEOUT) as client:
        # Send all webhooks concurrently
        await asyncio.gather(
            *(send_single_webhook(client, url, payload) for url in targets),
            return_exceptions=True,
        )


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL.

    Returns:
        True if the receiver accepted the payload
    """
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
        return False
    return True
