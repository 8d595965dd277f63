"""
Webhook system for sending order event notifications.

Allows external systems to subscribe to order events (created, payment
verified, shipping status changed). Delivery is best effort and never
affects the request that triggered it.
"""
import os
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Any
import httpx

logger = logging.getLogger(__name__)

# Webhook URLs (comma separated)
WEBHOOK_URLS = os.getenv("WEBHOOK_URLS", "").split(",")
WEBHOOK_URLS = [url.strip() for url in WEBHOOK_URLS if url.strip()]

# Strong references to in-flight deliveries; the event loop only keeps weak ones
_background_tasks = set()


async def send_webhook(event_type: str, data: Dict[str, Any]) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "order.payment_verified")
        data: Event data payload
    """
    if not WEBHOOK_URLS:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    async with httpx.AsyncClient(timeout=5.0) as client:
        tasks = [send_single_webhook(client, url, payload) for url in WEBHOOK_URLS]
        # Send all webhooks concurrently
        await asyncio.gather(*tasks, return_exceptions=True)


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> None:
    """
    Send a webhook to a single URL.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event payload
    """
    try:
        response = await client.post(url, json=payload)
        if response.status_code >= 400:
            logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")


def _dispatch(event_type: str, data: Dict[str, Any]) -> None:
    # Must be called from a running event loop (async route handlers)
    if not WEBHOOK_URLS:
        return
    task = asyncio.create_task(send_webhook(event_type, data))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def notify_order_created(order_id: str, total_price: str) -> None:
    """
    Notify that an order was created and its payment initiated.

    Args:
        order_id: Order ID
        total_price: Order total as a string
    """
    _dispatch("order.created", {"order_id": order_id, "total_price": total_price})


def notify_payment_verified(order_id: str, payment_status: str) -> None:
    """
    Notify that a payment verification updated an order.

    Args:
        order_id: Order ID
        payment_status: Payment status after verification
    """
    _dispatch("order.payment_verified", {"order_id": order_id, "payment_status": payment_status})


def notify_shipping_status_changed(order_id: str, old_status: str, new_status: str) -> None:
    """
    Notify that an order's shipping status changed.

    Args:
        order_id: Order ID
        old_status: Previous status
        new_status: New status
    """
    data = {
        "order_id": order_id,
        "old_status": old_status,
        "new_status": new_status,
    }
    _dispatch("order.shipping_status_changed", data)
