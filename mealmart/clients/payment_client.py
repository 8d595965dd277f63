"""
HTTP client for the external payment gateway (ShurjoPay-style REST API).

This module initiates checkouts and fetches authoritative payment status.
The gateway is an opaque collaborator: network failures and unexpected
response shapes are all reported as ``UpstreamFailureError``.
"""
import logging
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional
import httpx

from .. import cache
from ..errors import UpstreamFailureError

logger = logging.getLogger(__name__)

SP_ENDPOINT = os.getenv("SP_ENDPOINT", "https://sandbox.shurjopayment.com").rstrip("/")
SP_USERNAME = os.getenv("SP_USERNAME", "sp_sandbox")
SP_PASSWORD = os.getenv("SP_PASSWORD", "")
SP_PREFIX = os.getenv("SP_PREFIX", "SP")
SP_RETURN_URL = os.getenv("SP_RETURN_URL", "http://localhost:3000/order/verification")
SP_CURRENCY = os.getenv("SP_CURRENCY", "BDT")
TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "10.0"))  # seconds

TOKEN_CACHE_KEY = "payment:token"

# Fallbacks for customers with an incomplete profile
DEFAULT_CUSTOMER_CITY = "Dhaka"
DEFAULT_CUSTOMER_PHONE = "01384837384"


def _json(response: httpx.Response) -> Any:
    response.raise_for_status()
    try:
        return response.json()
    except ValueError:
        raise UpstreamFailureError("Payment gateway returned a non-JSON response")


async def get_token(client: httpx.AsyncClient, refresh: bool = False) -> Dict[str, Any]:
    """
    Obtain a gateway access token, reusing a cached one when available.

    Args:
        client: Open HTTP client
        refresh: Ignore the cached token and request a new one

    Returns:
        Token payload with ``token``, ``token_type``, ``store_id`` and ``execute_url``

    Raises:
        httpx.HTTPError: If there's a network error or the gateway rejects the credentials
        UpstreamFailureError: If the payload is missing the token
    """
    if not refresh:
        cached = cache.get_cache(TOKEN_CACHE_KEY)
        if cached:
            return cached

    response = await client.post(
        f"{SP_ENDPOINT}/api/get_token",
        json={"username": SP_USERNAME, "password": SP_PASSWORD},
    )
    payload = _json(response)
    if not isinstance(payload, dict) or not payload.get("token"):
        raise UpstreamFailureError("Payment gateway did not issue an access token")

    cache.set_cache(TOKEN_CACHE_KEY, payload, ttl=cache.TOKEN_CACHE_TTL)
    return payload


async def initiate_payment(
    amount: Decimal,
    order_id: str,
    customer_name: str,
    customer_email: str,
    client_ip: str,
    customer_address: Optional[str] = None,
    customer_phone: Optional[str] = None,
    customer_city: Optional[str] = None,
    currency: str = SP_CURRENCY,
) -> Dict[str, Any]:
    """
    Start a checkout for an order.

    Args:
        amount: Order total to charge
        order_id: Local order ID, used as the gateway's correlation reference
        customer_*: Contact details shown on the gateway's checkout page
        client_ip: IP address of the customer placing the order
        currency: ISO currency code

    Returns:
        Dict with ``checkout_url``, ``sp_order_id`` and ``transactionStatus``

    Raises:
        UpstreamFailureError: If the gateway is unreachable or the response is malformed
    """
    try:
        async with httpx.AsyncClient(timeout=TIMEOUT) as client:
            token = await get_token(client)
            body = {
                "prefix": SP_PREFIX,
                "token": token["token"],
                "store_id": token.get("store_id"),
                "return_url": SP_RETURN_URL,
                "cancel_url": SP_RETURN_URL,
                "amount": float(amount),
                "order_id": order_id,
                "currency": currency,
                "customer_name": customer_name,
                "customer_address": customer_address or DEFAULT_CUSTOMER_CITY,
                "customer_email": customer_email,
                "customer_phone": customer_phone or DEFAULT_CUSTOMER_PHONE,
                "customer_city": customer_city or DEFAULT_CUSTOMER_CITY,
                "client_ip": client_ip,
            }
            execute_url = token.get("execute_url") or f"{SP_ENDPOINT}/api/secret-pay"
            response = await client.post(execute_url, json=body)
            payment = _json(response)
    except httpx.HTTPError as e:
        logger.error(f"Payment initiation failed for order {order_id}: {e}")
        raise UpstreamFailureError(f"Payment gateway error: {e}")

    if not isinstance(payment, dict) or not payment.get("checkout_url") or not payment.get("sp_order_id"):
        logger.error(f"Unexpected payment initiation response for order {order_id}: {payment!r}")
        raise UpstreamFailureError("Payment gateway returned an unexpected response")

    logger.info(f"Payment initiated for order {order_id}: {payment['sp_order_id']}")
    return payment


async def verify_payment(sp_order_id: str) -> List[Dict[str, Any]]:
    """
    Fetch the authoritative status of a gateway transaction.

    Args:
        sp_order_id: Gateway correlation handle returned by ``initiate_payment``

    Returns:
        List of records with ``bank_status``, ``sp_code``, ``sp_message``,
        ``transaction_status``, ``method`` and ``date_time``; empty if unknown

    Raises:
        UpstreamFailureError: If the gateway is unreachable or the response is malformed
    """
    try:
        async with httpx.AsyncClient(timeout=TIMEOUT) as client:
            token = await get_token(client)
            response = await client.post(
                f"{SP_ENDPOINT}/api/verification",
                json={"order_id": sp_order_id},
                headers={"Authorization": f"{token.get('token_type', 'Bearer')} {token['token']}"},
            )
            if response.status_code == httpx.codes.UNAUTHORIZED:
                # Cached token expired early; retry once with a fresh one
                cache.delete_cache(TOKEN_CACHE_KEY)
                token = await get_token(client, refresh=True)
                response = await client.post(
                    f"{SP_ENDPOINT}/api/verification",
                    json={"order_id": sp_order_id},
                    headers={"Authorization": f"{token.get('token_type', 'Bearer')} {token['token']}"},
                )
            records = _json(response)
    except httpx.HTTPError as e:
        logger.error(f"Payment verification failed for {sp_order_id}: {e}")
        raise UpstreamFailureError(f"Payment gateway error: {e}")

    if isinstance(records, dict):
        # Unknown handles come back as a single status object
        return []
    if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
        raise UpstreamFailureError("Payment gateway returned an unexpected verification response")
    return records
