# storefront/utils/stripe_client.py
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from storefront.config import settings
from storefront.utils.crypto import timing_safe_equal

logger = logging.getLogger(__name__)


class SignatureVerificationError(Exception):
    pass


def _flatten(data: Any, prefix: str = "") -> List[tuple]:
    # Stripe expects nested parameters as bracketed form keys: line_items[0][quantity]=2
    pairs = []
    if isinstance(data, dict):
        for key, value in data.items():
            pairs.extend(_flatten(value, f"{prefix}[{key}]" if prefix else str(key)))
    elif isinstance(data, (list, tuple)):
        for index, value in enumerate(data):
            pairs.extend(_flatten(value, f"{prefix}[{index}]"))
    elif isinstance(data, bool):
        pairs.append((prefix, "true" if data else "false"))
    elif data is not None:
        pairs.append((prefix, str(data)))
    return pairs


class StripeClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.STRIPE_API_URL
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.timeout = timeout or settings.STRIPE_TIMEOUT_SECONDS
        self.tolerance = settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        self._transport = transport

    async def create_checkout_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, Any],
        client_reference_id: Optional[str] = None,
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted Checkout Session and return Stripe's JSON (id, url, ...)."""
        currency = currency or settings.DEFAULT_CURRENCY
        params = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": client_reference_id,
            "billing_address_collection": "required",
            "shipping_address_collection": {"allowed_countries": settings.allowed_countries},
            "shipping_options": [{
                "shipping_rate_data": {
                    "type": "fixed_amount",
                    "fixed_amount": {"amount": 0, "currency": currency},
                    "display_name": "Standard Shipping",
                    "delivery_estimate": {
                        "minimum": {"unit": "business_day", "value": 5},
                        "maximum": {"unit": "business_day", "value": 7},
                    },
                },
            }],
            "customer_creation": "always",
            "phone_number_collection": {"enabled": True},
        }
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        url = urljoin(self.api_url, "/v1/checkout/sessions")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, data=dict(_flatten(params)), headers=headers)
                response.raise_for_status()
                return response.json()
            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                # Log the provider's error body before re-raising
                try:
                    resp_text = e.response.text if getattr(e, "response", None) is not None else str(e)
                except Exception:
                    resp_text = str(e)
                logger.error("Stripe create checkout session error: %s", resp_text)
                raise

    def verify_signature(self, payload: bytes, header: str, now: Optional[float] = None) -> None:
        """Check a Stripe-Signature header ("t=...,v1=...") against the raw body."""
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret not configured")
        try:
            parts = [p.split("=", 1) for p in header.split(",") if "=" in p]
            timestamp = next(int(v) for k, v in parts if k.strip() == "t")
        except (ValueError, StopIteration):
            raise SignatureVerificationError("Unable to extract timestamp from header")
        signatures = [v for k, v in parts if k.strip() == "v1"]
        if not signatures:
            raise SignatureVerificationError("No v1 signature in header")

        expected = compute_signature(self.webhook_secret, timestamp, payload)
        if not any(timing_safe_equal(expected, s.strip()) for s in signatures):
            raise SignatureVerificationError("Signature mismatch")

        now = time.time() if now is None else now
        if self.tolerance and abs(now - timestamp) > self.tolerance:
            raise SignatureVerificationError("Timestamp outside the tolerance zone")

    def construct_event(self, payload: bytes, header: str) -> Dict[str, Any]:
        self.verify_signature(payload, header)
        try:
            return json.loads(payload)
        except ValueError as e:
            raise SignatureVerificationError("Invalid JSON payload") from e


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


stripe_client = StripeClient()


def get_payment_client() -> StripeClient:
    return stripe_client
