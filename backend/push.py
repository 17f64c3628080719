# Version History
# v1.0 - Single-subscription VAPID push dispatch with cleanup of expired subscriptions.

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlsplit

import httpx

from errors import (
    InvalidInputError,
    InvalidSubscriptionError,
    TransientDeliveryError,
    VapidNotConfiguredError,
)
from store import SubscriptionStore
from vapid import endpoint_audience, load_key_pair, sign_vapid_jwt

logger = logging.getLogger(__name__)

PUSH_TTL_SECONDS = 60
GONE_STATUSES = (404, 410)


def validate_endpoint(endpoint: Any) -> str:
    if not endpoint or not isinstance(endpoint, str):
        raise InvalidInputError("Invalid subscription endpoint")
    try:
        parts = urlsplit(endpoint)
        valid = parts.scheme in ("https", "http") and bool(parts.hostname) and parts.port != 0
    except ValueError:
        valid = False
    if not valid:
        raise InvalidInputError("Invalid subscription endpoint")
    return endpoint


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except (httpx.HTTPError, UnicodeDecodeError, LookupError):
        return ""


def _encrypt_payload(subscription: dict, payload: dict) -> bytes | None:
    keys = subscription.get("keys") or {}
    if not keys.get("p256dh") or not keys.get("auth"):
        return None

    from pywebpush import WebPushException, WebPusher

    try:
        encoded = WebPusher(subscription).encode(
            json.dumps(payload).encode("utf-8"), content_encoding="aes128gcm"
        )
    except (WebPushException, ValueError, TypeError) as exc:
        raise InvalidInputError("Invalid subscription keys") from exc
    return encoded["body"]


class PushDispatcher:
    """One delivery attempt for one subscription. Retries belong to the caller."""

    def __init__(self, settings, store: SubscriptionStore, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.store = store
        self.client = client

    async def send(self, subscription: dict, payload: dict | None = None) -> None:
        endpoint = validate_endpoint(subscription.get("endpoint"))
        if not self.settings.vapid_public_key or not self.settings.vapid_private_key:
            raise VapidNotConfiguredError()

        key, public_key = load_key_pair(self.settings.vapid_private_key, self.settings.vapid_public_key)
        token = sign_vapid_jwt(key, endpoint_audience(endpoint), self.settings.vapid_subject)

        headers = {
            "TTL": str(PUSH_TTL_SECONDS),
            "Authorization": f"WebPush {token}",
            "Crypto-Key": f"p256ecdsa={public_key}",
        }
        body = b""
        if self.settings.encrypt_payload and payload is not None:
            encrypted = _encrypt_payload(subscription, payload)
            if encrypted is not None:
                body = encrypted
                headers["Content-Encoding"] = "aes128gcm"
                headers["Content-Type"] = "application/octet-stream"

        try:
            response = await self.client.post(
                endpoint, content=body, headers=headers, timeout=self.settings.push_timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("Push transport failure for %s: %s", endpoint[:60], exc)
            raise TransientDeliveryError(str(exc) or exc.__class__.__name__) from exc

        status = response.status_code
        if 200 <= status < 300:
            logger.info("Push delivered to %s (%s)", endpoint[:60], status)
            return

        text = _response_text(response)
        if status in GONE_STATUSES:
            logger.info("Push service reports subscription gone (%s): %s", status, endpoint[:60])
            await self._invalidate(endpoint)
            raise InvalidSubscriptionError("Subscription expired or unsubscribed", status, text)

        logger.warning("Push rejected by provider (%s) for %s", status, endpoint[:60])
        raise TransientDeliveryError("Push service rejected the message", status, text)

    async def _invalidate(self, endpoint: str) -> None:
        try:
            await self.store.remove(endpoint)
            logger.info("Deleted expired subscription: %s", endpoint)
        except Exception:
            logger.warning("Failed to delete expired subscription %s", endpoint, exc_info=True)
