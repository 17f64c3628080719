# Version History
# v1.0 - Subscription store backends: local SQLite and Supabase PostgREST.

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from starlette.concurrency import run_in_threadpool

import db

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_TABLE = "web_push_subscriptions"


class SubscriptionStore(Protocol):
    async def save(self, subscription: dict[str, Any], user_id: str | None = None) -> None: ...

    async def remove(self, endpoint: str) -> None: ...


class SqliteSubscriptionStore:
    async def save(self, subscription: dict[str, Any], user_id: str | None = None) -> None:
        await run_in_threadpool(db.upsert_subscription, subscription, user_id)

    async def remove(self, endpoint: str) -> None:
        removed = await run_in_threadpool(db.remove_subscription, endpoint)
        if not removed:
            logger.info("No stored subscription for %s", endpoint)


class SupabaseSubscriptionStore:
    def __init__(self, url: str, service_role_key: str, client: httpx.AsyncClient) -> None:
        self.table_url = f"{url.rstrip('/')}/rest/v1/{SUBSCRIPTIONS_TABLE}"
        self.client = client
        self.headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
            "x-client-info": "send-push-fn",
        }

    async def save(self, subscription: dict[str, Any], user_id: str | None = None) -> None:
        row = {
            "endpoint": subscription["endpoint"],
            "p256dh": subscription["keys"]["p256dh"],
            "auth": subscription["keys"]["auth"],
        }
        if user_id is not None:
            row["user_id"] = user_id
        response = await self.client.post(
            self.table_url,
            json=row,
            headers={**self.headers, "Prefer": "resolution=merge-duplicates"},
        )
        response.raise_for_status()

    async def remove(self, endpoint: str) -> None:
        response = await self.client.delete(
            self.table_url,
            params={"endpoint": f"eq.{endpoint}"},
            headers=self.headers,
        )
        response.raise_for_status()


def build_store(settings, client: httpx.AsyncClient) -> SubscriptionStore:
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseSubscriptionStore(settings.supabase_url, settings.supabase_service_role_key, client)
    return SqliteSubscriptionStore()
