# Version History
# v1.0 - FastAPI send-push function with VAPID signing and subscription endpoints.

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from db import init_db
from errors import (
    ConfigurationError,
    InvalidInputError,
    PushDeliveryError,
    SignatureFormatError,
    VapidNotConfiguredError,
)
from logsetup import setup_logging
from push import PushDispatcher
from store import SubscriptionStore, build_store
from vapid import generate_key_pair

load_dotenv()
setup_logging(os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ", ".join(ALLOWED_HEADERS),
}
DEFAULT_PAYLOAD = {"title": "GridLead test", "body": "This is a test push from GridLead."}


@dataclass(frozen=True)
class Settings:
    vapid_public_key: str
    vapid_private_key: str
    vapid_subject: str
    push_timeout: float
    encrypt_payload: bool
    supabase_url: str
    supabase_service_role_key: str


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@lru_cache
def get_settings() -> Settings:
    return Settings(
        vapid_public_key=os.getenv("VAPID_PUBLIC_KEY", "").strip(),
        vapid_private_key=os.getenv("VAPID_PRIVATE_KEY", "").strip(),
        vapid_subject=os.getenv("VAPID_SUBJECT", "mailto:support@gridlead.space"),
        push_timeout=float(os.getenv("PUSH_TIMEOUT_SECONDS", "10")),
        encrypt_payload=_env_flag("PUSH_ENCRYPT_PAYLOAD"),
        supabase_url=os.getenv("SUPABASE_URL", ""),
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
    )


app = FastAPI(title="gridlead-push")


class SubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class SubscriptionPayload(BaseModel):
    endpoint: str
    keys: SubscriptionKeys


class SubscribeRequest(BaseModel):
    subscription: SubscriptionPayload
    userId: str | None = None


class UnsubscribeRequest(BaseModel):
    endpoint: str


def _json(content: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_store(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> SubscriptionStore:
    return build_store(settings, client)


@app.on_event("startup")
def on_startup() -> None:
    settings = get_settings()
    if not settings.vapid_public_key or not settings.vapid_private_key:
        logger.warning("VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY not set; send-push will answer 500")
    if not settings.supabase_url:
        init_db()
    app.state.http_client = httpx.AsyncClient()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _json({"error": "Invalid request body"}, 422)


@app.get("/health")
def health() -> JSONResponse:
    return _json({"ok": True})


@app.get("/config")
def get_config(settings: Settings = Depends(get_settings)) -> JSONResponse:
    return _json({"vapidPublicKey": settings.vapid_public_key})


@app.post("/subscribe")
async def subscribe(payload: SubscribeRequest, store: SubscriptionStore = Depends(get_store)) -> JSONResponse:
    await store.save(payload.subscription.model_dump(), payload.userId)
    return _json({"ok": True})


@app.post("/unsubscribe")
async def unsubscribe(payload: UnsubscribeRequest, store: SubscriptionStore = Depends(get_store)) -> JSONResponse:
    await store.remove(payload.endpoint)
    return _json({"ok": True})


# Preflights are answered here, whatever Origin or Access-Control-Request-* they carry.
@app.options("/{path:path}")
def preflight(path: str) -> JSONResponse:
    return _json({"ok": True})


@app.api_route("/send-push", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"])
def send_push_wrong_method() -> JSONResponse:
    return _json({"error": "Method not allowed"}, 405)


@app.post("/send-push")
async def send_push(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: SubscriptionStore = Depends(get_store),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> JSONResponse:
    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    subscription = body.get("subscription") if isinstance(body, dict) else None
    # an empty object is present but has no endpoint
    if not subscription and not isinstance(subscription, dict):
        return _json({"error": "Missing subscription"}, 400)

    if not isinstance(subscription, dict):
        return _json({"error": "Invalid subscription endpoint"}, 400)
    payload = body.get("payload")
    if payload is None:
        payload = DEFAULT_PAYLOAD

    dispatcher = PushDispatcher(settings, store, client)
    try:
        await dispatcher.send(subscription, payload)
    except InvalidInputError as exc:
        return _json({"error": str(exc)}, 400)
    except VapidNotConfiguredError as exc:
        return _json({"error": str(exc)}, 500)
    except PushDeliveryError as exc:
        if exc.status is None:
            return _json({"error": "native_push_failed", "detail": str(exc)}, 500)
        return _json({"error": "push_failed", "status": exc.status, "body": exc.body}, exc.status)
    except SignatureFormatError as exc:
        logger.exception("VAPID signature could not be normalised; signing is unreliable")
        return _json({"error": "native_push_failed", "detail": str(exc)}, 500)
    except ConfigurationError as exc:
        logger.error("VAPID configuration rejected: %s", exc)
        return _json({"error": "native_push_failed", "detail": str(exc)}, 500)
    except Exception as exc:
        logger.exception("send-push error")
        return _json({"error": "native_push_failed", "detail": str(exc)}, 500)

    return _json({"ok": True})


if __name__ == "__main__":
    if sys.argv[1:2] == ["generate-vapid"]:
        private_key, public_key = generate_key_pair()
        print(f"VAPID_PUBLIC_KEY={public_key}")
        print(f"VAPID_PRIVATE_KEY={private_key}")
    else:
        import uvicorn

        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
