import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from py_vapid import VapidException

from api.routes import router
from config.settings import Settings, settings
from monitoring.logging_config import setup_logging
from notifications.dispatcher import NotificationDispatcher
from notifications.service import PushService
from notifications.vapid import VapidKeyPair, normalize_contact, parse_vapid_keys
from notifications.webpush import WebPushDeliverer
from scheduler.jobs import create_scheduler
from storage.database import Database
from storage.delivery_log import DeliveryLog
from storage.errors import StorageError
from storage.subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)


def validate_startup(config: Settings) -> VapidKeyPair:
    """Check required configuration. Any failure here is fatal."""
    if not config.vapid_public_key or not config.vapid_private_key:
        raise RuntimeError(
            "VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY are required. "
            "Run 'python main.py generate-vapid' to generate a keypair."
        )
    if not config.vapid_contact.strip():
        raise RuntimeError("VAPID_CONTACT is required (e.g. mailto:admin@example.com)")
    if not config.admin_key:
        raise RuntimeError("ADMIN_KEY is required")

    vapid_keys = parse_vapid_keys(config.vapid_public_key, config.vapid_private_key)

    # py_vapid validates the contact ("sub") when signing
    try:
        WebPushDeliverer.vapid_headers(
            "https://localhost", vapid_keys, normalize_contact(config.vapid_contact)
        )
    except VapidException as e:
        raise RuntimeError(
            f"VAPID_CONTACT {config.vapid_contact!r} is not a usable mailto: or https: URI: {e}"
        ) from e

    return vapid_keys


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    setup_logging(level=settings.log_level, json_format=settings.json_logging)
    logger.info("Starting push notification server...")

    vapid_keys = validate_startup(settings)

    database = Database(settings.database_url)
    await database.init()

    subscriptions = SubscriptionStore(database)
    delivery_log = DeliveryLog(database)
    deliverer = WebPushDeliverer(timeout=settings.push_timeout_seconds)
    dispatcher = NotificationDispatcher(
        subscriptions,
        delivery_log,
        deliverer,
        vapid_keys=vapid_keys,
        vapid_contact=normalize_contact(settings.vapid_contact),
        concurrency=settings.push_concurrency,
        ttl=settings.push_ttl_seconds,
    )
    service = PushService(
        subscriptions,
        delivery_log,
        dispatcher,
        vapid_keys,
        welcome_message=settings.welcome_message,
        welcome_delay_seconds=settings.welcome_delay_seconds,
    )
    app.state.push_service = service

    scheduler = create_scheduler(service, settings)
    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    logger.info("Waiting for in-flight notifications...")
    await service.drain_wait()
    await deliverer.close()
    await database.close()
    logger.info("Shutdown complete")


async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "storage error"})


def create_app(
    admin_key: str | None = None,
    cors_origin: str | None = None,
    lifespan=lifespan,
) -> FastAPI:
    app = FastAPI(
        title="Push Notification Server",
        description="Topic-addressed Web Push delivery",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.admin_key = settings.admin_key if admin_key is None else admin_key

    @app.middleware("http")
    async def require_json_body(request: Request, call_next):
        if request.method in ("POST", "DELETE"):
            content_length = request.headers.get("content-length", "0")
            has_body = content_length.isdigit() and int(content_length) > 0
            content_type = request.headers.get("content-type", "")
            if has_body and not content_type.startswith("application/json"):
                return JSONResponse(
                    status_code=415,
                    content={
                        "detail": f"Content-Type must be application/json, got {content_type!r}"
                    },
                )
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.0f}ms"
        )
        return response

    # Added last so it wraps everything, preflights included
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cors_origin or settings.cors_origin],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(StorageError, storage_error_handler)
    app.include_router(router)
    return app


app = create_app()
