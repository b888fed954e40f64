import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response

from api.auth import require_admin
from notifications.dispatcher import PushMessage
from notifications.service import PushService
from storage.errors import InvalidDuration

logger = logging.getLogger(__name__)

router = APIRouter()


def get_push_service(request: Request) -> PushService:
    return request.app.state.push_service


def _str_field(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


@router.get("/health")
async def health_check(service: PushService = Depends(get_push_service)):
    """Liveness plus the number of fan-outs still running."""
    return {"status": "healthy", "in_flight": service.drain.in_flight}


@router.get("/vapid-public-key")
async def vapid_public_key(service: PushService = Depends(get_push_service)):
    """Public key browsers pass to PushManager.subscribe()."""
    return {"vapidPublicKey": service.public_signing_key()}


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@router.post("/subscriptions")
async def register_subscription(
    response: Response,
    payload: dict = Body(...),
    service: PushService = Depends(get_push_service),
):
    """Register a browser push subscription, or refresh an existing one."""
    subscription = payload.get("subscription")
    subscription = subscription if isinstance(subscription, dict) else {}
    keys = subscription.get("keys")
    keys = keys if isinstance(keys, dict) else {}

    endpoint = _str_field(subscription, "endpoint")
    p256dh = _str_field(keys, "p256dh")
    auth = _str_field(keys, "auth")
    if not endpoint or not p256dh or not auth:
        raise HTTPException(
            status_code=400,
            detail=(
                "subscription.endpoint, subscription.keys.p256dh, "
                "and subscription.keys.auth are required"
            ),
        )

    result = await service.register_subscriber(
        _str_field(payload, "topic"), endpoint, p256dh, auth
    )
    response.status_code = 201 if result.created else 200
    return {"id": result.id}


@router.delete("/subscriptions", status_code=204)
async def unregister_subscription(
    payload: dict = Body(...),
    service: PushService = Depends(get_push_service),
):
    """Remove a subscription by its endpoint (called by the browser)."""
    endpoint = _str_field(payload, "endpoint")
    if not endpoint:
        raise HTTPException(status_code=400, detail="endpoint is required")

    await service.unregister_by_endpoint(endpoint)
    return Response(status_code=204)


@router.get("/subscriptions", dependencies=[Depends(require_admin)])
async def list_subscriptions(
    topic: str = Query("", description="Exact topic; empty lists all"),
    service: PushService = Depends(get_push_service),
):
    """List subscriptions without key material (admin)."""
    subs = await service.list_subscribers_admin(topic)
    return {"subscriptions": [s.to_dict() for s in subs]}


@router.delete(
    "/subscriptions/{sub_id}",
    status_code=204,
    dependencies=[Depends(require_admin)],
)
async def delete_subscription(
    sub_id: str, service: PushService = Depends(get_push_service)
):
    """Delete a subscription by id (admin)."""
    await service.unregister_by_id(sub_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.post("/notify", dependencies=[Depends(require_admin)])
async def notify(
    payload: dict = Body(...),
    service: PushService = Depends(get_push_service),
):
    """Send a notification to every subscriber of a topic (admin)."""
    title = _str_field(payload, "title")
    if not title:
        raise HTTPException(status_code=400, detail="title is required")

    message = PushMessage(
        title=title,
        body=_str_field(payload, "body"),
        icon=_str_field(payload, "icon"),
        badge=_str_field(payload, "badge"),
        tag=_str_field(payload, "tag"),
        url=_str_field(payload, "url"),
    )
    result = await service.notify(_str_field(payload, "topic"), message)
    return result.to_dict()


@router.delete("/delivery-log", dependencies=[Depends(require_admin)])
async def purge_delivery_log(
    older_than: str = Query("30d", description="Age token: 30d, 24h, 60m"),
    service: PushService = Depends(get_push_service),
):
    """Delete delivery log entries older than the given age (admin)."""
    try:
        deleted = await service.purge_delivery_log(older_than or "30d")
    except InvalidDuration as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"deleted": deleted}
