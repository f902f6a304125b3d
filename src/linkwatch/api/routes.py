"""linkwatch API routes."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status

from ..collectors.realtime import RealtimeSubscription
from ..container import ServiceContainer
from ..core.logging import get_logger
from ..models.alert import Alert, AlertAcknowledge, AlertFilter
from ..models.common import APIResponse, PaginatedResponse
from ..models.interface import AvailableInterface
from ..models.traffic import Granularity, RealtimePoint, TrafficSeries

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["linkwatch"])

# WebSocket close code for an unknown device
WS_DEVICE_NOT_FOUND = 4404


def get_container(request: Request) -> ServiceContainer:
    """Services built by the application lifespan."""
    return request.app.state.container


Container = Annotated[ServiceContainer, Depends(get_container)]


async def _require_device(container: ServiceContainer, device_id: str) -> None:
    async with container.repos.devices() as repo:
        device = await repo.find_by_id(device_id)
    if not device:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Device {device_id} not found",
        )


# ============================================
# Interface endpoints
# ============================================

@router.get(
    "/devices/{device_id}/interfaces/available",
    response_model=APIResponse[list[AvailableInterface]],
)
async def get_available_interfaces(
    device_id: str,
    container: Container,
    include_monitored: bool = False,
) -> APIResponse[list[AvailableInterface]]:
    """Cached interfaces of a device that are not monitored yet."""
    await _require_device(container, device_id)
    interfaces = await container.cache.list_available(
        device_id, exclude_monitored=not include_monitored
    )
    return APIResponse(data=interfaces)


# ============================================
# Traffic endpoints
# ============================================

@router.get("/devices/{device_id}/traffic", response_model=APIResponse[TrafficSeries])
async def query_traffic_series(
    device_id: str,
    container: Container,
    interface: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    granularity: Granularity = Granularity.AUTO,
) -> APIResponse[TrafficSeries]:
    """Traffic of a device or one interface; the last 24 hours by default."""
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(hours=24)
    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must be after start",
        )
    await _require_device(container, device_id)
    series = await container.store.query(device_id, interface, start, end, granularity)
    return APIResponse(data=series)


@router.get(
    "/devices/{device_id}/realtime",
    response_model=APIResponse[dict[str, list[RealtimePoint]]],
)
async def get_realtime_history(
    device_id: str,
    container: Container,
    points: Annotated[int, Query(ge=1, le=7200)] = 100,
) -> APIResponse[dict[str, list[RealtimePoint]]]:
    """In-memory realtime points per interface; empty when nobody is viewing."""
    return APIResponse(data=container.realtime.history(device_id, points))


@router.websocket("/devices/{device_id}/realtime/ws")
async def realtime_feed(websocket: WebSocket, device_id: str) -> None:
    """Live traffic for one device while the socket stays open."""
    container: ServiceContainer = websocket.app.state.container
    await websocket.accept()

    try:
        subscription = await container.realtime.subscribe(device_id)
    except LookupError:
        await websocket.close(code=WS_DEVICE_NOT_FOUND)
        return

    sender = asyncio.create_task(_pump(websocket, subscription))
    try:
        await websocket.send_json({
            "type": "realtime_history",
            "device_id": device_id,
            "data": _encode_history(container.realtime.history(device_id)),
        })
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, Exception):
            pass
        await container.realtime.unsubscribe(subscription)


def _encode_history(history: dict[str, list[RealtimePoint]]) -> dict[str, list[dict]]:
    return {
        name: [p.model_dump(mode="json") for p in points]
        for name, points in history.items()
    }


async def _pump(websocket: WebSocket, subscription: RealtimeSubscription) -> None:
    while True:
        batch = await subscription.get()
        await websocket.send_json({
            "type": "realtime_traffic",
            "device_id": subscription.device_id,
            "data": [p.model_dump(mode="json") for p in batch],
        })


# ============================================
# Alert endpoints
# ============================================

@router.get("/alerts", response_model=PaginatedResponse[Alert])
async def list_alerts(
    container: Container,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    device_id: str | None = None,
    interface: str | None = None,
    acknowledged: bool | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> PaginatedResponse[Alert]:
    """List alerts, newest first, with incident durations for closed ones."""
    flt = AlertFilter(
        device_id=device_id,
        interface_name=interface,
        acknowledged=acknowledged,
        since=since,
        until=until,
        page=page,
        limit=limit,
    )
    alerts, total = await container.alerts.list_alerts(flt)
    return PaginatedResponse.page_of(alerts, page, limit, total)


@router.get("/alerts/{alert_id}", response_model=APIResponse[Alert])
async def get_alert(alert_id: str, container: Container) -> APIResponse[Alert]:
    """Get an alert by ID."""
    async with container.repos.alerts() as repo:
        alert = await repo.find_by_id(alert_id)
    if not alert:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id} not found",
        )
    return APIResponse(data=alert)


@router.post("/alerts/{alert_id}/acknowledge", response_model=APIResponse[Alert])
async def acknowledge_alert(
    alert_id: str,
    body: AlertAcknowledge,
    container: Container,
) -> APIResponse[Alert]:
    """Close an incident on behalf of an operator."""
    alert = await container.alerts.acknowledge(alert_id, body.user_id)
    if not alert:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id} not found",
        )
    return APIResponse(data=alert, message="Alert acknowledged")
