"""
Module: delivery.py
Description: Delivery administration endpoints.

Exposes the delivery manager's query and retry operations:
- GET /delivery/status: Manager status and configuration
- GET /delivery/events/{event_id}: Single pending event (404 once terminal)
- GET /delivery/events: Pending events filtered by tenant, limited
- GET /delivery/failed: Retained failed events
- POST /delivery/retry[/{event_id}]: Force retry

Key Components:
- get_delivery_manager(): Dependency returning the app's manager
- require_admin_key(): Optional X-API-Key check

Dependencies: FastAPI, typing, models, delivery, config, utils
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi import status as status_codes

from event_delivery.config.settings import Settings
from event_delivery.delivery.manager import DEFAULT_LIST_LIMIT, DeliveryManager, EventNotFound
from event_delivery.models.response import (
    EventStatusResponse,
    FailedEventsResponse,
    ManagerStatusResponse,
    PendingEventsResponse,
    RetryResponse,
)
from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


def get_settings(request: Request) -> Settings:
    """Dependency to get the application settings."""
    return request.app.state.settings


def get_delivery_manager(request: Request) -> DeliveryManager:
    """
    Dependency to get the delivery manager created at startup.

    Raises:
        HTTPException: 503 if the manager is not running
    """
    manager: Optional[DeliveryManager] = getattr(request.app.state, "delivery_manager", None)
    if manager is None or not manager.running:
        raise HTTPException(
            status_code=status_codes.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery manager not initialized"
        )
    return manager


def require_admin_key(
    settings: Settings = Depends(get_settings),
    x_api_key: Optional[str] = Header(default=None)
) -> None:
    """
    Check the X-API-Key header when an admin key is configured.

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    if not settings.admin_api_key:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status_codes.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )


router = APIRouter(
    prefix="/delivery",
    tags=["delivery"],
    dependencies=[Depends(require_admin_key)]
)


@router.get("/status", response_model=ManagerStatusResponse)
async def delivery_status(
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> ManagerStatusResponse:
    """Report pending load and the delivery configuration."""
    return ManagerStatusResponse(
        status="running",
        pending_events=manager.count_pending(),
        max_retries=manager.max_retries,
        timeout_ms=int(manager.timeout * 1000),
        retry_backoff_ms=int(manager.retry_interval * 1000)
    )


@router.get("/events/{event_id}", response_model=EventStatusResponse)
async def event_status(
    event_id: str,
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> EventStatusResponse:
    """
    Return a pending event.

    Raises:
        HTTPException: 404 if the event is unknown or already delivered/failed
    """
    event = manager.get_status(event_id)
    if event is None:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Event not found or already completed"
        )
    return EventStatusResponse.from_event(event)


@router.get("/events", response_model=PendingEventsResponse)
async def list_pending_events(
    tenant_id: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> PendingEventsResponse:
    """
    List pending events, oldest first.

    Args:
        tenant_id: Only include this tenant's events
        limit: Maximum events returned (default 50, non-positive means default)

    Example:
        GET /delivery/events?tenant_id=t1&limit=10

        Response (200):
        {
            "total_pending": 4,
            "filtered_count": 2,
            "shown_count": 2,
            "events": [...]
        }
    """
    listing = manager.list_pending(tenant_id=tenant_id, limit=limit)

    logger.debug(
        "Pending events listed",
        tenant_id=tenant_id,
        filtered_count=listing.filtered_count,
        shown_count=listing.shown_count
    )

    return PendingEventsResponse(
        total_pending=listing.total_pending,
        filtered_count=listing.filtered_count,
        shown_count=listing.shown_count,
        events=[EventStatusResponse.from_event(event) for event in listing.events]
    )


@router.get("/failed", response_model=FailedEventsResponse)
async def list_failed_events(
    limit: int = DEFAULT_LIST_LIMIT,
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> FailedEventsResponse:
    """List retained failed events, most recent first."""
    events = manager.list_failed(limit=limit)
    return FailedEventsResponse(
        total_failed=manager.count_failed(),
        shown_count=len(events),
        events=[EventStatusResponse.from_event(event) for event in events]
    )


@router.post("/retry", response_model=RetryResponse)
async def retry_all(
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> RetryResponse:
    """Run a retry sweep over all eligible pending events."""
    scheduled = manager.force_retry()
    logger.info("Manual retry sweep triggered", scheduled=scheduled)
    return RetryResponse(
        message="Retry triggered for all pending events",
        scheduled=scheduled
    )


@router.post("/retry/{event_id}", response_model=RetryResponse)
async def retry_event(
    event_id: str,
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> RetryResponse:
    """
    Reset an event's attempts and re-dispatch every enabled channel.

    Raises:
        HTTPException: 404 if the event is neither pending nor a retained failure
    """
    try:
        scheduled = manager.force_retry(event_id)
    except EventNotFound:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Event not found"
        )

    return RetryResponse(
        message=f"Retry triggered for event: {event_id}",
        event_id=event_id,
        scheduled=scheduled
    )
