"""
Module: events.py
Description: Event ingestion handler.

Implements POST /events, the HTTP entry point for producers. Accepted
events are handed to the delivery manager, which delivers them in the
background; the response only acknowledges acceptance.

Dependencies: FastAPI, models, delivery, utils
"""

from fastapi import APIRouter, Depends
from fastapi import status as status_codes

from event_delivery.delivery.manager import DeliveryManager
from event_delivery.handlers.delivery import get_delivery_manager, require_admin_key
from event_delivery.models.event import DeliveryStatus
from event_delivery.models.request import SubmitEventRequest
from event_delivery.models.response import SubmitEventResponse
from event_delivery.utils.logger import get_logger

router = APIRouter(
    prefix="/events",
    tags=["events"],
    dependencies=[Depends(require_admin_key)]
)
logger = get_logger(__name__)


@router.post("", status_code=status_codes.HTTP_202_ACCEPTED, response_model=SubmitEventResponse)
async def submit_event(
    request: SubmitEventRequest,
    manager: DeliveryManager = Depends(get_delivery_manager)
) -> SubmitEventResponse:
    """
    Accept an event for delivery to every configured channel.

    Example:
        POST /events
        {
            "tenant_id": "instance-1",
            "token": "tok_abc",
            "event_type": "Message",
            "payload": {"type": "Message", "event": {"Info": {"ID": "3EB0"}}}
        }

        Response (202):
        {
            "id": "instance-1_1700000000000000000",
            "status": "pending",
            "message": "Event accepted for delivery"
        }
    """
    event_id = manager.submit(request.to_event())

    logger.info(
        "Event accepted",
        event_id=event_id,
        tenant_id=request.tenant_id,
        event_type=request.event_type
    )

    return SubmitEventResponse(
        id=event_id,
        status=DeliveryStatus.PENDING,
        message="Event accepted for delivery"
    )
