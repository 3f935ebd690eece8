from fastapi import APIRouter

from formtrack.dependencies import ClientIP, Ingestor
from formtrack.models.tracking import TrackEventRequest, TrackEventResponse

router = APIRouter(tags=["tracking"])


@router.post("/analytics/track", response_model=TrackEventResponse, status_code=202)
async def track_event(body: TrackEventRequest, ingestor: Ingestor, ip: ClientIP) -> TrackEventResponse:
    """Record one interaction event from a public form page.

    No authentication. 400 when formId/action are missing or malformed, 500
    when the event could not be logged. Session aggregation failures never
    change the response.
    """
    event = await ingestor.ingest(body, client_ip=ip)
    return TrackEventResponse(
        message="Analytics tracked successfully",
        data={
            "form_id": event.form_id,
            "action": event.event_type,
            "field_id": getattr(event, "field_id", None),
            "session_id": event.session_id,
        },
    )
