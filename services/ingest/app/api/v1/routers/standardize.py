from fastapi import APIRouter, Depends

from ....schemas.events import StandardizeRequest, StandardizeResponse
from ....services.event_store import EventStore
from ....services.standardizer import TableStandardizer
from ...deps import get_event_store

router = APIRouter(prefix="/v1/events", tags=["events"])


@router.post("/standardize", response_model=StandardizeResponse)
def standardize_event(
    payload: StandardizeRequest, store: EventStore = Depends(get_event_store)
) -> StandardizeResponse:
    """Map a partner event name to its canonical name using the event_types table.

    This is the service ``HttpStandardizer`` talks to when STANDARDIZER_URL
    points at another deployment of this gateway.
    """
    result = TableStandardizer(store).standardize(
        payload.source_system, payload.original_event, payload.project_id
    )
    return StandardizeResponse(
        success=result.success,
        standardized_event=result.standardized_event,
        was_mapped=result.was_mapped,
        original_event=payload.original_event,
    )
