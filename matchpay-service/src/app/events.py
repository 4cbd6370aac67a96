from uuid import UUID
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import OutboxEvent

CONVERSATION_CREATED      = "conversation_created"
PAYMENT_CONFIRMED         = "payment_confirmed"
WITHDRAWAL_STATUS_CHANGED = "withdrawal_status_changed"

EVENT_TYPES = (CONVERSATION_CREATED, PAYMENT_CONFIRMED, WITHDRAWAL_STATUS_CHANGED)

def record_event(
    aggregate_id: UUID,
    event_type: str,
    payload: dict,
    session: AsyncSession
) -> OutboxEvent:
    """
    Queues a domain event in the outbox. It becomes visible to the publisher
    only when the caller's transaction commits.
    """
    outbox_rec = OutboxEvent(
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload={"event_type": event_type, **jsonable_encoder(payload)},
    )
    session.add(outbox_rec)
    return outbox_rec
