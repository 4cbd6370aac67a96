import asyncio
import json
import logging

from aio_pika import Message, DeliveryMode, ExchangeType
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db import get_session
from app.messaging import get_channel, MATCHPAY_EXCHANGE
from app.models import OutboxEvent

logger = logging.getLogger("matchpay.workers")

async def publish_pending_events(session: AsyncSession, batch_size: int = 100) -> int:
    stmt = (
        select(OutboxEvent)
        .where(OutboxEvent.published_at.is_(None))
        .order_by(OutboxEvent.created_at)
        .limit(batch_size)
    )
    result = await session.execute(stmt)
    events = result.scalars().all()
    if not events:
        return 0

    logger.info("[MatchPay] Found %d pending outbox events", len(events))
    channel = await get_channel()
    exchange = await channel.declare_exchange(
        MATCHPAY_EXCHANGE, ExchangeType.DIRECT, durable=True
    )

    for ev in events:
        logger.info("[MatchPay] Publishing %s for %s", ev.event_type, ev.aggregate_id)
        message = Message(
            body=json.dumps(ev.payload).encode(),
            content_type="application/json",
            message_id=str(ev.id),
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        await exchange.publish(message, routing_key=ev.event_type)
        ev.published_at = func.now()
        session.add(ev)

    await session.commit()
    logger.info("[MatchPay] Outbox publish commit complete")
    return len(events)

async def outbox_publisher():
    INTERVAL = settings.OUTBOX_POLL_INTERVAL

    while True:
        async for session in get_session():
            try:
                await publish_pending_events(session)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Unpublished rows stay in the outbox and go out on the next pass
                await session.rollback()
                logger.error("[MatchPay] Outbox publish failed: %s", e)

        await asyncio.sleep(INTERVAL)
