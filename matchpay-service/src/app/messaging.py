import asyncio
import logging
from aio_pika import connect_robust, ExchangeType
from aio_pika.abc import AbstractRobustConnection, AbstractRobustChannel
from app.config import settings
from app.events import EVENT_TYPES

logger = logging.getLogger("matchpay.messaging")

MATCHPAY_EXCHANGE = "matchpay_exchange"

rabbit_connection: AbstractRobustConnection | None = None
rabbit_channel:    AbstractRobustChannel     | None = None

async def init_rabbit(retry_attempts: int = 5, retry_delay: int = 2) -> None:
    global rabbit_connection, rabbit_channel

    for attempt in range(1, retry_attempts + 1):
        try:
            logger.info(f"[MatchPay] Connecting to RabbitMQ (attempt {attempt}/{retry_attempts})")
            rabbit_connection = await connect_robust(settings.rabbit_url)
            rabbit_channel    = await rabbit_connection.channel()

            exchange = await rabbit_channel.declare_exchange(
                MATCHPAY_EXCHANGE, ExchangeType.DIRECT, durable=True
            )
            # One durable queue per event type so consumers can attach later
            for event_type in EVENT_TYPES:
                queue = await rabbit_channel.declare_queue(event_type, durable=True)
                await queue.bind(exchange, event_type)

            logger.info("[MatchPay] RabbitMQ setup complete")
            return
        except Exception as e:
            logger.error(f"[MatchPay] RabbitMQ init failed: {e}")
            if attempt < retry_attempts:
                await asyncio.sleep(retry_delay)
            else:
                logger.critical("[MatchPay] Could not connect to RabbitMQ, giving up")
                raise

async def get_channel() -> AbstractRobustChannel:
    if rabbit_channel is None:
        await init_rabbit()
    return rabbit_channel

async def close_rabbit() -> None:
    global rabbit_connection, rabbit_channel
    if rabbit_connection:
        await rabbit_connection.close()
        rabbit_connection = None
        rabbit_channel = None
        logger.info("[MatchPay] RabbitMQ connection closed")
