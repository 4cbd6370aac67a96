import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app import matches
from app.config import settings
from app.models import Direction, Profile, Swipe
from app.payments import make_reference
from app.profiles import get_profile, is_quota_bound

logger = logging.getLogger("matchpay.swipes")

class SwipeDecision:
    FREE = "free"
    PAID = "paid"
    BLOCKED = "blocked"

@dataclass
class PaymentIntent:
    tx_ref: str
    amount: Decimal
    currency: str

@dataclass
class SwipeOutcome:
    decision: str
    swipe_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    free_swipes_remaining: Optional[int] = None
    payment: Optional[PaymentIntent] = None

def record_swipe(
    swiper_id: UUID,
    swiped_id: UUID,
    direction: str,
    session: AsyncSession,
    is_free: bool = True
) -> Swipe:
    """Appends a free swipe. Paid swipes are written by the payment confirmation."""
    swipe = Swipe(
        swiper_id=swiper_id,
        swiped_id=swiped_id,
        direction=direction,
        is_free=is_free,
        is_paid=False,
    )
    session.add(swipe)
    return swipe

async def has_liked(
    swiper_id: UUID,
    swiped_id: UUID,
    session: AsyncSession
) -> bool:
    result = await session.execute(
        select(func.count(Swipe.id)).where(
            Swipe.swiper_id == swiper_id,
            Swipe.swiped_id == swiped_id,
            Swipe.direction == Direction.RIGHT,
        )
    )
    return result.scalar_one() > 0

async def _take_free_swipe(
    swiper_id: UUID,
    session: AsyncSession
) -> Optional[int]:
    # Conditional decrement: linearizes concurrent swipes on the quota row
    stmt = (
        update(Profile)
        .where(Profile.id == swiper_id, Profile.free_swipe_quota > 0)
        .values(free_swipe_quota=Profile.free_swipe_quota - 1, updated_at=func.now())
        .returning(Profile.free_swipe_quota)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).scalar_one_or_none()

async def _lock_swiper(
    swiper_id: UUID,
    session: AsyncSession
) -> None:
    stmt = (
        update(Profile)
        .where(Profile.id == swiper_id)
        .values(updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)

async def evaluate_swipe(
    swiper_id: UUID,
    swiped_id: UUID,
    direction: str,
    session: AsyncSession
) -> SwipeOutcome:
    """
    Decides whether a swipe is free, must be paid for, or is not allowed,
    and applies the free path. A free right-swipe by a quota-bound user
    commits the quota decrement, the swipe row and the conversation
    together. A paid decision writes nothing and hands back a fresh payment
    reference.

    Raises UnknownProfile for ids without a profile.
    """
    if direction not in (Direction.LEFT, Direction.RIGHT):
        raise ValueError(f"Unknown swipe direction {direction!r}")
    if swiper_id == swiped_id:
        return SwipeOutcome(decision=SwipeDecision.BLOCKED)

    swiper = await get_profile(swiper_id, session)
    swiped = await get_profile(swiped_id, session)
    if swiped.is_blocked or swiper.is_blocked:
        logger.info("[Swipes] %s -> %s blocked", swiper_id, swiped_id)
        return SwipeOutcome(decision=SwipeDecision.BLOCKED)

    quota_bound = is_quota_bound(swiper)
    remaining = swiper.free_swipe_quota if quota_bound else None

    if direction == Direction.LEFT:
        swipe = record_swipe(swiper_id, swiped_id, Direction.LEFT, session)
        await session.commit()
        return SwipeOutcome(decision=SwipeDecision.FREE, swipe_id=swipe.id,
                            free_swipes_remaining=remaining)

    # Write to the swiper's row before the already-liked check so concurrent
    # likes from the same swiper queue up behind each other
    if quota_bound:
        remaining = await _take_free_swipe(swiper_id, session)
    else:
        await _lock_swiper(swiper_id, session)

    if await has_liked(swiper_id, swiped_id, session):
        await session.rollback()
        conversation_id = await matches.ensure_conversation(swiper_id, swiped_id, session)
        await session.commit()
        if quota_bound:
            remaining = (await get_profile(swiper_id, session)).free_swipe_quota
        logger.info("[Swipes] %s already liked %s, nothing charged", swiper_id, swiped_id)
        return SwipeOutcome(decision=SwipeDecision.FREE, conversation_id=conversation_id,
                            free_swipes_remaining=remaining)

    if quota_bound and remaining is None:
        await session.rollback()
        tx_ref = make_reference(swiper_id, swiped_id)
        logger.info("[Swipes] %s out of free swipes, payment %s required", swiper_id, tx_ref)
        return SwipeOutcome(
            decision=SwipeDecision.PAID,
            free_swipes_remaining=0,
            payment=PaymentIntent(tx_ref=tx_ref, amount=settings.SWIPE_PRICE,
                                  currency=settings.CURRENCY),
        )

    try:
        swipe = record_swipe(swiper_id, swiped_id, Direction.RIGHT, session)
        conversation_id = await matches.ensure_conversation(swiper_id, swiped_id, session)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("[Swipes] Free like %s -> %s, conversation %s", swiper_id, swiped_id, conversation_id)
    return SwipeOutcome(
        decision=SwipeDecision.FREE,
        swipe_id=swipe.id,
        conversation_id=conversation_id,
        free_swipes_remaining=remaining,
    )
