import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app import ledger, matches
from app.config import settings
from app.db import insert_for
from app.events import record_event, PAYMENT_CONFIRMED
from app.models import Direction, Profile, Swipe, Transaction, TransactionStatus
from app.provider import FlutterwaveClient

logger = logging.getLogger("matchpay.payments")

REFERENCE_PREFIX = "CD"

class ConfirmOutcome:
    CREATED = "created"
    ALREADY_PROCESSED = "already_processed"
    REJECTED = "rejected"

class MalformedReference(ValueError):
    pass

@dataclass
class Confirmation:
    outcome: str
    transaction_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    reason: Optional[str] = None

def make_reference(swiper_id: UUID, swiped_id: UUID, now_ms: int | None = None) -> str:
    # The trailing epoch only makes the reference unique per attempt
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}_{swiper_id}_{swiped_id}_{now_ms}"

def is_swipe_reference(tx_ref: str | None) -> bool:
    if not tx_ref:
        return False
    parts = tx_ref.split("_")
    return parts[0] == REFERENCE_PREFIX and len(parts) >= 4

def parse_reference(tx_ref: str) -> Tuple[UUID, UUID]:
    """Returns (swiper_id, swiped_id) encoded in a payment reference."""
    if not is_swipe_reference(tx_ref):
        raise MalformedReference(f"Not a swipe payment reference: {tx_ref!r}")
    parts = tx_ref.split("_")
    try:
        swiper_id, swiped_id = UUID(parts[1]), UUID(parts[2])
    except ValueError as e:
        raise MalformedReference(f"Bad user id in reference {tx_ref!r}") from e
    if swiper_id == swiped_id:
        raise MalformedReference(f"Reference {tx_ref!r} pays for a self-swipe")
    return swiper_id, swiped_id

def _rejected(tx_ref: str, reason: str) -> Confirmation:
    logger.warning("[Payments] Rejected %s: %s", tx_ref, reason)
    return Confirmation(outcome=ConfirmOutcome.REJECTED, reason=reason)

async def confirm(
    provider_ref: str,
    provider_charge_id: str | None,
    declared_amount: Decimal | None,
    provider: FlutterwaveClient,
    session: AsyncSession
) -> Confirmation:
    """
    Turns a provider-confirmed charge into exactly one Transaction, one
    wallet credit, one paid swipe and a conversation, whichever channel
    (client verify or webhook) gets here first.

    The unique index on transactions.provider_ref is the only serialization
    point: the loser of a race sees no returned row and reports
    ALREADY_PROCESSED. All effects share one database transaction, so a
    failure rolls back the Transaction row as well and the next delivery
    redoes the whole confirmation.

    Raises ProviderUnavailable before anything is written.
    """
    try:
        swiper_id, swiped_id = parse_reference(provider_ref)
    except MalformedReference as e:
        return _rejected(provider_ref, str(e))

    charge = await provider.verify_by_reference(provider_ref)
    if not charge.successful:
        return _rejected(provider_ref, f"provider reports status {charge.status!r}")
    if charge.tx_ref != provider_ref:
        return _rejected(provider_ref, f"provider answered for {charge.tx_ref!r}")
    if charge.amount < settings.SWIPE_PRICE:
        return _rejected(provider_ref, f"amount {charge.amount} below swipe price {settings.SWIPE_PRICE}")
    if charge.currency.upper() != settings.CURRENCY:
        return _rejected(provider_ref, f"unexpected currency {charge.currency!r}")
    if charge.amount > settings.SWIPE_PRICE:
        logger.warning("[Payments] %s overpaid: provider amount %s, swipe price %s recorded",
                       provider_ref, charge.amount, settings.SWIPE_PRICE)

    if declared_amount is not None and Decimal(str(declared_amount)) != charge.amount:
        logger.warning("[Payments] Declared amount %s for %s differs from provider amount %s",
                       declared_amount, provider_ref, charge.amount)
    if provider_charge_id and charge.charge_id and str(provider_charge_id) != charge.charge_id:
        logger.warning("[Payments] Charge id %s for %s differs from provider charge id %s",
                       provider_charge_id, provider_ref, charge.charge_id)

    known = await session.execute(select(Profile.id).where(Profile.id.in_([swiper_id, swiped_id])))
    if len(set(known.scalars().all())) != 2:
        return _rejected(provider_ref, "unknown payer or recipient")

    stmt = (
        insert_for(session, Transaction)
        .values(
            payer_id=swiper_id,
            recipient_id=swiped_id,
            type="swipe_payment",
            amount=settings.SWIPE_PRICE,
            platform_fee=settings.PLATFORM_FEE,
            recipient_earning=settings.RECIPIENT_EARNING,
            currency=settings.CURRENCY,
            status=TransactionStatus.COMPLETED,
            provider_ref=provider_ref,
            provider_charge_id=charge.charge_id or provider_charge_id,
        )
        .on_conflict_do_nothing(index_elements=[Transaction.provider_ref])
        .returning(Transaction.id)
    )

    try:
        transaction_id = (await session.execute(stmt)).scalar_one_or_none()
        if transaction_id is None:
            await session.rollback()
            existing = await session.execute(
                select(Transaction.id).where(Transaction.provider_ref == provider_ref)
            )
            logger.info("[Payments] %s already processed", provider_ref)
            return Confirmation(
                outcome=ConfirmOutcome.ALREADY_PROCESSED,
                transaction_id=existing.scalar_one_or_none(),
            )

        await ledger.credit(swiped_id, settings.RECIPIENT_EARNING, session)
        session.add(Swipe(
            swiper_id=swiper_id,
            swiped_id=swiped_id,
            direction=Direction.RIGHT,
            is_free=False,
            is_paid=True,
            transaction_id=transaction_id,
            transaction_ref=provider_ref,
        ))
        conversation_id = await matches.ensure_conversation(swiper_id, swiped_id, session)
        record_event(
            transaction_id,
            PAYMENT_CONFIRMED,
            {
                "transaction_id": transaction_id,
                "payer_id": swiper_id,
                "recipient_id": swiped_id,
                "amount": settings.SWIPE_PRICE,
                "recipient_earning": settings.RECIPIENT_EARNING,
                "provider_ref": provider_ref,
                "conversation_id": conversation_id,
            },
            session,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception("[Payments] Confirmation of %s failed, rolled back", provider_ref)
        raise

    logger.info("[Payments] %s confirmed as transaction %s", provider_ref, transaction_id)
    return Confirmation(
        outcome=ConfirmOutcome.CREATED,
        transaction_id=transaction_id,
        conversation_id=conversation_id,
    )
