import logging
from decimal import Decimal
from typing import List
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import insert_for
from app.models import Transaction, Wallet

logger = logging.getLogger("matchpay.ledger")

class DebitResult:
    OK = "ok"
    INSUFFICIENT = "insufficient"

async def get_wallet(
    user_id: UUID,
    session: AsyncSession
) -> Wallet | None:
    return await session.get(Wallet, user_id, populate_existing=True)

async def create_wallet(
    user_id: UUID,
    session: AsyncSession
) -> None:
    stmt = insert_for(session, Wallet).values(
        user_id=user_id,
        balance=Decimal("0"),
        total_earned=Decimal("0"),
        total_withdrawn=Decimal("0"),
    ).on_conflict_do_nothing(index_elements=[Wallet.user_id])
    await session.execute(stmt)

async def credit(
    user_id: UUID,
    amount: Decimal,
    session: AsyncSession
) -> Decimal:
    """
    Adds amount to balance and total_earned in a single upsert, so
    concurrent credits for the same wallet serialize on the row and a
    recipient without a wallet gets one. Returns the new balance.
    The caller owns the commit.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError("credit amount must be positive")

    stmt = insert_for(session, Wallet).values(
        user_id=user_id,
        balance=amount,
        total_earned=amount,
        total_withdrawn=Decimal("0"),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Wallet.user_id],
        set_={
            "balance": Wallet.balance + stmt.excluded.balance,
            "total_earned": Wallet.total_earned + stmt.excluded.total_earned,
            "updated_at": func.now(),
        },
    ).returning(Wallet.balance)

    new_balance = (await session.execute(stmt)).scalar_one()
    logger.info("[Ledger] Credited %s to %s, balance %s", amount, user_id, new_balance)
    return Decimal(str(new_balance))

async def debit(
    user_id: UUID,
    amount: Decimal,
    session: AsyncSession
) -> str:
    """
    All-or-nothing debit guarded by `balance >= amount` inside the UPDATE
    itself. Never drives the balance negative and never applies a partial
    amount. The caller owns the commit.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError("debit amount must be positive")

    stmt = (
        update(Wallet)
        .where(Wallet.user_id == user_id, Wallet.balance >= amount)
        .values(
            balance=Wallet.balance - amount,
            total_withdrawn=Wallet.total_withdrawn + amount,
            updated_at=func.now(),
        )
        .returning(Wallet.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = (await session.execute(stmt)).scalar_one_or_none()
    if new_balance is None:
        logger.warning("[Ledger] Insufficient balance for debit of %s from %s", amount, user_id)
        return DebitResult.INSUFFICIENT

    logger.info("[Ledger] Debited %s from %s, balance %s", amount, user_id, new_balance)
    return DebitResult.OK

async def list_transactions(
    user_id: UUID,
    session: AsyncSession,
    limit: int = 50
) -> List[Transaction]:
    """Earnings history of a wallet owner, newest first."""
    result = await session.execute(
        select(Transaction)
        .where(Transaction.recipient_id == user_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
