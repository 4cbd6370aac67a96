import logging
from decimal import Decimal
from typing import List
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app import ledger
from app.config import settings
from app.events import record_event, WITHDRAWAL_STATUS_CHANGED
from app.models import WithdrawalRequest, WithdrawalStatus

logger = logging.getLogger("matchpay.withdrawals")

class InvalidWithdrawal(Exception):
    pass

class WithdrawalNotFound(Exception):
    pass

class InsufficientFunds(Exception):
    pass

class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move a {current} withdrawal to {target}")
        self.current = current
        self.target = target

async def create_withdrawal(
    user_id: UUID,
    amount: Decimal,
    bank_name: str,
    account_number: str,
    account_name: str,
    session: AsyncSession
) -> WithdrawalRequest:
    """
    Files a pending payout request. The balance check here is advisory,
    approval checks again against the balance at that moment.
    """
    amount = Decimal(str(amount))
    if amount < settings.MIN_WITHDRAWAL:
        raise InvalidWithdrawal(f"Minimum withdrawal is {settings.MIN_WITHDRAWAL}")

    wallet = await ledger.get_wallet(user_id, session)
    if not wallet:
        raise InvalidWithdrawal("No wallet for this user")
    if amount > wallet.balance:
        raise InvalidWithdrawal("Insufficient balance")

    request = WithdrawalRequest(
        user_id=user_id,
        amount=amount,
        bank_name=bank_name,
        account_number=account_number,
        account_name=account_name,
        status=WithdrawalStatus.PENDING,
    )
    session.add(request)
    await session.commit()
    await session.refresh(request)
    logger.info("[Withdrawals] %s requested %s (request %s)", user_id, amount, request.id)
    return request

async def get_withdrawal(
    request_id: UUID,
    session: AsyncSession
) -> WithdrawalRequest:
    request = await session.get(WithdrawalRequest, request_id, populate_existing=True)
    if not request:
        raise WithdrawalNotFound()
    return request

async def list_withdrawals(
    session: AsyncSession,
    status: str | None = None,
    user_id: UUID | None = None
) -> List[WithdrawalRequest]:
    stmt = select(WithdrawalRequest).order_by(WithdrawalRequest.created_at.desc())
    if status:
        stmt = stmt.where(WithdrawalRequest.status == status)
    if user_id:
        stmt = stmt.where(WithdrawalRequest.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalars().all()

async def _transition(
    request_id: UUID,
    source: str,
    target: str,
    session: AsyncSession,
    **values
) -> WithdrawalRequest:
    # Compare-and-set on status; a concurrent transition makes this match nothing
    stmt = (
        update(WithdrawalRequest)
        .where(WithdrawalRequest.id == request_id, WithdrawalRequest.status == source)
        .values(status=target, updated_at=func.now(), **values)
        .returning(WithdrawalRequest.id)
        .execution_options(synchronize_session=False)
    )
    moved = (await session.execute(stmt)).scalar_one_or_none()
    if moved is None:
        await session.rollback()
        current = await get_withdrawal(request_id, session)
        raise InvalidTransition(current.status, target)
    return await get_withdrawal(request_id, session)

def _status_event(request: WithdrawalRequest, session: AsyncSession) -> None:
    record_event(
        request.id,
        WITHDRAWAL_STATUS_CHANGED,
        {
            "withdrawal_id": request.id,
            "user_id": request.user_id,
            "amount": request.amount,
            "status": request.status,
        },
        session,
    )

async def approve_withdrawal(
    request_id: UUID,
    session: AsyncSession
) -> WithdrawalRequest:
    """
    pending -> approved, debiting the wallet in the same transaction. If the
    balance no longer covers the amount nothing changes, the request stays
    pending and InsufficientFunds is raised.
    """
    request = await _transition(
        request_id, WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED, session,
        processed_at=func.now(),
    )
    try:
        result = await ledger.debit(request.user_id, request.amount, session)
        if result == ledger.DebitResult.INSUFFICIENT:
            await session.rollback()
            raise InsufficientFunds()
        _status_event(request, session)
        await session.commit()
    except InsufficientFunds:
        logger.warning("[Withdrawals] Request %s left pending: insufficient balance", request_id)
        raise
    except Exception:
        await session.rollback()
        raise

    logger.info("[Withdrawals] Request %s approved, %s debited from %s",
                request_id, request.amount, request.user_id)
    return await get_withdrawal(request_id, session)

async def reject_withdrawal(
    request_id: UUID,
    session: AsyncSession
) -> WithdrawalRequest:
    request = await _transition(
        request_id, WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED, session,
        processed_at=func.now(),
    )
    _status_event(request, session)
    await session.commit()
    logger.info("[Withdrawals] Request %s rejected", request_id)
    return request

async def mark_processed(
    request_id: UUID,
    session: AsyncSession
) -> WithdrawalRequest:
    """approved -> processed once the payout has settled. No ledger effect."""
    request = await _transition(
        request_id, WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSED, session,
        settled_at=func.now(),
    )
    _status_event(request, session)
    await session.commit()
    logger.info("[Withdrawals] Request %s settled", request_id)
    return request
