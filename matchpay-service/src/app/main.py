import asyncio
import hmac
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
from app import ledger, matches, payments, profiles, schemas, swipes, withdrawals, workers
from app.config import settings
from app.db import engine, Base, get_session
from app.messaging import init_rabbit, close_rabbit
from app.provider import FlutterwaveClient, ProviderUnavailable, get_provider
import uvicorn

logger = logging.getLogger(__name__)
app = FastAPI(title="MatchPay Service")

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await init_rabbit()

    app.state.outbox_task = asyncio.create_task(workers.outbox_publisher())

@app.on_event("shutdown")
async def shutdown_event():
    app.state.outbox_task.cancel()
    await close_rabbit()

def current_user_id(x_user_id: UUID = Header(...)) -> UUID:
    """Identity asserted by the upstream auth gateway for this request."""
    return x_user_id

def _secret_matches(given: str | None, expected: str) -> bool:
    # compare_digest refuses non-ASCII str
    if not expected or not given:
        return False
    return hmac.compare_digest(given.encode(), expected.encode())

def verify_operator_key(x_operator_key: str = Header(...)) -> None:
    if not _secret_matches(x_operator_key, settings.OPERATOR_API_KEY):
        raise HTTPException(status_code=403, detail="Operator access required")

# Profiles & discovery

@app.post("/profiles", response_model=schemas.ProfileRead, status_code=201,
          dependencies=[Depends(verify_operator_key)])
async def create_profile(
    profile_in: schemas.ProfileCreate,
    session: AsyncSession = Depends(get_session)
):
    try:
        return await profiles.create_profile(
            profile_in.user_id, profile_in.gender, session,
            display_name=profile_in.display_name,
            free_swipe_quota=profile_in.free_swipe_quota,
        )
    except profiles.ProfileExistsError:
        raise HTTPException(status_code=409, detail="Profile already exists")

@app.get("/discover", response_model=list[schemas.ProfileRead])
async def discover(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    try:
        return await profiles.discover(user_id, session)
    except profiles.UnknownProfile:
        raise HTTPException(status_code=404, detail="Profile not found")

# Swipes

@app.post("/swipes", response_model=schemas.SwipeResult)
async def swipe(
    swipe_in: schemas.SwipeRequest,
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    try:
        outcome = await swipes.evaluate_swipe(user_id, swipe_in.swiped_id, swipe_in.direction, session)
    except profiles.UnknownProfile as e:
        raise HTTPException(status_code=404, detail=str(e))
    return outcome

# Payments

@app.post("/payment/verify", response_model=schemas.VerifyResult)
async def verify_payment(
    verify_in: schemas.VerifyRequest,
    session: AsyncSession = Depends(get_session),
    provider: FlutterwaveClient = Depends(get_provider)
):
    try:
        result = await payments.confirm(verify_in.transaction_ref, None, verify_in.amount, provider, session)
    except ProviderUnavailable as e:
        return JSONResponse(status_code=503, content={"success": False, "error": str(e)})
    except SQLAlchemyError as e:
        logger.error("[Verify] Transient failure for %s: %s", verify_in.transaction_ref, e)
        return JSONResponse(status_code=503, content={"success": False, "error": "Temporarily unavailable, retry"})

    if result.outcome == payments.ConfirmOutcome.REJECTED:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Payment verification failed: {result.reason}"},
        )
    return schemas.VerifyResult(
        success=True,
        transaction_id=result.transaction_id,
        conversation_id=result.conversation_id,
        already_processed=result.outcome == payments.ConfirmOutcome.ALREADY_PROCESSED,
    )

@app.post("/payment/webhook")
async def payment_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    provider: FlutterwaveClient = Depends(get_provider)
):
    """
    Flutterwave charge notifications. Business outcomes, rejections included,
    are acknowledged with 200 so the provider stops redelivering; only a bad
    signature, an unreadable body or a transient failure answer otherwise.
    """
    if not _secret_matches(request.headers.get("verif-hash"), settings.FLUTTERWAVE_WEBHOOK_HASH):
        logger.warning("[Webhook] Rejected delivery with invalid signature")
        return JSONResponse(status_code=401, content={"status": "unauthorized"})

    try:
        payload = json.loads(await request.body())
    except ValueError:
        return JSONResponse(status_code=400, content={"status": "invalid payload"})
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        return JSONResponse(status_code=400, content={"status": "invalid payload"})

    data = payload["data"]
    tx_ref = data.get("tx_ref")
    if (
        payload.get("event") != "charge.completed"
        or data.get("status") != "successful"
        or not isinstance(tx_ref, str)
        or not payments.is_swipe_reference(tx_ref)
    ):
        logger.info("[Webhook] Ignoring %s for %s", payload.get("event"), tx_ref)
        return {"status": "ignored"}

    try:
        declared_amount = Decimal(str(data.get("amount")))
    except InvalidOperation:
        declared_amount = None
    charge_id = str(data["id"]) if data.get("id") is not None else None

    try:
        result = await payments.confirm(tx_ref, charge_id, declared_amount, provider, session)
    except (ProviderUnavailable, SQLAlchemyError) as e:
        logger.error("[Webhook] Transient failure for %s: %s", tx_ref, e)
        return JSONResponse(status_code=503, content={"status": "retry"})

    logger.info("[Webhook] %s -> %s", tx_ref, result.outcome)
    return {"status": "success", "outcome": result.outcome}

# Wallet

@app.get("/wallet", response_model=schemas.WalletRead)
async def get_wallet(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    wallet = await ledger.get_wallet(user_id, session)
    if not wallet:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return wallet

@app.get("/wallet/transactions", response_model=list[schemas.TransactionRead])
async def wallet_transactions(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    return await ledger.list_transactions(user_id, session)

# Withdrawals

@app.post("/withdrawals", response_model=schemas.WithdrawalRead, status_code=201)
async def create_withdrawal(
    withdrawal_in: schemas.WithdrawalCreate,
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    try:
        return await withdrawals.create_withdrawal(
            user_id,
            withdrawal_in.amount,
            withdrawal_in.bank_name,
            withdrawal_in.account_number,
            withdrawal_in.account_name,
            session,
        )
    except withdrawals.InvalidWithdrawal as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/withdrawals/mine", response_model=list[schemas.WithdrawalRead])
async def my_withdrawals(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    return await withdrawals.list_withdrawals(session, user_id=user_id)

@app.get("/withdrawals", response_model=list[schemas.WithdrawalRead],
         dependencies=[Depends(verify_operator_key)])
async def list_withdrawals(
    status: str | None = None,
    session: AsyncSession = Depends(get_session)
):
    return await withdrawals.list_withdrawals(session, status=status)

async def _operator_transition(action, request_id: UUID, session: AsyncSession):
    try:
        return await action(request_id, session)
    except withdrawals.WithdrawalNotFound:
        raise HTTPException(status_code=404, detail="Withdrawal request not found")
    except withdrawals.InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except withdrawals.InsufficientFunds:
        raise HTTPException(status_code=409, detail="Insufficient balance; request left pending")

@app.post("/withdrawals/{request_id}/approve", response_model=schemas.WithdrawalRead,
          dependencies=[Depends(verify_operator_key)])
async def approve_withdrawal(request_id: UUID, session: AsyncSession = Depends(get_session)):
    return await _operator_transition(withdrawals.approve_withdrawal, request_id, session)

@app.post("/withdrawals/{request_id}/reject", response_model=schemas.WithdrawalRead,
          dependencies=[Depends(verify_operator_key)])
async def reject_withdrawal(request_id: UUID, session: AsyncSession = Depends(get_session)):
    return await _operator_transition(withdrawals.reject_withdrawal, request_id, session)

@app.post("/withdrawals/{request_id}/process", response_model=schemas.WithdrawalRead,
          dependencies=[Depends(verify_operator_key)])
async def process_withdrawal(request_id: UUID, session: AsyncSession = Depends(get_session)):
    return await _operator_transition(withdrawals.mark_processed, request_id, session)

# Conversations

@app.get("/conversations", response_model=list[schemas.ConversationRead])
async def list_conversations(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session)
):
    return await matches.list_conversations(user_id, session)

@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
