import asyncio
from decimal import Decimal

import pytest

from app import ledger
from app.models import Transaction


def assert_ledger_identity(wallet):
    assert wallet.balance == wallet.total_earned - wallet.total_withdrawn
    assert wallet.balance >= 0


@pytest.mark.asyncio
async def test_credit_increments_balance_and_total_earned(make_profile, session_factory, read_wallet):
    user_id = await make_profile("female")

    async with session_factory() as session:
        new_balance = await ledger.credit(user_id, Decimal("250"), session)
        await session.commit()

    assert new_balance == Decimal("250")
    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("250")
    assert wallet.total_earned == Decimal("250")
    assert wallet.total_withdrawn == Decimal("0")


@pytest.mark.asyncio
async def test_credit_creates_missing_wallet(make_profile, session_factory, read_wallet):
    # Quota-bound profiles are provisioned without a wallet
    user_id = await make_profile("male")
    assert await read_wallet(user_id) is None

    async with session_factory() as session:
        await ledger.credit(user_id, Decimal("250"), session)
        await session.commit()

    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("250")
    assert_ledger_identity(wallet)


@pytest.mark.asyncio
async def test_credit_rejects_non_positive_amount(make_profile, session):
    user_id = await make_profile("female")
    with pytest.raises(ValueError):
        await ledger.credit(user_id, Decimal("0"), session)


@pytest.mark.asyncio
async def test_debit_ok_moves_amount_to_total_withdrawn(make_profile, fund_wallet, session_factory, read_wallet):
    user_id = await make_profile("female")
    await fund_wallet(user_id, 1000)

    async with session_factory() as session:
        result = await ledger.debit(user_id, Decimal("400"), session)
        await session.commit()

    assert result == ledger.DebitResult.OK
    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("600")
    assert wallet.total_withdrawn == Decimal("400")
    assert_ledger_identity(wallet)


@pytest.mark.asyncio
async def test_debit_over_balance_is_insufficient_and_changes_nothing(make_profile, fund_wallet, session_factory, read_wallet):
    user_id = await make_profile("female")
    await fund_wallet(user_id, 1000)

    async with session_factory() as session:
        result = await ledger.debit(user_id, Decimal("1500"), session)
        await session.commit()

    assert result == ledger.DebitResult.INSUFFICIENT
    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("1000")
    assert wallet.total_withdrawn == Decimal("0")


@pytest.mark.asyncio
async def test_debit_without_wallet_is_insufficient(make_profile, session):
    user_id = await make_profile("male")
    assert await ledger.debit(user_id, Decimal("100"), session) == ledger.DebitResult.INSUFFICIENT


@pytest.mark.asyncio
async def test_concurrent_credits_all_land(make_profile, session_factory, read_wallet):
    user_id = await make_profile("female")

    async def one_credit():
        async with session_factory() as session:
            await ledger.credit(user_id, Decimal("250"), session)
            await session.commit()

    await asyncio.gather(*(one_credit() for _ in range(8)))

    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("2000")
    assert wallet.total_earned == Decimal("2000")
    assert_ledger_identity(wallet)


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(make_profile, fund_wallet, session_factory, read_wallet):
    user_id = await make_profile("female")
    await fund_wallet(user_id, 1000)

    async def one_debit():
        async with session_factory() as session:
            result = await ledger.debit(user_id, Decimal("300"), session)
            await session.commit()
            return result

    results = await asyncio.gather(*(one_debit() for _ in range(5)))

    assert results.count(ledger.DebitResult.OK) == 3
    assert results.count(ledger.DebitResult.INSUFFICIENT) == 2
    wallet = await read_wallet(user_id)
    assert wallet.balance == Decimal("100")
    assert wallet.total_withdrawn == Decimal("900")
    assert_ledger_identity(wallet)


@pytest.mark.asyncio
async def test_list_transactions_only_returns_own_earnings(make_profile, session_factory):
    payer = await make_profile("male")
    recipient = await make_profile("female")
    other = await make_profile("female")

    async with session_factory() as session:
        for tx_ref, to in (("CD_a", recipient), ("CD_b", recipient), ("CD_c", other)):
            session.add(Transaction(
                payer_id=payer, recipient_id=to, amount=Decimal("500"),
                platform_fee=Decimal("250"), recipient_earning=Decimal("250"),
                currency="NGN", status="completed", provider_ref=tx_ref,
            ))
        await session.commit()

    async with session_factory() as session:
        history = await ledger.list_transactions(recipient, session)

    assert {tx.provider_ref for tx in history} == {"CD_a", "CD_b"}
