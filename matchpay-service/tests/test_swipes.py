import asyncio
import uuid
from decimal import Decimal

import pytest

from app import profiles, swipes
from app.models import Conversation, Direction, Swipe
from app.payments import parse_reference
from app.swipes import SwipeDecision


@pytest.mark.asyncio
async def test_left_swipe_is_free_and_recorded(make_profile, session, count_rows, read_quota):
    swiper = await make_profile("male", quota=0)
    target = await make_profile("female")

    outcome = await swipes.evaluate_swipe(swiper, target, Direction.LEFT, session)

    assert outcome.decision == SwipeDecision.FREE
    assert outcome.swipe_id is not None
    assert outcome.conversation_id is None
    assert await count_rows(Swipe, Swipe.direction == Direction.LEFT) == 1
    assert await count_rows(Conversation) == 0
    assert await read_quota(swiper) == 0


@pytest.mark.asyncio
async def test_self_swipe_is_blocked(make_profile, session, count_rows):
    me = await make_profile("male")
    outcome = await swipes.evaluate_swipe(me, me, Direction.RIGHT, session)
    assert outcome.decision == SwipeDecision.BLOCKED
    assert await count_rows(Swipe) == 0


@pytest.mark.asyncio
async def test_swipe_on_blocked_profile_is_blocked_before_quota(make_profile, session, read_quota, count_rows):
    swiper = await make_profile("male", quota=2)
    target = await make_profile("female", blocked=True)

    outcome = await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)

    assert outcome.decision == SwipeDecision.BLOCKED
    assert await read_quota(swiper) == 2
    assert await count_rows(Swipe) == 0


@pytest.mark.asyncio
async def test_blocked_swiper_cannot_swipe(make_profile, session):
    swiper = await make_profile("male", blocked=True)
    target = await make_profile("female")
    outcome = await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)
    assert outcome.decision == SwipeDecision.BLOCKED


@pytest.mark.asyncio
async def test_unknown_profile_raises(make_profile, session):
    swiper = await make_profile("male")
    with pytest.raises(profiles.UnknownProfile):
        await swipes.evaluate_swipe(swiper, uuid.uuid4(), Direction.RIGHT, session)


@pytest.mark.asyncio
async def test_quota_exempt_right_swipe_is_free_without_quota(make_profile, session, count_rows):
    swiper = await make_profile("female")
    target = await make_profile("male")

    outcome = await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)

    assert outcome.decision == SwipeDecision.FREE
    assert outcome.free_swipes_remaining is None
    assert outcome.conversation_id is not None
    assert await count_rows(Conversation) == 1


@pytest.mark.asyncio
async def test_quota_runs_out_then_payment_is_required(make_profile, session_factory, count_rows, read_quota):
    swiper = await make_profile("male", quota=3)
    targets = [await make_profile("female") for _ in range(4)]

    outcomes = []
    for target in targets[:3]:
        async with session_factory() as session:
            outcomes.append(await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session))

    assert [o.decision for o in outcomes] == [SwipeDecision.FREE] * 3
    assert [o.free_swipes_remaining for o in outcomes] == [2, 1, 0]
    assert await read_quota(swiper) == 0
    assert await count_rows(Conversation) == 3

    async with session_factory() as session:
        fourth = await swipes.evaluate_swipe(swiper, targets[3], Direction.RIGHT, session)

    assert fourth.decision == SwipeDecision.PAID
    assert fourth.payment.amount == Decimal("500")
    assert fourth.payment.currency == "NGN"
    assert parse_reference(fourth.payment.tx_ref) == (swiper, targets[3])
    assert await count_rows(Swipe, Swipe.swiped_id == targets[3]) == 0
    assert await count_rows(Conversation) == 3
    assert await read_quota(swiper) == 0


@pytest.mark.asyncio
async def test_repeat_like_consumes_no_quota(make_profile, session_factory, count_rows, read_quota):
    swiper = await make_profile("male", quota=2)
    target = await make_profile("female")

    async with session_factory() as session:
        first = await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)
    async with session_factory() as session:
        again = await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)

    assert again.decision == SwipeDecision.FREE
    assert again.conversation_id == first.conversation_id
    assert again.swipe_id is None
    assert await read_quota(swiper) == 1
    assert await count_rows(Swipe) == 1


@pytest.mark.asyncio
async def test_concurrent_right_swipes_never_overspend_quota(make_profile, session_factory, count_rows, read_quota):
    quota, extra = 3, 4
    swiper = await make_profile("male", quota=quota)
    targets = [await make_profile("female") for _ in range(quota + extra)]

    async def swipe(target):
        async with session_factory() as session:
            return await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)

    outcomes = await asyncio.gather(*(swipe(t) for t in targets))
    decisions = [o.decision for o in outcomes]

    assert decisions.count(SwipeDecision.FREE) == quota
    assert decisions.count(SwipeDecision.PAID) == extra
    assert await read_quota(swiper) == 0
    assert await count_rows(Swipe, Swipe.swiper_id == swiper, Swipe.is_free.is_(True)) == quota


@pytest.mark.asyncio
async def test_discover_filters_seen_blocked_and_same_gender(make_profile, session_factory):
    me = await make_profile("male")
    fresh = await make_profile("female")
    seen = await make_profile("female")
    await make_profile("female", blocked=True)
    await make_profile("male")

    async with session_factory() as session:
        await swipes.evaluate_swipe(me, seen, Direction.LEFT, session)

    async with session_factory() as session:
        feed = await profiles.discover(me, session)

    assert [p.id for p in feed] == [fresh]


@pytest.mark.asyncio
@pytest.mark.parametrize("gender,quota", [("male", 3), ("female", None)])
async def test_concurrent_likes_of_same_target_write_one_swipe(gender, quota, make_profile, session_factory,
                                                              count_rows, read_quota):
    swiper = await make_profile(gender, quota=quota)
    target = await make_profile("male" if gender == "female" else "female")

    async def like():
        async with session_factory() as session:
            return await swipes.evaluate_swipe(swiper, target, Direction.RIGHT, session)

    outcomes = await asyncio.gather(like(), like(), like())

    assert [o.decision for o in outcomes] == [SwipeDecision.FREE] * 3
    assert len({o.conversation_id for o in outcomes}) == 1
    assert await count_rows(Swipe, Swipe.swiper_id == swiper, Swipe.swiped_id == target) == 1
    assert await count_rows(Conversation) == 1
    if quota is not None:
        assert await read_quota(swiper) == quota - 1
