import logging
from typing import List
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app import ledger
from app.config import settings
from app.models import Gender, Profile, Swipe

logger = logging.getLogger("matchpay.profiles")

class ProfileExistsError(Exception):
    pass

class UnknownProfile(Exception):
    def __init__(self, user_id: UUID):
        super().__init__(f"Profile {user_id} not found")
        self.user_id = user_id

def is_quota_bound(profile: Profile) -> bool:
    return profile.gender == settings.QUOTA_BOUND_GENDER

async def create_profile(
    user_id: UUID,
    gender: str,
    session: AsyncSession,
    display_name: str | None = None,
    free_swipe_quota: int | None = None
) -> Profile:
    """
    Provisions a profile for an identity issued elsewhere. Quota-bound users
    start with the default free allowance, everyone else gets a wallet.
    """
    profile = Profile(
        id=user_id,
        gender=gender,
        display_name=display_name,
        is_blocked=False,
    )
    if gender == settings.QUOTA_BOUND_GENDER:
        profile.free_swipe_quota = (
            settings.DEFAULT_FREE_SWIPES if free_swipe_quota is None else free_swipe_quota
        )
    else:
        profile.free_swipe_quota = 0
    session.add(profile)
    try:
        await session.flush()
        if gender != settings.QUOTA_BOUND_GENDER:
            await ledger.create_wallet(user_id, session)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ProfileExistsError()
    await session.refresh(profile)
    logger.info("[Profiles] Provisioned %s profile %s", gender, user_id)
    return profile

async def get_profile(
    user_id: UUID,
    session: AsyncSession
) -> Profile:
    profile = await session.get(Profile, user_id, populate_existing=True)
    if not profile:
        raise UnknownProfile(user_id)
    return profile

async def discover(
    user_id: UUID,
    session: AsyncSession,
    limit: int | None = None
) -> List[Profile]:
    """
    Opposite-gender, unblocked profiles the user has not swiped on yet.
    """
    profile = await get_profile(user_id, session)
    target_gender = Gender.FEMALE if profile.gender == Gender.MALE else Gender.MALE
    already_seen = select(Swipe.swiped_id).where(Swipe.swiper_id == user_id)

    result = await session.execute(
        select(Profile)
        .where(
            Profile.gender == target_gender,
            Profile.is_blocked.is_(False),
            Profile.id != user_id,
            Profile.id.not_in(already_seen),
        )
        .order_by(Profile.created_at.desc())
        .limit(limit or settings.DISCOVER_LIMIT)
    )
    return result.scalars().all()
