import logging
from typing import List, Tuple
from uuid import UUID
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import insert_for
from app.events import record_event, CONVERSATION_CREATED
from app.models import Conversation

logger = logging.getLogger("matchpay.matches")

def canonical_pair(user_a: UUID, user_b: UUID) -> Tuple[UUID, UUID]:
    if user_a == user_b:
        raise ValueError("a conversation needs two distinct users")
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)

async def ensure_conversation(
    user_a: UUID,
    user_b: UUID,
    session: AsyncSession
) -> UUID:
    """
    Find-or-create of the conversation for an unordered pair. The insert is
    guarded by the unique (participant_1, participant_2) index, so racing
    callers converge on one row. The caller owns the commit.
    """
    participant_1, participant_2 = canonical_pair(user_a, user_b)

    stmt = (
        insert_for(session, Conversation)
        .values(participant_1=participant_1, participant_2=participant_2)
        .on_conflict_do_nothing(index_elements=[Conversation.participant_1, Conversation.participant_2])
        .returning(Conversation.id)
    )
    conversation_id = (await session.execute(stmt)).scalar_one_or_none()

    if conversation_id is None:
        result = await session.execute(
            select(Conversation.id).where(
                Conversation.participant_1 == participant_1,
                Conversation.participant_2 == participant_2,
            )
        )
        return result.scalar_one()

    record_event(
        conversation_id,
        CONVERSATION_CREATED,
        {
            "conversation_id": conversation_id,
            "participant_1": participant_1,
            "participant_2": participant_2,
        },
        session,
    )
    logger.info("[Matches] Conversation %s created for %s/%s", conversation_id, participant_1, participant_2)
    return conversation_id

async def list_conversations(
    user_id: UUID,
    session: AsyncSession
) -> List[Conversation]:
    result = await session.execute(
        select(Conversation)
        .where(or_(Conversation.participant_1 == user_id, Conversation.participant_2 == user_id))
        .order_by(Conversation.last_message_at.desc().nulls_last(), Conversation.created_at.desc())
    )
    return result.scalars().all()
