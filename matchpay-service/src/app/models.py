import uuid
from sqlalchemy import (
    Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, JSON, Numeric,
    String, Text, TIMESTAMP, UniqueConstraint, Uuid, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from app.db import Base

class Gender:
    MALE = "male"
    FEMALE = "female"

class Direction:
    LEFT = "left"
    RIGHT = "right"

class TransactionStatus:
    COMPLETED = "completed"
    FAILED = "failed"

class WithdrawalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"

Payload = JSON().with_variant(JSONB(), "postgresql")

class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("free_swipe_quota >= 0", name="ck_profiles_quota_non_negative"),
    )

    id               = Column(Uuid(as_uuid=True), primary_key=True)
    gender           = Column(String(10), nullable=False)
    display_name     = Column(String(120), nullable=True)
    free_swipe_quota = Column(Integer, nullable=False, default=0)
    is_blocked       = Column(Boolean, nullable=False, default=False)
    created_at       = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at       = Column(TIMESTAMP(timezone=True), onupdate=func.now())

class Swipe(Base):
    __tablename__ = "swipes"
    __table_args__ = (
        Index("ix_swipes_swiper_swiped", "swiper_id", "swiped_id"),
    )

    id              = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    swiper_id       = Column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    swiped_id       = Column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    direction       = Column(String(5), nullable=False)
    is_free         = Column(Boolean, nullable=False, default=True)
    is_paid         = Column(Boolean, nullable=False, default=False)
    transaction_id  = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=True)
    transaction_ref = Column(String(200), nullable=True)
    created_at      = Column(TIMESTAMP(timezone=True), server_default=func.now())

class Transaction(Base):
    __tablename__ = "transactions"

    id                 = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payer_id           = Column(Uuid(as_uuid=True), nullable=False, index=True)
    recipient_id       = Column(Uuid(as_uuid=True), nullable=False, index=True)
    type               = Column(String(30), nullable=False, default="swipe_payment")
    amount             = Column(Numeric(18, 2), nullable=False)
    platform_fee       = Column(Numeric(18, 2), nullable=False)
    recipient_earning  = Column(Numeric(18, 2), nullable=False)
    currency           = Column(String(3), nullable=False)
    status             = Column(String(20), nullable=False)
    provider_ref       = Column(String(200), nullable=False, unique=True)
    provider_charge_id = Column(String(100), nullable=True)
    created_at         = Column(TIMESTAMP(timezone=True), server_default=func.now())

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_wallets_earned_non_negative"),
        CheckConstraint("total_withdrawn >= 0", name="ck_wallets_withdrawn_non_negative"),
        CheckConstraint("balance = total_earned - total_withdrawn", name="ck_wallets_ledger_identity"),
    )

    user_id         = Column(Uuid(as_uuid=True), primary_key=True)
    balance         = Column(Numeric(18, 2), nullable=False, default=0)
    total_earned    = Column(Numeric(18, 2), nullable=False, default=0)
    total_withdrawn = Column(Numeric(18, 2), nullable=False, default=0)
    created_at      = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at      = Column(TIMESTAMP(timezone=True), onupdate=func.now())

class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant_1", "participant_2", name="uq_conversations_pair"),
        CheckConstraint("participant_1 < participant_2", name="ck_conversations_ordered_pair"),
    )

    id              = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_1   = Column(Uuid(as_uuid=True), nullable=False, index=True)
    participant_2   = Column(Uuid(as_uuid=True), nullable=False, index=True)
    last_message    = Column(Text, nullable=True)
    last_message_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at      = Column(TIMESTAMP(timezone=True), server_default=func.now())

class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id             = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id        = Column(Uuid(as_uuid=True), nullable=False, index=True)
    amount         = Column(Numeric(18, 2), nullable=False)
    bank_name      = Column(String(120), nullable=False)
    account_number = Column(String(30), nullable=False)
    account_name   = Column(String(120), nullable=False)
    status         = Column(String(20), nullable=False, default=WithdrawalStatus.PENDING)
    processed_at   = Column(TIMESTAMP(timezone=True), nullable=True)
    settled_at     = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at     = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at     = Column(TIMESTAMP(timezone=True), onupdate=func.now())

class OutboxEvent(Base):
    __tablename__ = "matchpay_outbox"

    id           = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    aggregate_id = Column(Uuid(as_uuid=True), nullable=False)
    event_type   = Column(String(50), nullable=False)
    payload      = Column(Payload, nullable=False)
    created_at   = Column(TIMESTAMP(timezone=True), server_default=func.now())
    published_at = Column(TIMESTAMP(timezone=True), nullable=True)
