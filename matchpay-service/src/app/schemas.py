from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional
from uuid import UUID
from datetime import datetime

class ProfileCreate(BaseModel):
    user_id: UUID
    gender: Literal["male", "female"]
    display_name: Optional[str] = None
    free_swipe_quota: Optional[int] = Field(None, ge=0)

class ProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    gender: str
    display_name: Optional[str]
    free_swipe_quota: int
    is_blocked: bool

class SwipeRequest(BaseModel):
    swiped_id: UUID
    direction: Literal["left", "right"]

class PaymentIntentRead(BaseModel):
    tx_ref: str
    amount: Decimal
    currency: str

class SwipeResult(BaseModel):
    decision: str
    swipe_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    free_swipes_remaining: Optional[int] = None
    payment: Optional[PaymentIntentRead] = None

class VerifyRequest(BaseModel):
    transaction_ref: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, description="Amount the client believes it paid; informational only")

class VerifyResult(BaseModel):
    success: bool
    transaction_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    already_processed: bool = False
    error: Optional[str] = None

class WalletRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    updated_at: Optional[datetime]

class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payer_id: UUID
    recipient_id: UUID
    type: str
    amount: Decimal
    platform_fee: Decimal
    recipient_earning: Decimal
    currency: str
    status: str
    provider_ref: str
    created_at: Optional[datetime]

class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Amount to pay out")
    bank_name: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=6, max_length=30)
    account_name: str = Field(..., min_length=1)

class WithdrawalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    amount: Decimal
    bank_name: str
    account_number: str
    account_name: str
    status: str
    processed_at: Optional[datetime]
    settled_at: Optional[datetime]
    created_at: Optional[datetime]

class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    participant_1: UUID
    participant_2: UUID
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    created_at: Optional[datetime]
