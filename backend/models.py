from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal

from escrow_core import ActorRole, TransactionStatus, TransactionType

# ============================================
# FINANCIAL TRANSACTION REQUESTS
# ============================================
class TransactionCreate(BaseModel):
    project_id: str
    type: TransactionType
    description: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)
    project_professional_id: Optional[str] = None
    notes: Optional[str] = None
    requested_by: Optional[str] = None
    requested_by_role: Optional[ActorRole] = None  # Defaults to the caller's role
    action_by: Optional[str] = None
    action_by_role: Optional[ActorRole] = None
    status: Optional[TransactionStatus] = None  # Defaults per transaction type
    action_complete: Optional[bool] = None


class AdvancePaymentRequestCreate(BaseModel):
    amount: Decimal = Field(gt=0)


class AdvancePaymentReject(BaseModel):
    reason: Optional[str] = None


class QuoteAward(BaseModel):
    amount: Decimal = Field(gt=0)


class TransactionUpdate(BaseModel):
    description: Optional[str] = None
    notes: Optional[str] = None
