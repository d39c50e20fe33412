from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from escrow_core.financial_precision import validate_non_negative, validate_positive, ZERO


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================
# ENUMERATIONS
# ============================================
class TransactionType(str, Enum):
    QUOTATION_ACCEPTED = "quotation_accepted"
    ESCROW_DEPOSIT_REQUEST = "escrow_deposit_request"
    ESCROW_DEPOSIT = "escrow_deposit"
    ESCROW_DEPOSIT_CONFIRMATION = "escrow_deposit_confirmation"
    PAYMENT_REQUEST = "payment_request"
    ADVANCE_PAYMENT_APPROVAL = "advance_payment_approval"
    ADVANCE_PAYMENT_REJECTION = "advance_payment_rejection"
    RELEASE_PAYMENT = "release_payment"


class TransactionStatus(str, Enum):
    INFO = "info"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class ActorRole(str, Enum):
    CLIENT = "client"
    PROFESSIONAL = "professional"
    ADMIN = "admin"
    PLATFORM = "platform"


class LedgerDirection(str, Enum):
    CREDIT = "credit"  # funds entering escrow
    DEBIT = "debit"    # funds leaving escrow


# ============================================
# FINANCIAL TRANSACTION
# ============================================
class FinancialTransaction(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    project_professional_id: Optional[str] = None
    type: TransactionType
    description: str
    notes: Optional[str] = None
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    requested_by: Optional[str] = None
    requested_by_role: Optional[ActorRole] = None
    action_by: Optional[str] = None  # None: any admin may act
    action_by_role: Optional[ActorRole] = None
    action_at: Optional[datetime] = None
    action_complete: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v):
        return validate_non_negative(v, "amount")

    @model_validator(mode="after")
    def _info_is_terminal(self):
        if self.status == TransactionStatus.INFO and not self.action_complete:
            raise ValueError("Informational transactions must be action_complete")
        return self


class TransactionDraft(BaseModel):
    """Caller input for creating a transaction; status/action_complete default per type."""
    project_id: str
    type: TransactionType
    description: str
    amount: Decimal
    project_professional_id: Optional[str] = None
    notes: Optional[str] = None
    requested_by: Optional[str] = None
    requested_by_role: Optional[ActorRole] = None
    action_by: Optional[str] = None
    action_by_role: Optional[ActorRole] = None
    status: Optional[TransactionStatus] = None
    action_complete: Optional[bool] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v):
        return validate_non_negative(v, "amount")


# ============================================
# LEDGER ENTRY (APPEND ONLY)
# ============================================
class LedgerEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    project_professional_id: Optional[str] = None
    transaction_id: str
    direction: LedgerDirection
    amount: Decimal
    currency: str
    description: str
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v):
        return validate_positive(v, "amount")

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == LedgerDirection.CREDIT else -self.amount


# ============================================
# PROJECT BALANCE & DIRECTORY RECORDS
# ============================================
class ProjectBalance(BaseModel):
    project_id: str
    escrow_held: Decimal = ZERO
    escrow_required: Decimal = ZERO
    approved_budget: Decimal = ZERO
    escrow_held_updated_at: Optional[datetime] = None

    @field_validator("escrow_held", "escrow_required", "approved_budget", mode="before")
    @classmethod
    def _coerce_money(cls, v):
        return validate_non_negative(v if v is not None else 0, "balance")


class ProjectContext(BaseModel):
    project_id: str
    project_name: str
    client_id: Optional[str] = None
    client_email: Optional[str] = None


class ProjectProfessionalLink(BaseModel):
    id: str
    project_id: str
    professional_id: str
    professional_name: Optional[str] = None
    professional_email: Optional[str] = None


# ============================================
# READ MODELS
# ============================================
class TransactionTotal(BaseModel):
    """One row of the (type, status) aggregation."""
    type: TransactionType
    status: TransactionStatus
    total: Decimal = ZERO


class FinancialSummary(BaseModel):
    project_id: str
    total_escrow: Decimal = ZERO
    escrow_confirmed: Decimal = ZERO
    advance_payment_requested: Decimal = ZERO
    advance_payment_approved: Decimal = ZERO
    payments_released: Decimal = ZERO
    transactions: List[FinancialTransaction] = Field(default_factory=list)


class EscrowStatement(BaseModel):
    project_id: str
    currency: str
    ledger: List[LedgerEntry] = Field(default_factory=list)
    balance: Decimal = ZERO
    required: Decimal = ZERO
    approved_budget: Decimal = ZERO
    ledger_balance: Decimal = ZERO
    balance_updated_at: Optional[datetime] = None


class ReconciliationReport(BaseModel):
    project_id: str
    escrow_held: Decimal
    ledger_balance: Decimal
    difference: Decimal
    entry_count: int
    consistent: bool
    checked_at: datetime = Field(default_factory=lambda: datetime.utcnow())


class AdvanceApprovalResult(BaseModel):
    updated: FinancialTransaction
    release_payment_tx: FinancialTransaction


class AwardResult(BaseModel):
    quotation: FinancialTransaction
    escrow_deposit_request: FinancialTransaction
