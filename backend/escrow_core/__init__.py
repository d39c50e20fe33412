"""
Escrow Ledger Core
"""
from .errors import (
    LedgerError,
    NotFoundError,
    InvalidTransactionTypeError,
    InvalidTransactionStateError,
    AlreadyTerminalError,
    InvalidAmountError,
    InsufficientEscrowError,
    UnauthorizedError,
    TransientStoreError
)

from .financial_precision import (
    to_decimal,
    round_financial,
    to_decimal128,
    validate_non_negative,
    validate_positive,
    subtract_with_floor
)

from .domain import (
    TransactionType,
    TransactionStatus,
    ActorRole,
    LedgerDirection,
    FinancialTransaction,
    TransactionDraft,
    LedgerEntry,
    ProjectBalance,
    ProjectContext,
    ProjectProfessionalLink,
    FinancialSummary,
    EscrowStatement,
    ReconciliationReport,
    AdvanceApprovalResult,
    AwardResult
)

from .resilience import (
    RetryPolicy,
    retry_with_backoff,
    resilient
)

from .ledger import EscrowLedger
from .lifecycle_engine import TransactionLifecycleEngine
from .summary import FinancialSummaryAggregator
from .notifier import BestEffortNotifier, ChatCollaborator, EmailCollaborator
from .integrity_job import EscrowIntegrityJob, run_integrity_check
from .wiring import EscrowServices, build_services, build_memory_services, build_mongo_services

__all__ = [
    # Errors
    'LedgerError',
    'NotFoundError',
    'InvalidTransactionTypeError',
    'InvalidTransactionStateError',
    'AlreadyTerminalError',
    'InvalidAmountError',
    'InsufficientEscrowError',
    'UnauthorizedError',
    'TransientStoreError',
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_decimal128',
    'validate_non_negative',
    'validate_positive',
    'subtract_with_floor',
    # Domain
    'TransactionType',
    'TransactionStatus',
    'ActorRole',
    'LedgerDirection',
    'FinancialTransaction',
    'TransactionDraft',
    'LedgerEntry',
    'ProjectBalance',
    'ProjectContext',
    'ProjectProfessionalLink',
    'FinancialSummary',
    'EscrowStatement',
    'ReconciliationReport',
    'AdvanceApprovalResult',
    'AwardResult',
    # Resilience
    'RetryPolicy',
    'retry_with_backoff',
    'resilient',
    # Services
    'EscrowLedger',
    'TransactionLifecycleEngine',
    'FinancialSummaryAggregator',
    'BestEffortNotifier',
    'ChatCollaborator',
    'EmailCollaborator',
    'EscrowIntegrityJob',
    'run_integrity_check',
    'EscrowServices',
    'build_services',
    'build_memory_services',
    'build_mongo_services',
]
