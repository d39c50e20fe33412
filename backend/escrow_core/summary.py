"""
FINANCIAL SUMMARY AGGREGATOR

Derives per-project totals from a grouped (type, status) aggregation:

- total_escrow              = SUM(escrow_deposit), any status
- escrow_confirmed          = SUM(escrow_deposit, confirmed)
                              + SUM(escrow_deposit_confirmation, confirmed)
- advance_payment_requested = SUM(payment_request), any status
- advance_payment_approved  = SUM(advance_payment_approval, confirmed)
- payments_released         = SUM(release_payment, confirmed)

Unconfirmed deposits never count as secured funds.
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional
import logging

from escrow_core.domain import (
    FinancialSummary, TransactionStatus, TransactionTotal, TransactionType
)
from escrow_core.financial_precision import round_financial, ZERO
from escrow_core.resilience import RetryPolicy, retry_with_backoff
from escrow_core.stores import TransactionStore, PROJECT_TRANSACTIONS_LIMIT

logger = logging.getLogger(__name__)


def summarize_totals(rows: Iterable[TransactionTotal]) -> Dict[str, Decimal]:
    totals = {
        "total_escrow": ZERO,
        "escrow_confirmed": ZERO,
        "advance_payment_requested": ZERO,
        "advance_payment_approved": ZERO,
        "payments_released": ZERO,
    }
    confirmed = TransactionStatus.CONFIRMED

    for row in rows:
        amount = row.total or ZERO
        if row.type == TransactionType.ESCROW_DEPOSIT:
            totals["total_escrow"] += amount
            if row.status == confirmed:
                totals["escrow_confirmed"] += amount
        elif row.type == TransactionType.ESCROW_DEPOSIT_CONFIRMATION:
            if row.status == confirmed:
                totals["escrow_confirmed"] += amount
        elif row.type == TransactionType.PAYMENT_REQUEST:
            totals["advance_payment_requested"] += amount
        elif row.type == TransactionType.ADVANCE_PAYMENT_APPROVAL:
            if row.status == confirmed:
                totals["advance_payment_approved"] += amount
        elif row.type == TransactionType.RELEASE_PAYMENT:
            if row.status == confirmed:
                totals["payments_released"] += amount

    return {k: round_financial(v) for k, v in totals.items()}


class FinancialSummaryAggregator:

    def __init__(self, transaction_store: TransactionStore, retry_policy: Optional[RetryPolicy] = None):
        self.transaction_store = transaction_store
        self.retry_policy = retry_policy or RetryPolicy()

    async def get_project_financial_summary(self, project_id: str) -> FinancialSummary:
        transactions = await retry_with_backoff(
            lambda: self.transaction_store.list_for_project(project_id, limit=PROJECT_TRANSACTIONS_LIMIT),
            self.retry_policy,
            "get_project_transactions"
        )
        rows = await retry_with_backoff(
            lambda: self.transaction_store.aggregate_totals(project_id),
            self.retry_policy,
            "aggregate_project_transactions"
        )

        summary = FinancialSummary(
            project_id=project_id,
            transactions=transactions,
            **summarize_totals(rows)
        )
        logger.debug(
            f"[SUMMARY] project={project_id} escrow={summary.total_escrow} "
            f"confirmed={summary.escrow_confirmed} released={summary.payments_released}"
        )
        return summary
