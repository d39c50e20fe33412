"""
TRANSACTION LIFECYCLE ENGINE

State machine for project financial transactions:

    escrow_deposit            pending --confirm--> confirmed   (ledger credit)
    escrow_deposit_confirmation
    payment_request           pending --approve--> confirmed   (spawns release_payment)
                              pending --reject---> rejected
    release_payment           pending --release--> confirmed   (ledger debit)
    quotation_accepted        info (created terminal)

A transaction moves at most once to a terminal state. Acting on a
transaction that is already action-complete raises AlreadyTerminalError
(explicit conflict, never a silent re-apply).

Money-moving transitions go through EscrowLedger.post_movement (one atomic
unit). Plain creates/reads go through the resilient operation wrapper.
Notification hooks run after commit and never fail the operation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
import logging

from escrow_core.domain import (
    ActorRole, AdvanceApprovalResult, AwardResult, FinancialTransaction,
    TransactionDraft, TransactionStatus, TransactionType
)
from escrow_core.errors import (
    AlreadyTerminalError, InvalidTransactionStateError, NotFoundError, UnauthorizedError
)
from escrow_core.financial_precision import validate_positive
from escrow_core.ledger import EscrowLedger
from escrow_core.notifier import BestEffortNotifier
from escrow_core.resilience import RetryPolicy, resilient
from escrow_core.stores import (
    ProjectBalanceStore, ProjectDirectory, TransactionStore, UnitOfWork,
    PROJECT_TRANSACTIONS_LIMIT
)
from escrow_core.transaction_policy import (
    ADVANCE_REQUEST_TYPES, CONFIRMABLE_DEPOSIT_TYPES, RELEASABLE_TYPES,
    policy_for, require_type, resolve_initial_state
)

logger = logging.getLogger(__name__)

Amount = Union[int, float, str, Decimal]


class TransactionLifecycleEngine:

    def __init__(
        self,
        transaction_store: TransactionStore,
        balance_store: ProjectBalanceStore,
        directory: ProjectDirectory,
        unit_of_work: UnitOfWork,
        ledger: EscrowLedger,
        notifier: Optional[BestEffortNotifier] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.transaction_store = transaction_store
        self.balance_store = balance_store
        self.directory = directory
        self.unit_of_work = unit_of_work
        self.ledger = ledger
        self.notifier = notifier or BestEffortNotifier()
        self.retry_policy = retry_policy or RetryPolicy()

    # =========================================================================
    # RESILIENT STORE ACCESS
    # =========================================================================

    @resilient("create_transaction")
    async def _insert(self, transaction: FinancialTransaction) -> FinancialTransaction:
        return await self.transaction_store.insert(transaction)

    @resilient("get_transaction")
    async def _get(self, transaction_id: str) -> Optional[FinancialTransaction]:
        return await self.transaction_store.get(transaction_id)

    @resilient("get_project_transactions")
    async def _list(self, project_id: str, limit: int) -> List[FinancialTransaction]:
        return await self.transaction_store.list_for_project(project_id, limit=limit)

    @resilient("update_transaction")
    async def _update(self, transaction_id: str, changes: Dict[str, Any]) -> Optional[FinancialTransaction]:
        return await self.transaction_store.update(transaction_id, changes)

    @resilient("get_project")
    async def _get_project(self, project_id: str):
        return await self.directory.get_project(project_id)

    @resilient("get_project_professional")
    async def _get_link(self, link_id: str):
        return await self.directory.get_project_professional(link_id)

    # =========================================================================
    # CREATION
    # =========================================================================

    @staticmethod
    def build_transaction(draft: TransactionDraft) -> FinancialTransaction:
        """Apply the type policy to a draft. No I/O."""
        status, action_complete = resolve_initial_state(draft)
        return FinancialTransaction(
            project_id=draft.project_id,
            project_professional_id=draft.project_professional_id,
            type=draft.type,
            description=draft.description or policy_for(draft.type).default_description,
            notes=draft.notes,
            amount=draft.amount,
            status=status,
            requested_by=draft.requested_by,
            requested_by_role=draft.requested_by_role,
            action_by=draft.action_by,
            action_by_role=draft.action_by_role,
            action_complete=action_complete,
        )

    async def create_transaction(self, draft: TransactionDraft) -> FinancialTransaction:
        """Persist a new transaction. Creation never moves money."""
        transaction = await self._insert(self.build_transaction(draft))
        logger.info(
            f"[TRANSACTION] Created {transaction.type.value} {transaction.id} "
            f"project={transaction.project_id} amount={transaction.amount} status={transaction.status.value}"
        )
        return transaction

    async def create_escrow_deposit_request(
        self,
        project_id: str,
        amount: Amount,
        project_professional_id: Optional[str] = None,
        requested_by: Optional[str] = None
    ) -> FinancialTransaction:
        """Pending escrow_deposit the project's client is expected to fund."""
        project = await self._get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)

        return await self.create_transaction(self._escrow_deposit_draft(
            project_id, amount, project.client_id, project_professional_id, requested_by
        ))

    @staticmethod
    def _escrow_deposit_draft(project_id, amount, client_id, project_professional_id, requested_by):
        return TransactionDraft(
            project_id=project_id,
            project_professional_id=project_professional_id,
            type=TransactionType.ESCROW_DEPOSIT,
            description=policy_for(TransactionType.ESCROW_DEPOSIT).default_description,
            amount=amount,
            requested_by=requested_by,
            requested_by_role=ActorRole.PLATFORM,
            action_by=client_id,
            action_by_role=ActorRole.CLIENT,
        )

    async def create_advance_payment_request(
        self,
        project_professional_id: str,
        amount: Amount,
        requested_by: str
    ) -> FinancialTransaction:
        """Professional asks the client for an advance payment."""
        self._require_actor(requested_by)
        amount = validate_positive(amount, "amount")

        link = await self._get_link(project_professional_id)
        if link is None:
            raise NotFoundError("ProjectProfessional", project_professional_id)
        project = await self._get_project(link.project_id)
        if project is None:
            raise NotFoundError("Project", link.project_id)

        return await self.create_transaction(TransactionDraft(
            project_id=link.project_id,
            project_professional_id=project_professional_id,
            type=TransactionType.PAYMENT_REQUEST,
            description=policy_for(TransactionType.PAYMENT_REQUEST).default_description,
            amount=amount,
            requested_by=requested_by,
            requested_by_role=ActorRole.PROFESSIONAL,
            action_by=project.client_id,
            action_by_role=ActorRole.CLIENT,
        ))

    async def award_quote(
        self,
        project_professional_id: str,
        amount: Amount,
        awarded_by: str
    ) -> AwardResult:
        """
        Record an accepted quote: set the project's award terms, log an
        informational quotation_accepted record and request the escrow deposit,
        all in one unit of work.
        """
        self._require_actor(awarded_by)
        amount = validate_positive(amount, "amount")

        link = await self._get_link(project_professional_id)
        if link is None:
            raise NotFoundError("ProjectProfessional", project_professional_id)
        project = await self._get_project(link.project_id)
        if project is None:
            raise NotFoundError("Project", link.project_id)

        quotation = self.build_transaction(TransactionDraft(
            project_id=link.project_id,
            project_professional_id=link.id,
            type=TransactionType.QUOTATION_ACCEPTED,
            description=f"Quotation accepted from {link.professional_name or 'professional'}",
            amount=amount,
            requested_by=awarded_by,
            requested_by_role=ActorRole.CLIENT,
        ))
        deposit_request = self.build_transaction(self._escrow_deposit_draft(
            link.project_id, amount, project.client_id, link.id, awarded_by
        ))

        async with self.unit_of_work.atomic() as session:
            found = await self.balance_store.set_award_terms(
                link.project_id, amount, amount, session=session
            )
            if not found:
                raise NotFoundError("Project", link.project_id)
            await self.transaction_store.insert(quotation, session=session)
            await self.transaction_store.insert(deposit_request, session=session)

        logger.info(
            f"[TRANSACTION] Quote awarded: project={link.project_id} link={link.id} "
            f"amount={amount} deposit_request={deposit_request.id}"
        )
        await self.notifier.quote_awarded(link)
        return AwardResult(quotation=quotation, escrow_deposit_request=deposit_request)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_transaction(self, transaction_id: str) -> FinancialTransaction:
        transaction = await self._get(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    # =========================================================================
    # ANNOTATION
    # =========================================================================

    async def update_transaction(
        self,
        transaction_id: str,
        updated_by: str,
        description: Optional[str] = None,
        notes: Optional[str] = None
    ) -> FinancialTransaction:
        """
        Admin edit of a transaction's description and notes.

        Status, amount and action fields only change through the lifecycle
        transitions.
        """
        self._require_actor(updated_by)
        changes: Dict[str, Any] = {}
        if description is not None:
            if not description.strip():
                raise InvalidTransactionStateError("Description cannot be empty")
            changes["description"] = description
        if notes is not None:
            changes["notes"] = notes
        if not changes:
            raise InvalidTransactionStateError("Nothing to update: supply description or notes")

        updated = await self._update(transaction_id, changes)
        if updated is None:
            raise NotFoundError("Transaction", transaction_id)

        logger.info(f"[TRANSACTION] Updated {updated.id} fields={sorted(changes)} by {updated_by}")
        return updated

    async def get_project_transactions(
        self,
        project_id: str,
        limit: int = PROJECT_TRANSACTIONS_LIMIT
    ) -> List[FinancialTransaction]:
        """Newest first, bounded at 1000 rows."""
        return await self._list(project_id, min(limit, PROJECT_TRANSACTIONS_LIMIT))

    # =========================================================================
    # MONEY-MOVING TRANSITIONS
    # =========================================================================

    async def confirm_escrow_deposit(self, transaction_id: str, approved_by: str) -> FinancialTransaction:
        """
        Admin confirms funds arrived in escrow.

        ATOMIC: status=confirmed, ledger credit, escrow_held += amount.
        Then (best effort) chat message and funds-secure emails.
        """
        self._require_actor(approved_by)
        now = datetime.utcnow()

        updated, entry, balance = await self.ledger.post_movement(
            transaction_id,
            CONFIRMABLE_DEPOSIT_TYPES,
            approved_by,
            self._completion_changes(TransactionStatus.CONFIRMED, approved_by, ActorRole.ADMIN, now),
            description="Escrow deposit confirmed",
        )
        logger.info(f"[TRANSACTION] Escrow deposit confirmed: {updated.id} by {approved_by}")

        await self._notify_funds_secured(updated)
        return updated

    async def release_payment(self, transaction_id: str, released_by: str) -> FinancialTransaction:
        """
        Admin releases an approved advance to the professional.

        ATOMIC: status=confirmed, ledger debit, escrow_held -= amount.
        A release larger than escrow_held is refused with InsufficientEscrowError.
        Only open release_payment transactions can be released.
        """
        self._require_actor(released_by)
        now = datetime.utcnow()

        updated, entry, balance = await self.ledger.post_movement(
            transaction_id,
            RELEASABLE_TYPES,
            released_by,
            self._completion_changes(TransactionStatus.CONFIRMED, released_by, ActorRole.ADMIN, now),
            description="Payment released to professional",
        )
        logger.info(f"[TRANSACTION] Payment released: {updated.id} by {released_by}")
        return updated

    # =========================================================================
    # APPROVAL / REJECTION (NO LEDGER EFFECT)
    # =========================================================================

    async def approve_advance_payment(
        self,
        transaction_id: str,
        approved_by: str,
        role: ActorRole = ActorRole.CLIENT
    ) -> AdvanceApprovalResult:
        """
        Client approves a payment_request.

        The request is confirmed and a pending release_payment (owned by the
        platform, action_by=None so any admin may act) is created in the same
        unit of work. Money only moves when that release is executed.
        """
        self._require_actor(approved_by)
        now = datetime.utcnow()

        async with self.unit_of_work.atomic() as session:
            request = await self._load_open(transaction_id, ADVANCE_REQUEST_TYPES, session)

            updated = await self.transaction_store.update_if_open(
                request.id,
                self._completion_changes(TransactionStatus.CONFIRMED, approved_by, ActorRole(role), now),
                session=session
            )
            if updated is None:
                raise AlreadyTerminalError(request.id)

            release = self.build_transaction(TransactionDraft(
                project_id=request.project_id,
                project_professional_id=request.project_professional_id,
                type=TransactionType.RELEASE_PAYMENT,
                description=policy_for(TransactionType.RELEASE_PAYMENT).default_description,
                amount=request.amount,
                requested_by=approved_by,
                requested_by_role=ActorRole(role),
                action_by=None,
                action_by_role=ActorRole.PLATFORM,
                status=TransactionStatus.PENDING,
                action_complete=False,
            ))
            await self.transaction_store.insert(release, session=session)

        logger.info(
            f"[TRANSACTION] Advance payment approved: {updated.id} by {approved_by} ({ActorRole(role).value}), "
            f"release_payment={release.id}"
        )
        await self.notifier.advance_approved(updated)
        return AdvanceApprovalResult(updated=updated, release_payment_tx=release)

    async def reject_advance_payment(
        self,
        transaction_id: str,
        approved_by: str,
        reason: str = "Rejected by client",
        role: ActorRole = ActorRole.CLIENT
    ) -> FinancialTransaction:
        """Client (or admin) rejects a payment_request. No ledger effect."""
        self._require_actor(approved_by)
        now = datetime.utcnow()

        async with self.unit_of_work.atomic() as session:
            request = await self._load_open(transaction_id, ADVANCE_REQUEST_TYPES, session)
            changes = self._completion_changes(TransactionStatus.REJECTED, approved_by, ActorRole(role), now)
            changes["notes"] = reason or "Rejected by client"

            updated = await self.transaction_store.update_if_open(request.id, changes, session=session)
            if updated is None:
                raise AlreadyTerminalError(request.id)

        logger.info(f"[TRANSACTION] Advance payment rejected: {updated.id} by {approved_by}: {changes['notes']}")
        return updated

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_open(self, transaction_id, accepted_types, session) -> FinancialTransaction:
        transaction = await self.transaction_store.get(transaction_id, session=session)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        require_type(transaction.id, transaction.type, accepted_types)
        if transaction.action_complete:
            raise AlreadyTerminalError(transaction.id, transaction.status.value)
        return transaction

    @staticmethod
    def _completion_changes(
        status: TransactionStatus,
        actor_id: str,
        actor_role: ActorRole,
        now: datetime
    ) -> Dict[str, Any]:
        return {
            "status": status,
            "action_by": actor_id,
            "action_by_role": actor_role,
            "action_at": now,
            "action_complete": True,
        }

    @staticmethod
    def _require_actor(actor_id: Optional[str]) -> None:
        if not actor_id or not str(actor_id).strip():
            raise UnauthorizedError("An authenticated actor is required for this operation")

    async def _notify_funds_secured(self, transaction: FinancialTransaction) -> None:
        context: Dict[str, Any] = {}

        async def lookup():
            context["project"] = await self.directory.get_project(transaction.project_id)
            if transaction.project_professional_id:
                context["link"] = await self.directory.get_project_professional(
                    transaction.project_professional_id
                )

        # Bounded by the notifier timeout; a failed lookup only skips notifications
        if not await self.notifier.run(f"funds secured context lookup for {transaction.id}", lookup):
            return
        await self.notifier.funds_secured(transaction, context.get("project"), context.get("link"))
