"""
Transaction lifecycle engine tests
Testing: escrow deposit confirmation, advance payment approve/reject, release,
quote award, terminal-state conflicts and input validation
"""
import asyncio
from decimal import Decimal

import pytest

from escrow_core import (
    ActorRole, AlreadyTerminalError, InvalidAmountError, InvalidTransactionStateError,
    InvalidTransactionTypeError, LedgerDirection, NotFoundError, TransactionDraft, TransactionStatus,
    TransactionType, UnauthorizedError
)
from tests.conftest import ADMIN_ID, CLIENT_ID, LINK_ID, PROFESSIONAL_ID, PROJECT_ID


async def escrow_held(database):
    return database.balances[PROJECT_ID].escrow_held


class TestCreation:

    @pytest.mark.asyncio
    async def test_quotation_accepted_created_terminal(self, engine):
        tx = await engine.create_transaction(TransactionDraft(
            project_id=PROJECT_ID,
            type=TransactionType.QUOTATION_ACCEPTED,
            description="Quote from Acme",
            amount="5000",
        ))
        assert tx.status == TransactionStatus.INFO
        assert tx.action_complete is True

    @pytest.mark.asyncio
    async def test_creation_never_moves_money(self, engine, database):
        await engine.create_transaction(TransactionDraft(
            project_id=PROJECT_ID,
            type=TransactionType.ESCROW_DEPOSIT,
            description="Deposit",
            amount="1000",
            status=TransactionStatus.CONFIRMED,
        ))
        assert await escrow_held(database) == Decimal("0.00")
        assert database.ledger_entries == []

    @pytest.mark.asyncio
    async def test_escrow_deposit_request_targets_client(self, engine):
        tx = await engine.create_escrow_deposit_request(PROJECT_ID, "1000", LINK_ID, requested_by="system")
        assert tx.type == TransactionType.ESCROW_DEPOSIT
        assert tx.status == TransactionStatus.PENDING
        assert tx.action_complete is False
        assert tx.action_by == CLIENT_ID
        assert tx.action_by_role == ActorRole.CLIENT
        assert tx.requested_by_role == ActorRole.PLATFORM

    @pytest.mark.asyncio
    async def test_escrow_deposit_request_unknown_project(self, engine):
        with pytest.raises(NotFoundError):
            await engine.create_escrow_deposit_request("missing", "1000")

    @pytest.mark.asyncio
    async def test_advance_request_requires_positive_amount(self, engine):
        with pytest.raises(InvalidAmountError):
            await engine.create_advance_payment_request(LINK_ID, "0", PROFESSIONAL_ID)

    @pytest.mark.asyncio
    async def test_advance_request_unknown_link(self, engine):
        with pytest.raises(NotFoundError):
            await engine.create_advance_payment_request("pp-missing", "100", PROFESSIONAL_ID)

    @pytest.mark.asyncio
    async def test_project_transactions_newest_first(self, engine):
        first = await engine.create_escrow_deposit_request(PROJECT_ID, "100")
        second = await engine.create_advance_payment_request(LINK_ID, "50", PROFESSIONAL_ID)
        third = await engine.create_escrow_deposit_request(PROJECT_ID, "200")

        listed = await engine.get_project_transactions(PROJECT_ID)
        assert [t.id for t in listed] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_get_unknown_transaction(self, engine):
        with pytest.raises(NotFoundError) as exc_info:
            await engine.get_transaction("tx-missing")
        assert exc_info.value.kind == "NOT_FOUND"


class TestEscrowDepositConfirmation:

    @pytest.mark.asyncio
    async def test_confirm_credits_escrow(self, engine, ledger, database):
        """Pending 1000 deposit confirmed by admin: escrow_held 0 -> 1000, one credit entry"""
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000", LINK_ID)

        confirmed = await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)

        assert confirmed.status == TransactionStatus.CONFIRMED
        assert confirmed.action_complete is True
        assert confirmed.action_by == ADMIN_ID
        assert confirmed.action_by_role == ActorRole.ADMIN
        assert confirmed.action_at is not None
        assert await escrow_held(database) == Decimal("1000.00")

        assert len(database.ledger_entries) == 1
        entry = database.ledger_entries[0]
        assert entry.direction == LedgerDirection.CREDIT
        assert entry.amount == Decimal("1000.00")
        assert entry.transaction_id == deposit.id
        assert entry.currency == "HKD"

        report = await ledger.reconcile_project(PROJECT_ID)
        assert report.consistent is True

    @pytest.mark.asyncio
    async def test_confirm_deposit_confirmation_type(self, engine, database):
        tx = await engine.create_transaction(TransactionDraft(
            project_id=PROJECT_ID,
            type=TransactionType.ESCROW_DEPOSIT_CONFIRMATION,
            description="Client reports transfer",
            amount="250.50",
        ))
        await engine.confirm_escrow_deposit(tx.id, ADMIN_ID)
        assert await escrow_held(database) == Decimal("250.50")

    @pytest.mark.asyncio
    async def test_second_confirm_is_a_conflict(self, engine, database):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)

        with pytest.raises(AlreadyTerminalError):
            await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)

        assert await escrow_held(database) == Decimal("1000.00")
        assert len(database.ledger_entries) == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirms_credit_once(self, engine, database):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")

        results = await asyncio.gather(
            engine.confirm_escrow_deposit(deposit.id, ADMIN_ID),
            engine.confirm_escrow_deposit(deposit.id, "admin-2"),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadyTerminalError)
        assert await escrow_held(database) == Decimal("1000.00")
        assert len(database.ledger_entries) == 1

    @pytest.mark.asyncio
    async def test_confirm_wrong_type(self, engine, database):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)

        with pytest.raises(InvalidTransactionTypeError):
            await engine.confirm_escrow_deposit(request.id, ADMIN_ID)

        unchanged = await engine.get_transaction(request.id)
        assert unchanged.status == TransactionStatus.PENDING
        assert unchanged.action_complete is False
        assert database.ledger_entries == []

    @pytest.mark.asyncio
    async def test_confirm_unknown_transaction(self, engine):
        with pytest.raises(NotFoundError):
            await engine.confirm_escrow_deposit("tx-missing", ADMIN_ID)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("actor", [None, "", "   "])
    async def test_confirm_requires_actor(self, engine, database, actor):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        with pytest.raises(UnauthorizedError):
            await engine.confirm_escrow_deposit(deposit.id, actor)
        assert database.ledger_entries == []


class TestAdvancePayments:

    @pytest.mark.asyncio
    async def test_approve_spawns_pending_release(self, engine, database):
        """Approval confirms the request and creates a platform-owned release; no money moves"""
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        assert request.action_by == CLIENT_ID

        result = await engine.approve_advance_payment(request.id, CLIENT_ID)

        assert result.updated.status == TransactionStatus.CONFIRMED
        assert result.updated.action_complete is True
        assert result.updated.action_by == CLIENT_ID
        assert result.updated.action_by_role == ActorRole.CLIENT

        release = result.release_payment_tx
        assert release.type == TransactionType.RELEASE_PAYMENT
        assert release.status == TransactionStatus.PENDING
        assert release.action_complete is False
        assert release.action_by is None
        assert release.action_by_role == ActorRole.PLATFORM
        assert release.amount == Decimal("300.00")
        assert release.project_professional_id == LINK_ID

        assert await escrow_held(database) == Decimal("0.00")
        assert database.ledger_entries == []

    @pytest.mark.asyncio
    async def test_admin_approval_recorded_as_admin(self, engine):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        result = await engine.approve_advance_payment(request.id, ADMIN_ID, ActorRole.ADMIN)
        assert result.updated.action_by_role == ActorRole.ADMIN

    @pytest.mark.asyncio
    async def test_approve_twice_creates_one_release(self, engine, database):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        await engine.approve_advance_payment(request.id, CLIENT_ID)

        with pytest.raises(AlreadyTerminalError):
            await engine.approve_advance_payment(request.id, CLIENT_ID)

        releases = [t for t in database.transactions.values() if t.type == TransactionType.RELEASE_PAYMENT]
        assert len(releases) == 1

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, engine, database):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)

        rejected = await engine.reject_advance_payment(request.id, CLIENT_ID, "Too early")

        assert rejected.status == TransactionStatus.REJECTED
        assert rejected.action_complete is True
        assert rejected.notes == "Too early"
        assert database.ledger_entries == []

    @pytest.mark.asyncio
    async def test_reject_default_reason(self, engine):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        rejected = await engine.reject_advance_payment(request.id, CLIENT_ID)
        assert rejected.notes == "Rejected by client"

    @pytest.mark.asyncio
    async def test_approve_after_reject_is_a_conflict(self, engine, database):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        await engine.reject_advance_payment(request.id, CLIENT_ID)

        with pytest.raises(AlreadyTerminalError):
            await engine.approve_advance_payment(request.id, CLIENT_ID)

        assert not any(t.type == TransactionType.RELEASE_PAYMENT for t in database.transactions.values())

    @pytest.mark.asyncio
    async def test_approve_wrong_type(self, engine):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        with pytest.raises(InvalidTransactionTypeError):
            await engine.approve_advance_payment(deposit.id, CLIENT_ID)


class TestRelease:

    @pytest.mark.asyncio
    async def test_full_flow_debits_escrow(self, engine, ledger, database):
        """1000 confirmed, 300 approved and released: escrow_held ends at 700"""
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000", LINK_ID)
        await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        approval = await engine.approve_advance_payment(request.id, CLIENT_ID)

        released = await engine.release_payment(approval.release_payment_tx.id, ADMIN_ID)

        assert released.status == TransactionStatus.CONFIRMED
        assert released.action_complete is True
        assert released.action_by == ADMIN_ID
        assert await escrow_held(database) == Decimal("700.00")

        debit = database.ledger_entries[-1]
        assert debit.direction == LedgerDirection.DEBIT
        assert debit.amount == Decimal("300.00")
        assert debit.transaction_id == released.id

        report = await ledger.reconcile_project(PROJECT_ID)
        assert report.consistent is True
        assert report.ledger_balance == Decimal("700.00")
        assert report.entry_count == 2

    @pytest.mark.asyncio
    async def test_release_twice_is_a_conflict(self, engine, database):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        approval = await engine.approve_advance_payment(request.id, CLIENT_ID)
        await engine.release_payment(approval.release_payment_tx.id, ADMIN_ID)

        with pytest.raises(AlreadyTerminalError):
            await engine.release_payment(approval.release_payment_tx.id, ADMIN_ID)
        assert await escrow_held(database) == Decimal("700.00")

    @pytest.mark.asyncio
    async def test_release_only_accepts_release_payment(self, engine, database):
        request = await engine.create_advance_payment_request(LINK_ID, "300", PROFESSIONAL_ID)
        await engine.approve_advance_payment(request.id, CLIENT_ID)

        with pytest.raises(InvalidTransactionTypeError):
            await engine.release_payment(request.id, ADMIN_ID)
        assert database.ledger_entries == []


class TestAwardQuote:

    @pytest.mark.asyncio
    async def test_award_sets_terms_and_requests_deposit(self, engine, database, chat):
        result = await engine.award_quote(LINK_ID, "5000", CLIENT_ID)

        quotation = result.quotation
        assert quotation.type == TransactionType.QUOTATION_ACCEPTED
        assert quotation.status == TransactionStatus.INFO
        assert quotation.action_complete is True
        assert "Acme Renovations" in quotation.description

        deposit = result.escrow_deposit_request
        assert deposit.type == TransactionType.ESCROW_DEPOSIT
        assert deposit.status == TransactionStatus.PENDING
        assert deposit.action_by == CLIENT_ID
        assert deposit.amount == Decimal("5000.00")

        balance = database.balances[PROJECT_ID]
        assert balance.approved_budget == Decimal("5000.00")
        assert balance.escrow_required == Decimal("5000.00")
        assert balance.escrow_held == Decimal("0.00")

        assert chat.messages and chat.messages[-1][0] == LINK_ID

    @pytest.mark.asyncio
    async def test_award_deposit_can_be_confirmed(self, engine, database):
        result = await engine.award_quote(LINK_ID, "5000", CLIENT_ID)
        await engine.confirm_escrow_deposit(result.escrow_deposit_request.id, ADMIN_ID)
        assert await escrow_held(database) == Decimal("5000.00")

    @pytest.mark.asyncio
    async def test_award_unknown_link(self, engine, database):
        with pytest.raises(NotFoundError):
            await engine.award_quote("pp-missing", "5000", CLIENT_ID)
        assert database.transactions == {}


class TestUpdate:

    @pytest.mark.asyncio
    async def test_update_notes_and_description(self, engine):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")

        updated = await engine.update_transaction(
            deposit.id, ADMIN_ID, description="Deposit for phase 1", notes="Client wiring funds"
        )

        assert updated.description == "Deposit for phase 1"
        assert updated.notes == "Client wiring funds"
        assert updated.status == TransactionStatus.PENDING
        assert updated.action_complete is False
        assert (await engine.get_transaction(deposit.id)).notes == "Client wiring funds"

    @pytest.mark.asyncio
    async def test_update_never_moves_money(self, engine, database):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        await engine.confirm_escrow_deposit(deposit.id, ADMIN_ID)

        updated = await engine.update_transaction(deposit.id, ADMIN_ID, notes="Bank ref 123")

        assert updated.status == TransactionStatus.CONFIRMED
        assert updated.amount == Decimal("1000.00")
        assert len(database.ledger_entries) == 1
        assert await escrow_held(database) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_update_requires_a_field(self, engine):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        with pytest.raises(InvalidTransactionStateError):
            await engine.update_transaction(deposit.id, ADMIN_ID)
        with pytest.raises(InvalidTransactionStateError):
            await engine.update_transaction(deposit.id, ADMIN_ID, description="  ")

    @pytest.mark.asyncio
    async def test_update_unknown_transaction(self, engine):
        with pytest.raises(NotFoundError):
            await engine.update_transaction("tx-missing", ADMIN_ID, notes="x")

    @pytest.mark.asyncio
    async def test_update_requires_actor(self, engine):
        deposit = await engine.create_escrow_deposit_request(PROJECT_ID, "1000")
        with pytest.raises(UnauthorizedError):
            await engine.update_transaction(deposit.id, "", notes="x")
