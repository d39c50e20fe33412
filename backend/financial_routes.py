# Financial Ledger API Endpoints
#
# To integrate: Add to main server.py with:
# from financial_routes import create_financial_routes
# app.include_router(create_financial_routes(services, permission_checker))

from fastapi import APIRouter, HTTPException, status, Depends
from fastapi.encoders import jsonable_encoder
from typing import List
import logging

from escrow_core import (
    ActorRole, EscrowServices, LedgerError, TransactionDraft,
    AdvanceApprovalResult, AwardResult, EscrowStatement, FinancialSummary,
    FinancialTransaction, ReconciliationReport
)
from models import (
    TransactionCreate, TransactionUpdate, AdvancePaymentRequestCreate, AdvancePaymentReject, QuoteAward
)
from permissions import PermissionChecker
from auth import get_current_user

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_TRANSACTION_TYPE": status.HTTP_400_BAD_REQUEST,
    "INVALID_TRANSACTION_STATE": status.HTTP_400_BAD_REQUEST,
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "ALREADY_TERMINAL": status.HTTP_409_CONFLICT,
    "INSUFFICIENT_ESCROW": status.HTTP_409_CONFLICT,
    "UNAUTHORIZED": status.HTTP_401_UNAUTHORIZED,
    "TRANSIENT_STORE_FAILURE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: LedgerError) -> HTTPException:
    """Structured error body: {"kind": ..., "message": ...}"""
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=jsonable_encoder(error.to_dict())
    )


def create_financial_routes(
    services: EscrowServices,
    permission_checker: PermissionChecker
) -> APIRouter:
    """Create financial ledger API router"""

    router = APIRouter(prefix="/api/financial", tags=["Financial Ledger"])
    engine = services.engine

    # ============================================
    # PROJECT VIEWS
    # ============================================

    @router.get("/project/{project_id}", response_model=List[FinancialTransaction])
    async def get_project_transactions(project_id: str, current_user: dict = Depends(get_current_user)):
        """All transactions for a project, newest first (max 1000)"""
        try:
            return await engine.get_project_transactions(project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/project/{project_id}/summary", response_model=FinancialSummary)
    async def get_project_financial_summary(project_id: str, current_user: dict = Depends(get_current_user)):
        try:
            return await services.summary.get_project_financial_summary(project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/project/{project_id}/escrow-statement", response_model=EscrowStatement)
    async def get_escrow_statement(project_id: str, current_user: dict = Depends(get_current_user)):
        try:
            return await services.ledger.get_escrow_statement(project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/project/{project_id}/reconcile", response_model=ReconciliationReport)
    async def reconcile_project(project_id: str, current_user: dict = Depends(get_current_user)):
        """Compare escrow_held with the ledger (Admin only, read only)"""
        await permission_checker.check_admin_role(current_user, "reconcile escrow")
        try:
            return await services.ledger.reconcile_project(project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    # ============================================
    # PROJECT-PROFESSIONAL ACTIONS
    # ============================================

    @router.post(
        "/project-professional/{project_professional_id}/award",
        response_model=AwardResult,
        status_code=status.HTTP_201_CREATED
    )
    async def award_quote(
        project_professional_id: str,
        body: QuoteAward,
        current_user: dict = Depends(get_current_user)
    ):
        """Accept a professional's quote and request the escrow deposit (Client/Admin)"""
        await permission_checker.check_client_or_admin(current_user, "award a quote")
        try:
            return await engine.award_quote(project_professional_id, body.amount, current_user["user_id"])
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post(
        "/project-professional/{project_professional_id}/advance-request",
        response_model=FinancialTransaction,
        status_code=status.HTTP_201_CREATED
    )
    async def request_advance_payment(
        project_professional_id: str,
        body: AdvancePaymentRequestCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Professional requests an advance payment"""
        await permission_checker.check_professional_role(current_user, "request advance payment")
        try:
            return await engine.create_advance_payment_request(
                project_professional_id, body.amount, current_user["user_id"]
            )
        except LedgerError as e:
            raise to_http_exception(e)

    # ============================================
    # TRANSACTIONS
    # ============================================

    @router.post("", response_model=FinancialTransaction, status_code=status.HTTP_201_CREATED)
    async def create_transaction(body: TransactionCreate, current_user: dict = Depends(get_current_user)):
        """Create a financial transaction; the caller is recorded as requester by default"""
        try:
            draft = TransactionDraft(**{
                **body.model_dump(),
                "requested_by": body.requested_by or current_user["user_id"],
                "requested_by_role": body.requested_by_role or ActorRole(current_user["role"]),
            })
            return await engine.create_transaction(draft)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/{transaction_id}", response_model=FinancialTransaction)
    async def get_transaction(transaction_id: str, current_user: dict = Depends(get_current_user)):
        try:
            return await engine.get_transaction(transaction_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.put("/{transaction_id}", response_model=FinancialTransaction)
    async def update_transaction(
        transaction_id: str,
        body: TransactionUpdate,
        current_user: dict = Depends(get_current_user)
    ):
        """Edit description/notes (Admin only). Status changes go through the lifecycle routes."""
        await permission_checker.check_admin_role(current_user, "update transactions")
        try:
            return await engine.update_transaction(
                transaction_id,
                current_user["user_id"],
                description=body.description,
                notes=body.notes
            )
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post("/{transaction_id}/confirm-deposit", response_model=FinancialTransaction)
    async def confirm_escrow_deposit(transaction_id: str, current_user: dict = Depends(get_current_user)):
        """Confirm escrow deposit (Admin only)"""
        await permission_checker.check_admin_role(current_user, "confirm escrow deposits")
        try:
            return await engine.confirm_escrow_deposit(transaction_id, current_user["user_id"])
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post("/{transaction_id}/approve", response_model=AdvanceApprovalResult)
    async def approve_advance_payment(transaction_id: str, current_user: dict = Depends(get_current_user)):
        """Approve advance payment (Client; Admin recorded as admin)"""
        role = await permission_checker.check_can_decide_advance(current_user, "approve payments")
        try:
            return await engine.approve_advance_payment(transaction_id, current_user["user_id"], role)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post("/{transaction_id}/reject", response_model=FinancialTransaction)
    async def reject_advance_payment(
        transaction_id: str,
        body: AdvancePaymentReject = AdvancePaymentReject(),
        current_user: dict = Depends(get_current_user)
    ):
        """Reject advance payment (Client or Admin)"""
        role = await permission_checker.check_can_decide_advance(current_user, "reject payments")
        try:
            return await engine.reject_advance_payment(
                transaction_id,
                current_user["user_id"],
                body.reason or "Rejected by client",
                role
            )
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post("/{transaction_id}/release", response_model=FinancialTransaction)
    async def release_payment(transaction_id: str, current_user: dict = Depends(get_current_user)):
        """Release payment to professional (Admin only)"""
        await permission_checker.check_admin_role(current_user, "release payments")
        try:
            return await engine.release_payment(transaction_id, current_user["user_id"])
        except LedgerError as e:
            raise to_http_exception(e)

    return router
