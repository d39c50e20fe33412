"""
Best-effort notification hooks.

Chat and email collaborators are invoked only after a financial state
transition has committed. Every failure (including a timeout) is logged
and swallowed so it can never roll back or fail the money operation.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from escrow_core.domain import (
    ActorRole, FinancialTransaction, ProjectContext, ProjectProfessionalLink
)
from escrow_core.financial_precision import round_financial

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_TIMEOUT_SECONDS = 5.0


class ChatCollaborator(ABC):

    @abstractmethod
    async def post_system_message(self, thread_ref: str, text: str) -> None:
        ...


class EmailCollaborator(ABC):

    @abstractmethod
    async def send_funds_secure_notification(
        self,
        to: str,
        role: str,
        project_name: str,
        project_url: str
    ) -> None:
        ...


class LoggingChatCollaborator(ChatCollaborator):
    """Chat collaborator for deployments without a chat backend."""

    async def post_system_message(self, thread_ref, text):
        logger.info(f"[NOTIFY] [MOCK] Would post to thread {thread_ref}: {text}")


class LoggingEmailCollaborator(EmailCollaborator):
    """Email collaborator used when no mail provider is configured."""

    async def send_funds_secure_notification(self, to, role, project_name, project_url):
        logger.info(f"[NOTIFY] [MOCK] Would send funds secure notification to: {to} ({role}) for {project_name}")


class BestEffortNotifier:
    """
    Runs notification hooks without letting them affect the caller.

    Each hook is bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        chat: Optional[ChatCollaborator] = None,
        email: Optional[EmailCollaborator] = None,
        app_base_url: str = "http://localhost:3000",
        timeout: float = DEFAULT_NOTIFICATION_TIMEOUT_SECONDS
    ):
        self.chat = chat or LoggingChatCollaborator()
        self.email = email or LoggingEmailCollaborator()
        self.app_base_url = app_base_url.rstrip("/")
        self.timeout = timeout

    def project_url(self, project_id: str) -> str:
        return f"{self.app_base_url}/projects/{project_id}"

    async def run(self, label: str, hook: Callable[[], Awaitable[None]]) -> bool:
        """Await ``hook``; return False instead of raising on any failure."""
        try:
            await asyncio.wait_for(hook(), timeout=self.timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[NOTIFY] {label} timed out after {self.timeout}s")
        except Exception as e:
            logger.warning(f"[NOTIFY] {label} failed: {str(e)}")
        return False

    # =========================================================================
    # DOMAIN HOOKS
    # =========================================================================

    async def funds_secured(
        self,
        transaction: FinancialTransaction,
        project: Optional[ProjectContext],
        link: Optional[ProjectProfessionalLink]
    ) -> None:
        project_name = project.project_name if project else "your project"
        project_url = self.project_url(transaction.project_id)

        if link is not None:
            professional_name = link.professional_name or "Professional"
            text = (
                f"Escrow deposit has been confirmed by the platform. Funds for "
                f"{professional_name} are now secured in escrow."
            )
            await self.run(
                f"funds secured chat for {transaction.id}",
                lambda: self.chat.post_system_message(link.id, text)
            )

        if project is not None and project.client_email:
            await self.run(
                f"funds secured email to client for {transaction.id}",
                lambda: self.email.send_funds_secure_notification(
                    to=project.client_email,
                    role=ActorRole.CLIENT.value,
                    project_name=project_name,
                    project_url=project_url,
                )
            )

        if link is not None and link.professional_email:
            await self.run(
                f"funds secured email to professional for {transaction.id}",
                lambda: self.email.send_funds_secure_notification(
                    to=link.professional_email,
                    role=ActorRole.PROFESSIONAL.value,
                    project_name=project_name,
                    project_url=project_url,
                )
            )

    async def advance_approved(self, transaction: FinancialTransaction) -> None:
        if not transaction.project_professional_id:
            return
        text = (
            f"Advance payment request of {round_financial(transaction.amount)} has been approved. "
            f"The platform will release the funds shortly."
        )
        await self.run(
            f"advance approved chat for {transaction.id}",
            lambda: self.chat.post_system_message(transaction.project_professional_id, text)
        )

    async def quote_awarded(self, link: ProjectProfessionalLink) -> None:
        text = (
            "Quote awarded. The client has selected your quote. "
            "An escrow deposit has been requested before work begins."
        )
        await self.run(
            f"quote awarded chat for {link.id}",
            lambda: self.chat.post_system_message(link.id, text)
        )
