"""
Shared fixtures for the escrow ledger tests.

Every test runs against the in-memory stores with one seeded project
("proj-1", owned by "client-1") and one project-professional link ("pp-1").
"""
import pytest
from typing import List, Tuple

from escrow_core import (
    BestEffortNotifier, ChatCollaborator, EmailCollaborator, ProjectContext,
    ProjectProfessionalLink, RetryPolicy, build_memory_services
)
from escrow_core.memory_store import MemoryDatabase

PROJECT_ID = "proj-1"
CLIENT_ID = "client-1"
PROFESSIONAL_ID = "pro-1"
LINK_ID = "pp-1"
ADMIN_ID = "admin-1"


class RecordingChat(ChatCollaborator):
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    async def post_system_message(self, thread_ref, text):
        self.messages.append((thread_ref, text))


class RecordingEmail(EmailCollaborator):
    def __init__(self):
        self.sent: List[dict] = []

    async def send_funds_secure_notification(self, to, role, project_name, project_url):
        self.sent.append({
            "to": to,
            "role": role,
            "project_name": project_name,
            "project_url": project_url,
        })


@pytest.fixture
def database():
    db = MemoryDatabase()
    db.add_project(ProjectContext(
        project_id=PROJECT_ID,
        project_name="Kitchen Renovation",
        client_id=CLIENT_ID,
        client_email="client@example.com",
    ))
    db.add_project_professional(ProjectProfessionalLink(
        id=LINK_ID,
        project_id=PROJECT_ID,
        professional_id=PROFESSIONAL_ID,
        professional_name="Acme Renovations",
        professional_email="pro@example.com",
    ))
    return db


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.001, attempt_timeout=1.0)


@pytest.fixture
def chat():
    return RecordingChat()


@pytest.fixture
def email():
    return RecordingEmail()


@pytest.fixture
def notifier(chat, email):
    return BestEffortNotifier(chat=chat, email=email, app_base_url="https://app.test", timeout=0.5)


@pytest.fixture
def services(database, notifier, fast_policy):
    return build_memory_services(database, notifier=notifier, retry_policy=fast_policy)


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def ledger(services):
    return services.ledger
