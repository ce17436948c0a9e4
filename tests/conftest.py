"""Shared fixtures: SQLite database per test, seeded directory, frozen clock, recording collaborators."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import pytest

from concern_desk.concerns.application.dto import ConcernDraft
from concern_desk.concerns.application.ports import (
    Collaborators,
    IAuditLog,
    IChatChannelGateway,
    INotifier,
)
from concern_desk.concerns.domain.entities import Concern, Department, User
from concern_desk.config import Settings, UserRole
from concern_desk.escalation.domain.value_objects import EscalationPolicy
from concern_desk.escalation.infrastructure.external import EscalationConfigManager
from concern_desk.infrastructure.database import build_engine, build_session_maker, create_tables
from concern_desk.orchestrator import build_orchestrator, sqlalchemy_uow_factory
from concern_desk.shared.domain.clock import FrozenClock

START = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


# ========== Recording collaborators ==========

@dataclass
class SentNotification:
    user_id: str
    title: str
    body: str
    data: dict


class RecordingNotifier(INotifier):
    def __init__(self):
        self.sent: List[SentNotification] = []

    async def notify(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        self.sent.append(SentNotification(user_id, title, body, data or {}))

    def titles_for(self, user_id: str) -> List[str]:
        return [n.title for n in self.sent if n.user_id == user_id]


@dataclass
class ChatCall:
    action: str
    concern_id: str
    participants: List[str]
    author_id: Optional[str] = None
    message: Optional[str] = None


class RecordingChat(IChatChannelGateway):
    def __init__(self):
        self.calls: List[ChatCall] = []

    async def open_channel(
        self,
        concern: Concern,
        participants: Sequence[str],
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.calls.append(ChatCall("open", concern.id, list(participants), author_id, message))

    async def close_channel(self, concern: Concern) -> None:
        self.calls.append(ChatCall("close", concern.id, []))

    async def reopen_channel(
        self,
        concern: Concern,
        author_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.calls.append(ChatCall("reopen", concern.id, [], author_id, message))

    def actions_for(self, concern_id: str) -> List[str]:
        return [c.action for c in self.calls if c.concern_id == concern_id]


class RecordingAudit(IAuditLog):
    def __init__(self):
        self.records: List[tuple] = []

    async def record(self, actor_id: Optional[str], action: str, before: dict, after: dict) -> None:
        self.records.append((actor_id, action, before, after))

    @property
    def actions(self) -> List[str]:
        return [r[1] for r in self.records]


# ========== Directory ==========

@dataclass(frozen=True)
class Directory:
    """
    Seeded ids. Staff ids sort before department heads, so workload ties
    go to staff.
    """
    student: str = "usr-student-1"
    other_student: str = "usr-student-2"
    admin: str = "usr-admin"

    finance: str = "dept-finance"
    finance_head: str = "usr-head-fin"
    finance_staff_1: str = "staff-fin-1"
    finance_staff_2: str = "staff-fin-2"

    security: str = "dept-security"
    security_head: str = "usr-head-sec"
    security_staff: str = "staff-sec-1"

    academic: str = "dept-academic"
    academic_head: str = "usr-head-acad"

    registrar: str = "dept-registrar"
    registrar_staff: str = "staff-reg-1"

    it: str = "dept-it"
    it_staff: str = "staff-it-1"

    housing: str = "dept-housing"
    housing_staff: str = "staff-housing-1"

    health: str = "dept-health"


DIRECTORY = Directory()

DEPARTMENTS = [
    Department(DIRECTORY.academic, "ACADEMIC_AFFAIRS", "Academic Affairs", DIRECTORY.academic_head),
    Department(DIRECTORY.finance, "FINANCE", "Finance Office", DIRECTORY.finance_head),
    Department(DIRECTORY.registrar, "REGISTRAR", "Registrar"),
    Department(DIRECTORY.it, "IT", "IT Services"),
    Department(DIRECTORY.housing, "STUDENT_HOUSING", "Student Housing"),
    Department(DIRECTORY.health, "HEALTH_SERVICES", "Health Services"),
    Department(DIRECTORY.security, "CAMPUS_SECURITY", "Campus Security", DIRECTORY.security_head),
]

USERS = [
    User(DIRECTORY.student, "Maria Santos", UserRole.STUDENT),
    User(DIRECTORY.other_student, "Jon Reyes", UserRole.STUDENT),
    User(DIRECTORY.admin, "Dean Admin", UserRole.ADMIN),
    User(DIRECTORY.finance_head, "Helen Cruz", UserRole.DEPARTMENT_HEAD, DIRECTORY.finance),
    User(DIRECTORY.finance_staff_1, "Paolo Lim", UserRole.STAFF, DIRECTORY.finance),
    User(DIRECTORY.finance_staff_2, "Ana Tan", UserRole.STAFF, DIRECTORY.finance),
    User(DIRECTORY.security_head, "Rico Dela Paz", UserRole.DEPARTMENT_HEAD, DIRECTORY.security),
    User(DIRECTORY.security_staff, "Sam Uy", UserRole.STAFF, DIRECTORY.security),
    User(DIRECTORY.academic_head, "Grace Ong", UserRole.DEPARTMENT_HEAD, DIRECTORY.academic),
    User(DIRECTORY.registrar_staff, "Lea Go", UserRole.STAFF, DIRECTORY.registrar),
    User(DIRECTORY.it_staff, "Ben Sy", UserRole.STAFF, DIRECTORY.it, can_handle_cross_department=True),
    User(
        DIRECTORY.housing_staff, "Ivy Chua", UserRole.STAFF, DIRECTORY.housing,
        can_handle_cross_department=True,
    ),
]


async def seed(uow_factory, departments: Sequence[Department], users: Sequence[User]) -> None:
    async with uow_factory() as uow:
        for department in departments:
            await uow.departments.add(department)
        for user in users:
            await uow.users.add(user)
        await uow.commit()


# ========== Fixtures ==========

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'concerns.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return sqlalchemy_uow_factory(build_session_maker(engine))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def chat() -> RecordingChat:
    return RecordingChat()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def policy_provider() -> EscalationConfigManager:
    return EscalationConfigManager(EscalationPolicy())


@pytest.fixture
def make_orchestrator(uow_factory, notifier, chat, audit, policy_provider, clock):
    def factory(**overrides):
        config = Settings(environment="testing", **overrides)
        return build_orchestrator(
            uow_factory,
            Collaborators(notifier=notifier, chat=chat, audit=audit),
            policy_provider,
            clock=clock,
            config=config,
        )
    return factory


@pytest.fixture
def seeder(uow_factory):
    """Seed a custom set of departments and users."""
    async def _seed(departments: Sequence[Department], users: Sequence[User]) -> None:
        await seed(uow_factory, departments, users)
    return _seed


@pytest.fixture
async def directory(uow_factory) -> Directory:
    await seed(uow_factory, DEPARTMENTS, USERS)
    return DIRECTORY


@pytest.fixture
def orchestrator(make_orchestrator, directory):
    return make_orchestrator()


@pytest.fixture
def submit(orchestrator, directory):
    """Submit a concern as the seeded student."""
    async def _submit(subject: str, description: str = "", student_id: Optional[str] = None, **fields):
        draft = ConcernDraft(
            student_id=student_id or directory.student,
            subject=subject,
            description=description or subject,
            **fields,
        )
        return await orchestrator.submit(draft)
    return _submit
