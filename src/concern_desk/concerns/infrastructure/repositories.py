"""
Concern Infrastructure Repositories
===================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Rows are mapped to plain domain dataclasses;
SQLite drops tzinfo, so every timestamp read back is normalized to UTC.
"""

from dataclasses import fields
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from concern_desk.concerns.application.ports import (
    IConcernEventRepository,
    IConcernRepository,
    ICrossDepartmentAssignmentRepository,
    IDepartmentRepository,
    IUnitOfWork,
    IUserRepository,
)
from concern_desk.concerns.domain.entities import (
    Concern,
    ConcernEvent,
    CrossDepartmentAssignment,
    Department,
    User,
    parse_reference_sequence,
)
from concern_desk.concerns.infrastructure.models import (
    ConcernEventModel,
    ConcernModel,
    CrossDepartmentAssignmentModel,
    DepartmentModel,
    UserModel,
)
from concern_desk.config import HANDLER_ROLES, TERMINAL_STATUSES, UserRole
from concern_desk.core.exceptions import ConcurrencyConflictException, RepositoryException
from concern_desk.shared.domain.clock import ensure_utc, hours_between

CONCERN_FIELDS = tuple(f.name for f in fields(Concern))


def _to_concern(model: ConcernModel) -> Concern:
    concern = Concern(**{name: getattr(model, name) for name in CONCERN_FIELDS})
    concern.attachments = list(model.attachments or [])
    return concern.normalize_timestamps()


def _to_user(model: UserModel) -> User:
    return User(
        id=model.id,
        name=model.name,
        role=model.role,
        department_id=model.department_id,
        is_active=model.is_active,
        can_handle_cross_department=model.can_handle_cross_department,
        email=model.email,
    )


def _to_department(model: DepartmentModel) -> Department:
    return Department(
        id=model.id,
        code=model.code,
        name=model.name,
        head_id=model.head_id,
        is_active=model.is_active,
    )


def _to_cross_assignment(model: CrossDepartmentAssignmentModel) -> CrossDepartmentAssignment:
    return CrossDepartmentAssignment(
        id=model.id,
        concern_id=model.concern_id,
        staff_id=model.staff_id,
        requesting_department_id=model.requesting_department_id,
        assigned_department_id=model.assigned_department_id,
        assignment_type=model.assignment_type,
        estimated_duration_hours=model.estimated_duration_hours,
        assigned_at=ensure_utc(model.assigned_at),
        status=model.status,
        assigned_by=model.assigned_by,
        reason=model.reason,
        actual_duration_hours=model.actual_duration_hours,
        completed_at=ensure_utc(model.completed_at),
        completion_notes=model.completion_notes,
    )


def _to_event(model: ConcernEventModel) -> ConcernEvent:
    return ConcernEvent(
        id=model.id,
        concern_id=model.concern_id,
        event_type=model.event_type,
        message=model.message,
        created_at=ensure_utc(model.created_at),
        actor_id=model.actor_id,
        metadata=dict(model.event_metadata or {}),
    )


def _active_filter():
    return (
        ConcernModel.status.not_in(list(TERMINAL_STATUSES)),
        ConcernModel.archived_at.is_(None),
    )


class SQLAlchemyConcernRepository(IConcernRepository):
    """
    SQLAlchemy implementation of the concern repository.

    ``update`` is a compare-and-set on ``version``.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, concern_id: str) -> Optional[Concern]:
        model = await self._session.get(ConcernModel, concern_id, populate_existing=True)
        return _to_concern(model) if model else None

    async def add(self, concern: Concern) -> Concern:
        model = ConcernModel(**{name: getattr(concern, name) for name in CONCERN_FIELDS})
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(
                f"Concern {concern.reference_number} could not be stored",
                {"concern_id": concern.id, "reference_number": concern.reference_number, "error": str(e.orig)},
            ) from e
        return concern

    async def update(self, concern: Concern) -> Concern:
        values = {
            name: getattr(concern, name)
            for name in CONCERN_FIELDS
            if name not in ("id", "version")
        }
        stmt = (
            update(ConcernModel)
            .where(ConcernModel.id == concern.id, ConcernModel.version == concern.version)
            .values(**values, version=ConcernModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyConflictException(concern.id, concern.version)

        concern.version += 1
        return concern

    async def last_reference_sequence(self, month_prefix: str) -> int:
        # Length first so 5-digit sequences sort after 4-digit ones
        stmt = (
            select(ConcernModel.reference_number)
            .where(ConcernModel.reference_number.like(f"{month_prefix}%"))
            .order_by(
                func.length(ConcernModel.reference_number).desc(),
                ConcernModel.reference_number.desc(),
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        last = result.scalar_one_or_none()
        return parse_reference_sequence(last) if last else 0

    async def count_active_by_handler(self, handler_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(handler_ids)
        if not ids:
            return {}
        stmt = (
            select(ConcernModel.assigned_to, func.count(ConcernModel.id))
            .where(ConcernModel.assigned_to.in_(ids), *_active_filter())
            .group_by(ConcernModel.assigned_to)
        )
        result = await self._session.execute(stmt)
        counts = {handler_id: 0 for handler_id in ids}
        counts.update({handler_id: count for handler_id, count in result.all()})
        return counts

    async def average_resolution_hours(self, handler_ids: Iterable[str]) -> Dict[str, float]:
        ids = list(handler_ids)
        if not ids:
            return {}
        stmt = select(
            ConcernModel.assigned_to, ConcernModel.assigned_at, ConcernModel.resolved_at
        ).where(
            ConcernModel.assigned_to.in_(ids),
            ConcernModel.assigned_at.is_not(None),
            ConcernModel.resolved_at.is_not(None),
        )
        result = await self._session.execute(stmt)

        totals: Dict[str, List[float]] = {}
        for handler_id, assigned_at, resolved_at in result.all():
            totals.setdefault(handler_id, []).append(hours_between(assigned_at, resolved_at))
        return {handler_id: sum(hours) / len(hours) for handler_id, hours in totals.items()}

    async def list_by_status(self, statuses: Sequence[str], limit: Optional[int] = None) -> List[Concern]:
        stmt = (
            select(ConcernModel)
            .where(ConcernModel.status.in_(list(statuses)), ConcernModel.archived_at.is_(None))
            .order_by(ConcernModel.created_at.asc(), ConcernModel.reference_number.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_to_concern(model) for model in result.scalars().all()]

    async def list_open_for_department(self, department_id: str) -> List[Concern]:
        stmt = (
            select(ConcernModel)
            .outerjoin(UserModel, UserModel.id == ConcernModel.assigned_to)
            .where(
                ConcernModel.department_id == department_id,
                *_active_filter(),
                or_(ConcernModel.assigned_to.is_(None), UserModel.department_id == department_id),
            )
            .order_by(
                case((ConcernModel.assigned_to.is_(None), 0), else_=1),
                ConcernModel.created_at.asc(),
                ConcernModel.reference_number.asc(),
            )
        )
        result = await self._session.execute(stmt)
        return [_to_concern(model) for model in result.scalars().all()]

    async def count_open_by_department(self) -> Dict[str, int]:
        """Open concerns per department, excluding those already handled elsewhere."""
        stmt = (
            select(ConcernModel.department_id, func.count(ConcernModel.id))
            .outerjoin(UserModel, UserModel.id == ConcernModel.assigned_to)
            .where(
                *_active_filter(),
                or_(
                    ConcernModel.assigned_to.is_(None),
                    UserModel.department_id == ConcernModel.department_id,
                ),
            )
            .group_by(ConcernModel.department_id)
        )
        result = await self._session.execute(stmt)
        return {department_id: count for department_id, count in result.all()}

    async def count_submitted(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count(ConcernModel.id))
        if since is not None:
            stmt = stmt.where(ConcernModel.created_at >= since)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def count_escalated_by_level(self, since: Optional[datetime] = None) -> Dict[str, int]:
        stmt = select(ConcernModel.escalation_level, func.count(ConcernModel.id)).where(
            ConcernModel.escalated_at.is_not(None)
        )
        if since is not None:
            stmt = stmt.where(ConcernModel.escalated_at >= since)
        result = await self._session.execute(stmt.group_by(ConcernModel.escalation_level))
        return {level: count for level, count in result.all()}


class SQLAlchemyUserRepository(IUserRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, user_id: str) -> Optional[User]:
        model = await self._session.get(UserModel, user_id)
        return _to_user(model) if model else None

    async def add(self, user: User) -> User:
        self._session.add(
            UserModel(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role,
                department_id=user.department_id,
                is_active=user.is_active,
                can_handle_cross_department=user.can_handle_cross_department,
            )
        )
        await self._session.flush()
        return user

    async def list_handlers(
        self,
        department_id: Optional[str] = None,
        roles: Optional[Sequence[str]] = None,
        cross_department_only: bool = False,
    ) -> List[User]:
        stmt = select(UserModel).where(
            UserModel.is_active.is_(True),
            UserModel.role.in_(list(roles or HANDLER_ROLES)),
        )
        if department_id is not None:
            stmt = stmt.where(UserModel.department_id == department_id)
        if cross_department_only:
            stmt = stmt.where(UserModel.can_handle_cross_department.is_(True))
        result = await self._session.execute(stmt.order_by(UserModel.name))
        return [_to_user(model) for model in result.scalars().all()]

    async def department_heads(self, department_id: str) -> List[User]:
        return await self.list_handlers(department_id=department_id, roles=[UserRole.DEPARTMENT_HEAD])


class SQLAlchemyDepartmentRepository(IDepartmentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, department_id: str) -> Optional[Department]:
        model = await self._session.get(DepartmentModel, department_id)
        return _to_department(model) if model else None

    async def get_by_code(self, code: str) -> Optional[Department]:
        stmt = select(DepartmentModel).where(DepartmentModel.code == code)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_department(model) if model else None

    async def add(self, department: Department) -> Department:
        self._session.add(
            DepartmentModel(
                id=department.id,
                code=department.code,
                name=department.name,
                head_id=department.head_id,
                is_active=department.is_active,
            )
        )
        await self._session.flush()
        return department

    async def list_active(self) -> List[Department]:
        stmt = select(DepartmentModel).where(DepartmentModel.is_active.is_(True)).order_by(DepartmentModel.name)
        result = await self._session.execute(stmt)
        return [_to_department(model) for model in result.scalars().all()]


class SQLAlchemyCrossDepartmentAssignmentRepository(ICrossDepartmentAssignmentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, assignment: CrossDepartmentAssignment) -> CrossDepartmentAssignment:
        self._session.add(
            CrossDepartmentAssignmentModel(
                id=assignment.id,
                concern_id=assignment.concern_id,
                staff_id=assignment.staff_id,
                requesting_department_id=assignment.requesting_department_id,
                assigned_department_id=assignment.assigned_department_id,
                assignment_type=assignment.assignment_type,
                status=assignment.status,
                estimated_duration_hours=assignment.estimated_duration_hours,
                assigned_by=assignment.assigned_by,
                reason=assignment.reason,
                assigned_at=assignment.assigned_at,
            )
        )
        await self._session.flush()
        return assignment

    async def get_by_id(self, assignment_id: str) -> Optional[CrossDepartmentAssignment]:
        model = await self._session.get(CrossDepartmentAssignmentModel, assignment_id, populate_existing=True)
        return _to_cross_assignment(model) if model else None

    async def complete(self, assignment: CrossDepartmentAssignment) -> CrossDepartmentAssignment:
        model = await self._session.get(CrossDepartmentAssignmentModel, assignment.id)
        if model is None:
            raise RepositoryException(f"Cross-department assignment {assignment.id} not found")

        model.status = assignment.status
        model.completed_at = assignment.completed_at
        model.actual_duration_hours = assignment.actual_duration_hours
        model.completion_notes = assignment.completion_notes
        await self._session.flush()
        return assignment

    async def list_active_for_concern(self, concern_id: str) -> List[CrossDepartmentAssignment]:
        stmt = select(CrossDepartmentAssignmentModel).where(
            CrossDepartmentAssignmentModel.concern_id == concern_id,
            CrossDepartmentAssignmentModel.completed_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return [_to_cross_assignment(model) for model in result.scalars().all()]

    async def list_since(self, since: Optional[datetime] = None) -> List[CrossDepartmentAssignment]:
        stmt = select(CrossDepartmentAssignmentModel)
        if since is not None:
            stmt = stmt.where(CrossDepartmentAssignmentModel.assigned_at >= since)
        result = await self._session.execute(stmt.order_by(CrossDepartmentAssignmentModel.assigned_at))
        return [_to_cross_assignment(model) for model in result.scalars().all()]


class SQLAlchemyConcernEventRepository(IConcernEventRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, event: ConcernEvent) -> ConcernEvent:
        self._session.add(
            ConcernEventModel(
                id=event.id,
                concern_id=event.concern_id,
                event_type=event.event_type,
                message=event.message,
                actor_id=event.actor_id,
                event_metadata=event.metadata,
                created_at=event.created_at,
            )
        )
        await self._session.flush()
        return event

    async def list_for_concern(self, concern_id: str) -> List[ConcernEvent]:
        stmt = (
            select(ConcernEventModel)
            .where(ConcernEventModel.concern_id == concern_id)
            .order_by(ConcernEventModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_event(model) for model in result.scalars().all()]


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """One session, one transaction, all repositories."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_maker()
        self.concerns = SQLAlchemyConcernRepository(self._session)
        self.users = SQLAlchemyUserRepository(self._session)
        self.departments = SQLAlchemyDepartmentRepository(self._session)
        self.cross_assignments = SQLAlchemyCrossDepartmentAssignmentRepository(self._session)
        self.events = SQLAlchemyConcernEventRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.rollback()
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise RepositoryException("Transaction could not be committed", {"error": str(e.orig)}) from e

    async def rollback(self) -> None:
        if self._session is not None:
            await self._session.rollback()
