"""
Workload Tracker
================

Read-only view of handler and department workload.

Workload is always recomputed from concern rows inside the caller's unit of
work, so a count taken after an assignment write in the same transaction
already includes it.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from concern_desk.assignment.domain.balancing import DepartmentLoad
from concern_desk.assignment.domain.selector import HandlerLoad, IN_DEPARTMENT_ROLES
from concern_desk.concerns.application.ports import IUnitOfWork
from concern_desk.concerns.domain.entities import User


class WorkloadTracker:
    """Derived workload figures over the concern store."""

    def __init__(self, capacity_cap: int = 10):
        self.capacity_cap = capacity_cap

    async def workload(self, uow: IUnitOfWork, handler_id: str) -> int:
        counts = await uow.concerns.count_active_by_handler([handler_id])
        return counts.get(handler_id, 0)

    def is_overloaded(self, workload: int) -> bool:
        return workload >= self.capacity_cap

    async def average_resolution_hours(self, uow: IUnitOfWork, handler_id: str) -> Optional[float]:
        averages = await uow.concerns.average_resolution_hours([handler_id])
        return averages.get(handler_id)

    async def snapshot(self, uow: IUnitOfWork, handlers: Iterable[User]) -> List[HandlerLoad]:
        """Workload and resolution history for each handler, in one pass."""
        unique: Dict[str, User] = {}
        for handler in handlers:
            unique.setdefault(handler.id, handler)
        if not unique:
            return []

        counts = await uow.concerns.count_active_by_handler(unique.keys())
        averages = await uow.concerns.average_resolution_hours(unique.keys())
        return [
            HandlerLoad(
                handler=handler,
                workload=counts.get(handler_id, 0),
                average_resolution_hours=averages.get(handler_id),
            )
            for handler_id, handler in unique.items()
        ]

    async def department_loads(
        self,
        uow: IUnitOfWork,
        department_ids: Optional[Sequence[str]] = None,
    ) -> List[DepartmentLoad]:
        departments = await uow.departments.list_active()
        if department_ids is not None:
            wanted = set(department_ids)
            departments = [d for d in departments if d.id in wanted]

        open_counts = await uow.concerns.count_open_by_department()
        loads = []
        for department in departments:
            handlers = await uow.users.list_handlers(
                department_id=department.id, roles=IN_DEPARTMENT_ROLES
            )
            loads.append(
                DepartmentLoad(
                    department_id=department.id,
                    name=department.name,
                    open_concerns=open_counts.get(department.id, 0),
                    active_handlers=len(handlers),
                    capacity_cap=self.capacity_cap,
                )
            )
        return loads
