"""
Concern Controllers (API Routes)
================================

FastAPI routes for the concern lifecycle, escalation and workload balancing.

Controllers are thin - they delegate to the orchestrator. Domain errors are
translated to HTTP responses by the shared exception handlers.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status

from concern_desk.concerns.application.dto import (
    ActorRequest,
    AssignRequest,
    CompleteAssignmentRequest,
    ConcernDraft,
    ConcernEventResponse,
    ConcernResponse,
    ConfirmRequest,
    CrossDepartmentAssignmentResponse,
    DisputeRequest,
    EmergencyRequest,
    EmergencyResponse,
    EscalateRequest,
    ExecuteProposalsRequest,
    ExecutionReportResponse,
    PriorityAnalysisResponse,
    RejectRequest,
    StatusUpdateRequest,
    SubmissionResponse,
)
from concern_desk.orchestrator import ConcernOrchestrator


router = APIRouter(prefix="/concerns", tags=["Concerns"])
workload_router = APIRouter(prefix="/workload", tags=["Workload Balancing"])
escalation_router = APIRouter(prefix="/escalation", tags=["Escalation"])


# ========== Example payloads for Swagger ==========

SUBMIT_EXAMPLE = {
    "student_id": "5b0f6a4e-9d59-4b43-a3c1-2f0c1b7c9d11",
    "subject": "Tuition payment not reflected",
    "description": "I paid my tuition last week but the portal still shows an outstanding balance.",
    "is_anonymous": False,
}


# ========== Dependencies ==========

def get_orchestrator(request: Request) -> ConcernOrchestrator:
    """Orchestrator built during application startup."""
    return request.app.state.orchestrator


def _concern(concern) -> ConcernResponse:
    return ConcernResponse.model_validate(concern)


# ========== Lifecycle ==========

@router.post(
    "",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a concern",
    description="""
    Create a concern, classify its urgency and try to assign it right away.

    A concern nobody can take right now is still created: the response then
    carries `assignment.status = "unassigned"` and it waits for manual review.
    """,
    openapi_extra={"requestBody": {"content": {"application/json": {"example": SUBMIT_EXAMPLE}}}},
)
async def submit_concern(
    draft: ConcernDraft,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> SubmissionResponse:
    result = await orchestrator.submit(draft)
    return SubmissionResponse(
        concern=_concern(result.concern),
        priority_analysis=PriorityAnalysisResponse.model_validate(result.priority_analysis),
        assignment=result.assignment,
    )


@router.get("/{concern_id}", response_model=ConcernResponse, summary="Get a concern")
async def get_concern(
    concern_id: str,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.get_concern(concern_id))


@router.get(
    "/{concern_id}/history",
    response_model=List[ConcernEventResponse],
    summary="Concern history, oldest first",
)
async def get_history(
    concern_id: str,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> List[ConcernEventResponse]:
    events = await orchestrator.get_history(concern_id)
    return [ConcernEventResponse.model_validate(event) for event in events]


@router.post("/{concern_id}/approve", response_model=ConcernResponse, summary="Approve a pending concern")
async def approve_concern(
    concern_id: str,
    body: ActorRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.approve(concern_id, body.actor_id))


@router.post("/{concern_id}/reject", response_model=ConcernResponse, summary="Reject a pending concern")
async def reject_concern(
    concern_id: str,
    body: RejectRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.reject(concern_id, body.actor_id, body.reason))


@router.post("/{concern_id}/status", response_model=ConcernResponse, summary="Change a concern's status")
async def update_status(
    concern_id: str,
    body: StatusUpdateRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.update_status(concern_id, body.actor_id, body.status, body.note))


@router.post(
    "/{concern_id}/confirm",
    response_model=ConcernResponse,
    summary="Student confirms the resolution",
)
async def confirm_resolution(
    concern_id: str,
    body: ConfirmRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    concern = await orchestrator.confirm_resolution(concern_id, body.student_id, body.notes, body.rating)
    return _concern(concern)


@router.post(
    "/{concern_id}/dispute",
    response_model=ConcernResponse,
    summary="Student disputes the resolution",
)
async def dispute_resolution(
    concern_id: str,
    body: DisputeRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.dispute_resolution(concern_id, body.student_id, body.reason))


@router.post("/{concern_id}/assign", response_model=ConcernResponse, summary="Assign a handler manually")
async def assign_concern(
    concern_id: str,
    body: AssignRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.assign(concern_id, body.actor_id, body.handler_id))


@router.post("/{concern_id}/escalate", response_model=ConcernResponse, summary="Escalate a concern manually")
async def escalate_concern(
    concern_id: str,
    body: EscalateRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ConcernResponse:
    return _concern(await orchestrator.manual_escalate(concern_id, body.actor_id, body.reason))


@router.post(
    "/{concern_id}/emergency",
    response_model=EmergencyResponse,
    summary="Emergency cross-department assignment",
)
async def activate_emergency(
    concern_id: str,
    body: EmergencyRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> EmergencyResponse:
    outcome = await orchestrator.activate_emergency(concern_id, body.reason, body.priority, body.actor_id)
    return EmergencyResponse(
        concern=_concern(outcome.concern),
        handler_id=outcome.handler.id if outcome.handler else None,
        assigned=outcome.assigned,
    )


# ========== Workload balancing ==========

@workload_router.get("/analysis", summary="Load ratio per department")
async def analyze_workload(orchestrator: ConcernOrchestrator = Depends(get_orchestrator)) -> dict:
    analysis = await orchestrator.analyze_workload()
    return analysis.to_dict()


@workload_router.get("/handlers/{handler_id}", summary="Workload of a single handler")
async def handler_workload(
    handler_id: str,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> dict:
    return await orchestrator.handler_workload(handler_id)


@workload_router.get(
    "/departments/{department_id}/proposals",
    summary="Rebalancing proposals for an overloaded department",
)
async def rebalance_proposals(
    department_id: str,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> List[dict]:
    proposals = await orchestrator.rebalance_workload(department_id)
    return [proposal.to_dict() for proposal in proposals]


@workload_router.post(
    "/departments/{department_id}/rebalance",
    response_model=ExecutionReportResponse,
    summary="Execute rebalancing proposals",
)
async def execute_rebalance(
    department_id: str,
    body: ExecuteProposalsRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> ExecutionReportResponse:
    report = await orchestrator.execute_rebalance(department_id, body.actor_id, body.concern_ids)
    return ExecutionReportResponse(executed=report.executed, failed=report.failed)


@workload_router.post(
    "/assignments/{assignment_id}/complete",
    response_model=CrossDepartmentAssignmentResponse,
    summary="Complete a cross-department assignment",
)
async def complete_assignment(
    assignment_id: str,
    body: CompleteAssignmentRequest,
    orchestrator: ConcernOrchestrator = Depends(get_orchestrator),
) -> CrossDepartmentAssignmentResponse:
    assignment = await orchestrator.complete_cross_department_assignment(assignment_id, body.notes)
    return CrossDepartmentAssignmentResponse.model_validate(assignment)


@workload_router.get("/assignments/stats", summary="Cross-department assignment statistics")
async def assignment_stats(orchestrator: ConcernOrchestrator = Depends(get_orchestrator)) -> dict:
    return await orchestrator.balancer.assignment_stats()


# ========== Escalation ==========

@escalation_router.post("/sweep", summary="Run an escalation sweep now")
async def run_sweep(orchestrator: ConcernOrchestrator = Depends(get_orchestrator)) -> dict:
    result = await orchestrator.run_escalation_sweep()
    return result.to_dict()


@escalation_router.get("/stats", summary="Escalation statistics")
async def escalation_stats(orchestrator: ConcernOrchestrator = Depends(get_orchestrator)) -> dict:
    return await orchestrator.escalation_stats()
