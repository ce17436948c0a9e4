"""
Concern Application DTOs
========================

Pydantic models for requests and responses of the concern API.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
CategoryStr = Literal[
    "academic", "financial", "administrative", "technical",
    "housing", "health", "safety", "general",
]
StatusStr = Literal[
    "pending", "approved", "rejected", "in_progress", "staff_resolved",
    "student_confirmed", "disputed", "closed", "cancelled",
]


# ========== Request DTOs ==========

class AttachmentDTO(BaseModel):
    """Metadata of a file stored elsewhere."""
    filename: str = Field(..., min_length=1)
    content_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)
    url: Optional[str] = None


class ConcernDraft(BaseModel):
    """A concern as submitted by a student."""
    student_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    department_id: Optional[str] = Field(
        None, description="Target department; derived from the text when omitted"
    )
    category: Optional[CategoryStr] = Field(
        None, description="Concern type; derived from the text when omitted"
    )
    priority: Optional[PriorityStr] = Field(
        None, description="Requested priority; detection may raise it, never lower it"
    )
    facility_id: Optional[str] = None
    is_anonymous: bool = False
    attachments: List[AttachmentDTO] = Field(default_factory=list, max_length=10)

    @field_validator("subject", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ActorRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)


class RejectRequest(ActorRequest):
    reason: str = Field(..., description="Why the concern is rejected")


class StatusUpdateRequest(ActorRequest):
    status: StatusStr
    note: Optional[str] = Field(None, max_length=2000)


class ConfirmRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)
    rating: Optional[int] = Field(None, ge=1, le=5)


class DisputeRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    reason: str = Field(..., max_length=2000)


class AssignRequest(ActorRequest):
    handler_id: str = Field(..., min_length=1)


class EscalateRequest(ActorRequest):
    reason: str = Field(..., max_length=500)


class EmergencyRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    priority: PriorityStr = "urgent"
    actor_id: Optional[str] = None


class ExecuteProposalsRequest(ActorRequest):
    concern_ids: Optional[List[str]] = Field(
        None, description="Subset of proposals to execute; all when omitted"
    )


class CompleteAssignmentRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


# ========== Response DTOs ==========

class ConcernResponse(BaseModel):
    """Concern as returned by the API."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    reference_number: str
    subject: str
    description: str
    category: str
    priority: str
    status: str
    student_id: Optional[str]
    department_id: str
    facility_id: Optional[str] = None
    is_anonymous: bool = False
    attachments: List[dict] = Field(default_factory=list)
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    escalation_level: str
    escalation_reason: Optional[str] = None
    escalated_at: Optional[datetime] = None
    last_reminder_sent: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    student_resolved_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    dispute_reason: Optional[str] = None
    rating: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    version: int


class PriorityAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    priority: str
    category: str
    department_hint: str
    sentiment: str
    auto_escalation: bool
    confidence: float
    keywords: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)


class AssignmentOutcome(BaseModel):
    """Automatic assignment result of a submission."""
    status: Literal["assigned", "unassigned"]
    handler_id: Optional[str] = None
    handler_name: Optional[str] = None
    cross_department: bool = False
    message: str


class SubmissionResponse(BaseModel):
    concern: ConcernResponse
    priority_analysis: PriorityAnalysisResponse
    assignment: AssignmentOutcome


class ConcernEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_type: str
    message: str
    actor_id: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime


class EmergencyResponse(BaseModel):
    concern: ConcernResponse
    handler_id: Optional[str] = None
    assigned: bool


class CrossDepartmentAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    concern_id: str
    staff_id: str
    requesting_department_id: str
    assigned_department_id: Optional[str] = None
    assignment_type: str
    estimated_duration_hours: int
    actual_duration_hours: Optional[float] = None
    status: str
    assigned_at: datetime
    completed_at: Optional[datetime] = None


class ExecutionReportResponse(BaseModel):
    executed: List[dict[str, Any]] = Field(default_factory=list)
    failed: List[dict[str, Any]] = Field(default_factory=list)
