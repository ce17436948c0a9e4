"""
Triage Controllers (API Routes)
===============================

Preview of the classifier a submission runs, without creating anything.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from concern_desk.concerns.application.dto import PriorityAnalysisResponse
from concern_desk.triage.domain.classifier import PriorityClassifier

router = APIRouter(prefix="/triage", tags=["Triage"])

_classifier = PriorityClassifier()


class ClassifyRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)


@router.post("/classify", response_model=PriorityAnalysisResponse, summary="Classify concern text")
async def classify_concern(body: ClassifyRequest) -> PriorityAnalysisResponse:
    analysis = _classifier.classify(f"{body.subject} {body.description}")
    return PriorityAnalysisResponse.model_validate(analysis)
