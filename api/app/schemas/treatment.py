"""Pydantic schemas for treatment alerts and the treatment log."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings

DELTA_BOUND = settings.RISK_SCALE_MAX - 1


class TreatmentAlertCreate(BaseModel):
    risk_id: int
    likelihood_delta: int = Field(0, ge=-DELTA_BOUND, le=DELTA_BOUND)
    impact_delta: int = Field(0, ge=-DELTA_BOUND, le=DELTA_BOUND)
    source_event_ref: Optional[str] = Field(None, max_length=255)
    rationale: Optional[str] = None
    confidence: Optional[int] = Field(None, ge=0, le=100)


class TreatmentAlertReject(BaseModel):
    reason: Optional[str] = None


class TreatmentActionRequest(BaseModel):
    """Body of apply/undo; notes land in the treatment log."""
    notes: Optional[str] = None


class TreatmentAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert_id: int
    organization_id: int
    risk_id: int
    likelihood_delta: int
    impact_delta: int
    status: str
    source_event_ref: Optional[str] = None
    rationale: Optional[str] = None
    confidence: Optional[int] = None
    reviewed_by_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    applied_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TreatmentLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: int
    risk_id: int
    alert_id: int
    action: str
    previous_likelihood: int
    new_likelihood: int
    previous_impact: int
    new_impact: int
    notes: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[int] = None


class TreatmentOutcomeResponse(BaseModel):
    alert: TreatmentAlertResponse
    working_likelihood: int
    working_impact: int
    changed: bool
    log_entry: Optional[TreatmentLogEntryResponse] = None
