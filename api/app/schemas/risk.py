"""Pydantic schemas for risks and their resolved state."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings
from app.models.risk import RiskStatus

SCALE_MAX = settings.RISK_SCALE_MAX


class RiskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    inherent_likelihood: int = Field(..., ge=1, le=SCALE_MAX)
    inherent_impact: int = Field(..., ge=1, le=SCALE_MAX)
    status: RiskStatus = RiskStatus.OPEN
    owner_id: Optional[int] = None


class RiskUpdate(BaseModel):
    """Partial update; ``version`` must match the stored row."""
    version: int
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    inherent_likelihood: Optional[int] = Field(None, ge=1, le=SCALE_MAX)
    inherent_impact: Optional[int] = Field(None, ge=1, le=SCALE_MAX)
    status: Optional[RiskStatus] = None
    owner_id: Optional[int] = None


class RiskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    risk_id: int
    organization_id: int
    risk_code: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    inherent_likelihood: int
    inherent_impact: int
    status: str
    owner_id: Optional[int] = None
    version: int
    created_at: datetime
    updated_at: datetime


class RiskListItem(RiskResponse):
    """List row with the live working/residual values."""
    working_likelihood: int
    working_impact: int
    residual_likelihood: int
    residual_impact: int
    residual_score: int


# ============================================================================
# Resolve
# ============================================================================

class ControlEffectivenessResponse(BaseModel):
    control_id: Optional[int] = None
    name: Optional[str] = None
    target: str
    effectiveness: float


class ControlSummary(BaseModel):
    total_controls: int
    controls_targeting_likelihood: int
    controls_targeting_impact: int
    average_effectiveness: float


class ResolvedRiskResponse(BaseModel):
    risk_id: int
    risk_code: str
    inherent_likelihood: int
    inherent_impact: int
    likelihood_delta: int
    impact_delta: int
    working_likelihood: int
    working_impact: int
    applied_alert_ids: List[int]
    residual_likelihood: int
    residual_impact: int
    residual_score: int
    max_likelihood_effectiveness: float
    max_impact_effectiveness: float
    per_control_effectiveness: List[ControlEffectivenessResponse]
    control_summary: ControlSummary
