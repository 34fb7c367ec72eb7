"""Pydantic schemas for controls and risk-control links."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings
from app.models.control import ControlTarget, ControlType

SCORE_MAX = settings.CONTROL_SCORE_MAX


# ============================================================================
# Controls
# ============================================================================

class ControlCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    control_type: ControlType = ControlType.PREVENTIVE
    target: ControlTarget
    design_score: int = Field(0, ge=0, le=SCORE_MAX)
    implementation_score: int = Field(0, ge=0, le=SCORE_MAX)
    monitoring_score: int = Field(0, ge=0, le=SCORE_MAX)
    evaluation_score: int = Field(0, ge=0, le=SCORE_MAX)


class ControlUpdate(BaseModel):
    """Partial update; ``version`` must match the stored row."""
    version: int
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    control_type: Optional[ControlType] = None
    target: Optional[ControlTarget] = None
    design_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    implementation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    monitoring_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    evaluation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)


class ControlResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    control_id: int
    organization_id: int
    control_code: str
    name: str
    description: Optional[str] = None
    control_type: str
    target: str
    design_score: int
    implementation_score: int
    monitoring_score: int
    evaluation_score: int
    effectiveness: float = 0.0
    version: int
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Risk-control links
# ============================================================================

class RiskControlLinkCreate(BaseModel):
    """Link a control to a risk; a null override falls back to the control's score."""
    control_id: int
    design_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    implementation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    monitoring_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    evaluation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)


class RiskControlLinkUpdate(BaseModel):
    design_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    implementation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    monitoring_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)
    evaluation_score: Optional[int] = Field(None, ge=0, le=SCORE_MAX)


class RiskControlLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    link_id: int
    risk_id: int
    control_id: int
    control_code: str
    control_name: str
    target: str
    design_score: Optional[int] = None
    implementation_score: Optional[int] = None
    monitoring_score: Optional[int] = None
    evaluation_score: Optional[int] = None
    effective_design_score: int
    effective_implementation_score: int
    effective_monitoring_score: int
    effective_evaluation_score: int
    effectiveness: float
    created_at: datetime
