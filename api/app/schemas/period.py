"""Pydantic schemas for periods, commits and risk history."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class PeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_id: int
    organization_id: int
    label: str
    status: str
    opened_at: datetime
    committed_at: Optional[datetime] = None
    committed_by_id: Optional[int] = None
    notes: Optional[str] = None
    risks_count: Optional[int] = None
    active_risks_count: Optional[int] = None
    closed_risks_count: Optional[int] = None
    controls_count: Optional[int] = None


class CommitRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class CommitResponse(BaseModel):
    period_id: int
    snapshot_count: int
    next_period_id: int
    committed_at: datetime


class RiskHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    history_id: int
    period_id: int
    risk_id: int
    committed_at: datetime
    risk_code: str
    title: str
    category: Optional[str] = None
    status: str
    inherent_likelihood: int
    inherent_impact: int
    working_likelihood: int
    working_impact: int
    residual_likelihood: int
    residual_impact: int
    residual_score: int
    control_effectiveness: Dict[str, Any]


class RiskChange(BaseModel):
    risk_id: int
    risk_code: str
    title: str
    old_status: str
    new_status: str
    working_likelihood_change: int
    working_impact_change: int
    residual_likelihood_change: int
    residual_impact_change: int
    residual_score_change: int


class PeriodComparison(BaseModel):
    from_period_id: int
    to_period_id: int
    risk_count_from: int
    risk_count_to: int
    new_risks: List[str]
    removed_risks: List[str]
    changed_risks: List[RiskChange]
    avg_residual_score_from: float
    avg_residual_score_to: float
    avg_residual_score_change: float


class PeriodTrend(BaseModel):
    """Portfolio summary of one committed period; levels from residual scores."""
    period_id: int
    label: str
    committed_at: datetime
    total_risks: int
    by_status: Dict[str, int]
    by_category: Dict[str, int]
    by_level: Dict[str, int]
    avg_inherent_score: float
    avg_residual_score: float
    high_severe_count: int


class RiskMigration(BaseModel):
    risk_id: int
    risk_code: str
    title: str
    from_level: str
    to_level: str
    from_score: int
    to_score: int
    direction: Literal["improved", "deteriorated"]
