"""Period routes: browsing committed snapshots and committing the open period."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.deps import get_current_user, require_admin
from app.core.errors import NoOpenPeriod
from app.core.period_store import CommitCoordinator, PeriodStore
from app.models.period import PeriodStatus
from app.models.user import User
from app.schemas.period import (
    CommitRequest,
    CommitResponse,
    PeriodComparison,
    PeriodResponse,
    PeriodTrend,
    RiskHistoryResponse,
    RiskMigration,
)

router = APIRouter()


@router.get("/", response_model=List[PeriodResponse])
def list_periods(
    status_filter: Optional[PeriodStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Periods in opening order; the open period, if any, comes last."""
    return PeriodStore(db).list_periods(
        current_user.organization_id,
        status=status_filter.value if status_filter else None,
    )


@router.get("/current", response_model=PeriodResponse)
def get_current_period(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    period = PeriodStore(db).get_open_period(current_user.organization_id)
    if period is None:
        raise NoOpenPeriod(current_user.organization_id)
    return period


@router.get("/compare", response_model=PeriodComparison)
def compare_periods(
    from_period_id: int = Query(...),
    to_period_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """New, removed and changed risks between two committed periods."""
    return PeriodStore(db).compare_periods(
        current_user.organization_id, from_period_id, to_period_id
    )


@router.get("/trends", response_model=List[PeriodTrend])
def get_period_trends(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Per committed period: counts by status, category and severity level, and average scores."""
    return PeriodStore(db).get_period_trends(current_user.organization_id)


@router.get("/migrations", response_model=List[RiskMigration])
def get_risk_migrations(
    from_period_id: int = Query(...),
    to_period_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Risks whose residual severity level changed between two committed periods."""
    return PeriodStore(db).analyze_risk_migrations(
        current_user.organization_id, from_period_id, to_period_id
    )


@router.post("/commit", response_model=CommitResponse)
def commit_period(
    payload: Optional[CommitRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """
    Freeze every risk's resolved state into the open period and open the next one.

    Answers 423 while another commit for the organization is running.
    """
    result = CommitCoordinator(db).commit(
        current_user.organization_id,
        current_user.user_id,
        notes=payload.notes if payload else None,
    )
    return {
        "period_id": result.period_id,
        "snapshot_count": result.snapshot_count,
        "next_period_id": result.next_period_id,
        "committed_at": result.committed_at,
    }


@router.get("/{period_id}", response_model=PeriodResponse)
def get_period(
    period_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return PeriodStore(db).get_period(period_id, current_user.organization_id)


@router.get("/{period_id}/snapshot", response_model=List[RiskHistoryResponse])
def get_period_snapshot(
    period_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """History rows written by the commit of this period (empty while open)."""
    return PeriodStore(db).get_period_snapshot(period_id, current_user.organization_id)
