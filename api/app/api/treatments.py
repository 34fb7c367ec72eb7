"""Treatment alert routes: propose, review, apply and undo."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.deps import get_current_user
from app.core.errors import NotFound
from app.core.treatment_ledger import TreatmentLedgerService, TreatmentOutcome
from app.models.risk import Risk
from app.models.treatment import TreatmentAlertStatus
from app.models.user import User
from app.schemas.treatment import (
    TreatmentActionRequest,
    TreatmentAlertCreate,
    TreatmentAlertReject,
    TreatmentAlertResponse,
    TreatmentLogEntryResponse,
    TreatmentOutcomeResponse,
)

router = APIRouter()


def _outcome_response(outcome: TreatmentOutcome) -> dict:
    return {
        "alert": TreatmentAlertResponse.model_validate(outcome.alert),
        "working_likelihood": outcome.working_likelihood,
        "working_impact": outcome.working_impact,
        "changed": outcome.changed,
        "log_entry": (
            TreatmentLogEntryResponse.model_validate(outcome.log_entry)
            if outcome.log_entry is not None else None
        ),
    }


@router.post(
    "/treatment-alerts/",
    response_model=TreatmentAlertResponse,
    status_code=status.HTTP_201_CREATED,
)
def propose_alert(
    payload: TreatmentAlertCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Record a proposed likelihood/impact adjustment for a risk (status: pending)."""
    risk = db.query(Risk).filter(
        Risk.risk_id == payload.risk_id,
        Risk.organization_id == current_user.organization_id,
    ).first()
    if not risk:
        raise NotFound("Risk", payload.risk_id)

    return TreatmentLedgerService(db).propose(
        risk_id=payload.risk_id,
        likelihood_delta=payload.likelihood_delta,
        impact_delta=payload.impact_delta,
        source_event_ref=payload.source_event_ref,
        rationale=payload.rationale,
        confidence=payload.confidence,
        actor_id=current_user.user_id,
    )


@router.get("/treatment-alerts/", response_model=List[TreatmentAlertResponse])
def list_alerts(
    risk_id: Optional[int] = Query(None),
    status_filter: Optional[TreatmentAlertStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return TreatmentLedgerService(db).list_alerts(
        current_user.organization_id,
        risk_id=risk_id,
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )


@router.get("/treatment-alerts/{alert_id}", response_model=TreatmentAlertResponse)
def get_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return TreatmentLedgerService(db).get_alert(alert_id, current_user.organization_id)


@router.post("/treatment-alerts/{alert_id}/accept", response_model=TreatmentAlertResponse)
def accept_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ledger = TreatmentLedgerService(db)
    ledger.get_alert(alert_id, current_user.organization_id)
    return ledger.accept(alert_id, current_user.user_id)


@router.post("/treatment-alerts/{alert_id}/reject", response_model=TreatmentAlertResponse)
def reject_alert(
    alert_id: int,
    payload: Optional[TreatmentAlertReject] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ledger = TreatmentLedgerService(db)
    ledger.get_alert(alert_id, current_user.organization_id)
    return ledger.reject(alert_id, current_user.user_id, payload.reason if payload else None)


@router.post("/treatment-alerts/{alert_id}/apply", response_model=TreatmentOutcomeResponse)
def apply_alert(
    alert_id: int,
    payload: Optional[TreatmentActionRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Apply an accepted alert; repeating the call on an applied alert changes nothing."""
    ledger = TreatmentLedgerService(db)
    ledger.get_alert(alert_id, current_user.organization_id)
    notes = payload.notes if payload else None
    return _outcome_response(ledger.apply(alert_id, current_user.user_id, notes))


@router.post("/treatment-alerts/{alert_id}/undo", response_model=TreatmentOutcomeResponse)
def undo_alert(
    alert_id: int,
    payload: Optional[TreatmentActionRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Withdraw an applied alert and recompute the risk from the remaining ones."""
    ledger = TreatmentLedgerService(db)
    ledger.get_alert(alert_id, current_user.organization_id)
    notes = payload.notes if payload else None
    return _outcome_response(ledger.undo(alert_id, current_user.user_id, notes))


@router.delete("/treatment-log/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_log_entry(
    log_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Tombstone a treatment log entry; it remains stored for audit."""
    TreatmentLedgerService(db).soft_delete_log_entry(
        log_id, current_user.user_id, organization_id=current_user.organization_id
    )
    return None
