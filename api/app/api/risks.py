"""Risk register routes: CRUD, control links, live resolution and history."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload
from app.core.audit import create_audit_log
from app.core.codes import RISK_CODE_PREFIX, generate_code
from app.core.database import get_db, write_transaction
from app.core.deps import get_current_user
from app.core.errors import ConcurrentModification, DuplicateLink, NotFound
from app.core.locks import risk_mutation
from app.core.period_store import PeriodStore
from app.core.risk_calculation import (
    SCORE_FIELDS,
    calculate_control_effectiveness,
    create_audit_log_changes,
    effective_link_scores,
)
from app.core.risk_state import resolve_loaded_risk, resolve_risk
from app.core.treatment_ledger import TreatmentLedgerService
from app.models.control import Control, RiskControlLink
from app.models.risk import Risk
from app.models.user import User
from app.schemas.control import (
    RiskControlLinkCreate,
    RiskControlLinkResponse,
    RiskControlLinkUpdate,
)
from app.schemas.period import RiskHistoryResponse
from app.schemas.risk import (
    ResolvedRiskResponse,
    RiskCreate,
    RiskListItem,
    RiskResponse,
    RiskUpdate,
)
from app.schemas.treatment import TreatmentLogEntryResponse

logger = logging.getLogger(__name__)

router = APIRouter()

AUDITED_FIELDS = (
    "title", "description", "category", "inherent_likelihood", "inherent_impact", "status", "owner_id"
)


def get_risk_or_404(db: Session, risk_id: int, organization_id: int) -> Risk:
    risk = db.query(Risk).filter(
        Risk.risk_id == risk_id,
        Risk.organization_id == organization_id,
    ).first()
    if not risk:
        raise NotFound("Risk", risk_id)
    return risk


def _snapshot(risk: Risk) -> dict:
    return {field: getattr(risk, field) for field in AUDITED_FIELDS}


def _link_response(link: RiskControlLink) -> dict:
    control = link.control
    scores = effective_link_scores(control, link)
    return {
        "link_id": link.link_id,
        "risk_id": link.risk_id,
        "control_id": control.control_id,
        "control_code": control.control_code,
        "control_name": control.name,
        "target": control.target,
        "design_score": link.design_score,
        "implementation_score": link.implementation_score,
        "monitoring_score": link.monitoring_score,
        "evaluation_score": link.evaluation_score,
        "effective_design_score": scores.design_score,
        "effective_implementation_score": scores.implementation_score,
        "effective_monitoring_score": scores.monitoring_score,
        "effective_evaluation_score": scores.evaluation_score,
        "effectiveness": calculate_control_effectiveness(
            scores.design_score,
            scores.implementation_score,
            scores.monitoring_score,
            scores.evaluation_score,
        ),
        "created_at": link.created_at,
    }


def _get_link_or_404(db: Session, risk_id: int, control_id: int) -> RiskControlLink:
    link = db.query(RiskControlLink).options(joinedload(RiskControlLink.control)).filter(
        RiskControlLink.risk_id == risk_id,
        RiskControlLink.control_id == control_id,
    ).first()
    if not link:
        raise NotFound("RiskControlLink", f"{risk_id}/{control_id}")
    return link


# ============================================================================
# Risks
# ============================================================================

@router.get("/", response_model=List[RiskListItem])
def list_risks(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by risk status"),
    category: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List risks with their live working and residual values."""
    query = db.query(Risk).filter(Risk.organization_id == current_user.organization_id)
    if status_filter:
        query = query.filter(Risk.status == status_filter)
    if category:
        query = query.filter(Risk.category == category)
    risks = query.order_by(Risk.risk_code.asc()).offset(skip).limit(limit).all()

    result = []
    for risk in risks:
        state = resolve_loaded_risk(db, risk)
        item = RiskResponse.model_validate(risk).model_dump()
        item.update(
            working_likelihood=state.working.working_likelihood,
            working_impact=state.working.working_impact,
            residual_likelihood=state.residual_likelihood,
            residual_impact=state.residual_impact,
            residual_score=state.residual_score,
        )
        result.append(item)
    return result


@router.post("/", response_model=RiskResponse, status_code=status.HTTP_201_CREATED)
def create_risk(
    payload: RiskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Register a risk with its inherent likelihood and impact."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id), write_transaction(db, "Create risk"):
        PeriodStore(db).guard_mutation(organization_id)
        data = payload.model_dump()
        data["status"] = payload.status.value
        risk = Risk(
            organization_id=organization_id,
            risk_code=generate_code(db, Risk.risk_code, Risk.organization_id, organization_id, RISK_CODE_PREFIX),
            **data,
        )
        db.add(risk)
        db.flush()
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Risk",
            entity_id=risk.risk_id,
            action="CREATE",
            user_id=current_user.user_id,
            changes={"risk_code": risk.risk_code, **_snapshot(risk)},
        )

    db.refresh(risk)
    logger.info("Created risk %s", risk.risk_code)
    return risk


@router.get("/{risk_id}", response_model=RiskResponse)
def get_risk(
    risk_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_risk_or_404(db, risk_id, current_user.organization_id)


@router.patch("/{risk_id}", response_model=RiskResponse)
def update_risk(
    risk_id: int,
    payload: RiskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update descriptive fields or the inherent assessment; ``version`` must match."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id, risk_id), write_transaction(db, f"Update risk {risk_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        risk = get_risk_or_404(db, risk_id, organization_id)
        if risk.version != payload.version:
            raise ConcurrentModification(
                f"Risk {risk_id} is at version {risk.version}, not {payload.version}"
            )

        old_values = _snapshot(risk)
        update_data = payload.model_dump(exclude_unset=True, exclude={"version"})
        for field, value in update_data.items():
            if value is None and field not in ("description", "category", "owner_id"):
                continue
            setattr(risk, field, getattr(value, "value", value))
        db.flush()

        changes = create_audit_log_changes(old_values, _snapshot(risk))
        if changes:
            create_audit_log(
                db,
                organization_id=organization_id,
                entity_type="Risk",
                entity_id=risk_id,
                action="UPDATE",
                user_id=current_user.user_id,
                changes=changes,
            )

    db.refresh(risk)
    return risk


@router.delete("/{risk_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_risk(
    risk_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a risk with its control links and treatment alerts.

    Committed history and the treatment log keep the risk by value.
    """
    organization_id = current_user.organization_id
    with risk_mutation(organization_id, risk_id), write_transaction(db, f"Delete risk {risk_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        risk = get_risk_or_404(db, risk_id, organization_id)
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Risk",
            entity_id=risk_id,
            action="DELETE",
            user_id=current_user.user_id,
            changes={"risk_code": risk.risk_code, "title": risk.title},
        )
        db.delete(risk)
    logger.info("Deleted risk %s", risk_id)
    return None


# ============================================================================
# Control links
# ============================================================================

@router.get("/{risk_id}/controls", response_model=List[RiskControlLinkResponse])
def list_risk_controls(
    risk_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    get_risk_or_404(db, risk_id, current_user.organization_id)
    links = db.query(RiskControlLink).options(joinedload(RiskControlLink.control)).filter(
        RiskControlLink.risk_id == risk_id
    ).order_by(RiskControlLink.link_id.asc()).all()
    return [_link_response(link) for link in links]


@router.post(
    "/{risk_id}/controls",
    response_model=RiskControlLinkResponse,
    status_code=status.HTTP_201_CREATED,
)
def link_control(
    risk_id: int,
    payload: RiskControlLinkCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Link a control to a risk, optionally overriding any of its four scores."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id, risk_id), write_transaction(db, f"Link control to risk {risk_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        get_risk_or_404(db, risk_id, organization_id)
        control = db.query(Control).filter(
            Control.control_id == payload.control_id,
            Control.organization_id == organization_id,
        ).first()
        if not control:
            raise NotFound("Control", payload.control_id)

        existing = db.query(RiskControlLink).filter(
            RiskControlLink.risk_id == risk_id,
            RiskControlLink.control_id == payload.control_id,
        ).first()
        if existing:
            raise DuplicateLink(control.control_code, risk_id)

        link = RiskControlLink(risk_id=risk_id, created_by_id=current_user.user_id, **payload.model_dump())
        db.add(link)
        db.flush()
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Risk",
            entity_id=risk_id,
            action="LINK_CONTROL",
            user_id=current_user.user_id,
            changes={"control_id": control.control_id, "control_code": control.control_code},
        )

    return _link_response(_get_link_or_404(db, risk_id, payload.control_id))


@router.patch("/{risk_id}/controls/{control_id}", response_model=RiskControlLinkResponse)
def update_link(
    risk_id: int,
    control_id: int,
    payload: RiskControlLinkUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Change per-link score overrides; an explicit null reverts to the control's score."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id, risk_id), write_transaction(db, f"Update link {risk_id}/{control_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        get_risk_or_404(db, risk_id, organization_id)
        link = _get_link_or_404(db, risk_id, control_id)

        old_values = {field: getattr(link, field) for field in SCORE_FIELDS}
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(link, field, value)
        new_values = {field: getattr(link, field) for field in SCORE_FIELDS}

        changes = create_audit_log_changes(old_values, new_values, control_id=control_id)
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Risk",
            entity_id=risk_id,
            action="UPDATE_CONTROL_LINK",
            user_id=current_user.user_id,
            changes=changes,
        )

    return _link_response(_get_link_or_404(db, risk_id, control_id))


@router.delete("/{risk_id}/controls/{control_id}", status_code=status.HTTP_204_NO_CONTENT)
def unlink_control(
    risk_id: int,
    control_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    organization_id = current_user.organization_id
    with risk_mutation(organization_id, risk_id), write_transaction(db, f"Unlink control {control_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        get_risk_or_404(db, risk_id, organization_id)
        link = _get_link_or_404(db, risk_id, control_id)
        db.delete(link)
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Risk",
            entity_id=risk_id,
            action="UNLINK_CONTROL",
            user_id=current_user.user_id,
            changes={"control_id": control_id},
        )
    return None


# ============================================================================
# Live state, history and treatment log
# ============================================================================

@router.get("/{risk_id}/resolve", response_model=ResolvedRiskResponse)
def resolve(
    risk_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Working and residual values computed from the current links and applied alerts."""
    get_risk_or_404(db, risk_id, current_user.organization_id)
    return resolve_risk(db, risk_id).as_dict()


@router.get("/{risk_id}/history", response_model=List[RiskHistoryResponse])
def get_history(
    risk_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Committed snapshots of a risk, oldest first. Available after the risk is deleted."""
    return PeriodStore(db).get_history(
        risk_id, skip=skip, limit=limit, organization_id=current_user.organization_id
    )


@router.get("/{risk_id}/treatment-log", response_model=List[TreatmentLogEntryResponse])
def get_treatment_log(
    risk_id: int,
    include_deleted: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return TreatmentLedgerService(db).list_log(
        risk_id, include_deleted=include_deleted, organization_id=current_user.organization_id
    )
