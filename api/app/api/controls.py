"""Control library routes."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from app.core.audit import create_audit_log
from app.core.codes import CONTROL_CODE_PREFIX, generate_code
from app.core.database import get_db, write_transaction
from app.core.deps import get_current_user
from app.core.errors import ConcurrentModification, ControlInUse, NotFound
from app.core.locks import risk_mutation
from app.core.period_store import PeriodStore
from app.core.risk_calculation import SCORE_FIELDS, create_audit_log_changes
from app.models.control import Control, ControlTarget, RiskControlLink
from app.models.user import User
from app.schemas.control import ControlCreate, ControlResponse, ControlUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

AUDITED_FIELDS = ("name", "description", "control_type", "target") + SCORE_FIELDS


def get_control_or_404(db: Session, control_id: int, organization_id: int) -> Control:
    control = db.query(Control).filter(
        Control.control_id == control_id,
        Control.organization_id == organization_id,
    ).first()
    if not control:
        raise NotFound("Control", control_id)
    return control


def _snapshot(control: Control) -> dict:
    return {field: getattr(control, field) for field in AUDITED_FIELDS}


@router.get("/", response_model=List[ControlResponse])
def list_controls(
    target: Optional[ControlTarget] = Query(None, description="Filter by mitigated dimension"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List controls of the caller's organization."""
    query = db.query(Control).filter(Control.organization_id == current_user.organization_id)
    if target:
        query = query.filter(Control.target == target.value)
    return query.order_by(Control.control_code.asc()).offset(skip).limit(limit).all()


@router.post("/", response_model=ControlResponse, status_code=status.HTTP_201_CREATED)
def create_control(
    payload: ControlCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a reusable control."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id), write_transaction(db, "Create control"):
        PeriodStore(db).guard_mutation(organization_id)
        data = payload.model_dump()
        data["control_type"] = payload.control_type.value
        data["target"] = payload.target.value
        control = Control(
            organization_id=organization_id,
            control_code=generate_code(
                db, Control.control_code, Control.organization_id, organization_id, CONTROL_CODE_PREFIX
            ),
            created_by_id=current_user.user_id,
            **data,
        )
        db.add(control)
        db.flush()
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Control",
            entity_id=control.control_id,
            action="CREATE",
            user_id=current_user.user_id,
            changes={"control_code": control.control_code, **_snapshot(control)},
        )

    db.refresh(control)
    logger.info("Created control %s", control.control_code)
    return control


@router.get("/{control_id}", response_model=ControlResponse)
def get_control(
    control_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_control_or_404(db, control_id, current_user.organization_id)


@router.patch("/{control_id}", response_model=ControlResponse)
def update_control(
    control_id: int,
    payload: ControlUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a control.

    Every risk linked to it resolves against the new scores from now on;
    the caller must quote the ``version`` it read.
    """
    organization_id = current_user.organization_id
    with risk_mutation(organization_id), write_transaction(db, f"Update control {control_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        control = get_control_or_404(db, control_id, organization_id)
        if control.version != payload.version:
            raise ConcurrentModification(
                f"Control {control_id} is at version {control.version}, not {payload.version}"
            )

        old_values = _snapshot(control)
        update_data = payload.model_dump(exclude_unset=True, exclude={"version"})
        for field, value in update_data.items():
            if value is None and field != "description":
                continue
            setattr(control, field, getattr(value, "value", value))
        db.flush()

        changes = create_audit_log_changes(old_values, _snapshot(control))
        if changes:
            create_audit_log(
                db,
                organization_id=organization_id,
                entity_type="Control",
                entity_id=control_id,
                action="UPDATE",
                user_id=current_user.user_id,
                changes=changes,
            )

    db.refresh(control)
    return control


@router.delete("/{control_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_control(
    control_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a control that no risk links to any more."""
    organization_id = current_user.organization_id
    with risk_mutation(organization_id), write_transaction(db, f"Delete control {control_id}"):
        PeriodStore(db).guard_mutation(organization_id)
        control = get_control_or_404(db, control_id, organization_id)
        linked = db.query(RiskControlLink).filter(RiskControlLink.control_id == control_id).count()
        if linked:
            raise ControlInUse(control_id, linked)
        create_audit_log(
            db,
            organization_id=organization_id,
            entity_type="Control",
            entity_id=control_id,
            action="DELETE",
            user_id=current_user.user_id,
            changes={"control_code": control.control_code, "name": control.name},
        )
        db.delete(control)
    return None
