"""Audit trail routes, scoped to the caller's organization."""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload
from app.core.audit import AuditEntityType
from app.core.database import get_db
from app.core.deps import get_current_user
from app.models.user import User
from app.models.audit_log import AuditLog
from app.schemas.audit_log import AuditLogResponse

router = APIRouter()


def _organization_logs(db: Session, organization_id: int):
    return db.query(AuditLog).options(joinedload(AuditLog.user)).filter(
        AuditLog.organization_id == organization_id
    )


@router.get("/", response_model=List[AuditLogResponse])
def list_audit_logs(
    entity_type: Optional[AuditEntityType] = Query(None),
    entity_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None, description="CREATE, UPDATE, DELETE, ACCEPT, REJECT, COMMIT..."),
    user_id: Optional[int] = Query(None, description="Actor who made the change"),
    since: Optional[datetime] = Query(None, description="Only entries at or after this instant (UTC)"),
    until: Optional[datetime] = Query(None, description="Only entries before this instant (UTC)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Most recent entries first."""
    query = _organization_logs(db, current_user.organization_id)

    if entity_type is not None:
        query = query.filter(AuditLog.entity_type == entity_type.value)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action.upper())
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if since is not None:
        query = query.filter(AuditLog.timestamp >= since)
    if until is not None:
        query = query.filter(AuditLog.timestamp < until)

    return query.order_by(AuditLog.timestamp.desc(), AuditLog.log_id.desc()).offset(offset).limit(limit).all()


@router.get("/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
def get_entity_trail(
    entity_type: AuditEntityType,
    entity_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Full change trail of one entity, oldest first."""
    return (
        _organization_logs(db, current_user.organization_id)
        .filter(AuditLog.entity_type == entity_type.value, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.log_id.asc())
        .all()
    )
