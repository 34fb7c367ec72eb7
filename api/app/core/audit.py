"""Audit log writer shared by the engine and the API routes."""
import enum
from typing import Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


class AuditEntityType(str, enum.Enum):
    """Entities whose changes land in the audit log."""
    RISK = "Risk"
    CONTROL = "Control"
    TREATMENT_ALERT = "TreatmentAlert"
    TREATMENT_LOG_ENTRY = "TreatmentLogEntry"
    PERIOD = "Period"


def create_audit_log(
    db: Session,
    organization_id: int,
    entity_type: str,
    entity_id: int,
    action: str,
    user_id: Optional[int],
    changes: Optional[dict] = None,
) -> AuditLog:
    """Create an audit log entry (flushed with the caller's transaction)."""
    audit_log = AuditLog(
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        changes=changes,
    )
    db.add(audit_log)
    return audit_log
