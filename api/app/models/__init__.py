"""Models package."""
from app.models.organization import Organization
from app.models.user import User, UserRole
from app.models.audit_log import AuditLog
from app.models.control import Control, ControlType, ControlTarget, RiskControlLink
from app.models.risk import Risk, RiskStatus, INACTIVE_RISK_STATUSES
from app.models.treatment import (
    TreatmentAlert,
    TreatmentAlertStatus,
    TreatmentAction,
    TreatmentLogEntry,
)
from app.models.period import Period, PeriodStatus, RiskHistory
