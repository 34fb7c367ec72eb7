"""Audit log model for tracking changes."""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.time import utc_now


class AuditLog(Base):
    """Audit log table for control, risk, alert and period changes."""
    __tablename__ = "audit_logs"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g., "Risk", "TreatmentAlert"
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE, UPDATE, DELETE, ACCEPT, COMMIT...
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    changes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # JSON of what changed
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    # Relationship to user
    user: Mapped[Optional["User"]] = relationship("User")


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from app.models.user import User
