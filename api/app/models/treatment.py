"""Treatment alerts and their apply/undo audit trail."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import (
    String, Integer, Text, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.time import utc_now

if TYPE_CHECKING:
    from app.models.risk import Risk
    from app.models.user import User


class TreatmentAlertStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    APPLIED = "applied"
    WITHDRAWN = "withdrawn"


class TreatmentAction(str, enum.Enum):
    APPLY = "APPLY"
    UNDO = "UNDO"


class TreatmentAlert(Base):
    """
    External, time-bound adjustment proposed for a risk.

    Lifecycle: pending -> accepted | rejected; accepted -> applied;
    applied -> withdrawn (undo); withdrawn -> applied (re-apply).
    Applying never destroys the alert.
    """
    __tablename__ = "treatment_alerts"
    __table_args__ = (
        Index("ix_treatment_alerts_risk_status", "risk_id", "status"),
    )

    alert_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.organization_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    risk_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("risks.risk_id", ondelete="CASCADE"), nullable=False
    )

    likelihood_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    impact_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TreatmentAlertStatus.PENDING.value,
        comment="pending | accepted | rejected | applied | withdrawn"
    )

    # Provided by the analysis collaborator; stored as given
    source_event_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    reviewed_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    risk: Mapped["Risk"] = relationship("Risk", back_populates="treatment_alerts")
    reviewed_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[reviewed_by_id])


class TreatmentLogEntry(Base):
    """
    Write-once record of one apply or undo.

    Risk and alert are referenced by value so the entry outlives them.
    ``deleted_at`` is a tombstone: hidden from views, kept for audit.
    """
    __tablename__ = "treatment_log_entries"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    risk_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    alert_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(10), nullable=False, comment="APPLY | UNDO")

    previous_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    new_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_impact: Mapped[int] = mapped_column(Integer, nullable=False)
    new_impact: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    actor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )

    actor: Mapped[Optional["User"]] = relationship("User", foreign_keys=[actor_id])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
