"""Periods and the immutable risk history written by period commits."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import (
    String, Integer, Text, DateTime, ForeignKey, Index, UniqueConstraint, JSON, event, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.errors import ValidationError
from app.core.time import utc_now, format_quarter_label

if TYPE_CHECKING:
    from app.models.user import User


class PeriodStatus(str, enum.Enum):
    OPEN = "open"
    COMMITTED = "committed"


class Period(Base):
    """
    Window of mutable risk state.

    Exactly one ``open`` period exists per organization (partial unique
    index below); a commit flips it to ``committed`` and opens the next one.
    """
    __tablename__ = "periods"
    __table_args__ = (
        Index(
            "uq_periods_one_open_per_org",
            "organization_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        Index("ix_periods_org_committed_at", "organization_id", "committed_at"),
    )

    period_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.organization_id", ondelete="CASCADE"),
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PeriodStatus.OPEN.value,
        comment="open | committed"
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    committed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    committed_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )

    # Commit summary, filled in by the commit that closes the period
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    risks_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active_risks_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    closed_risks_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    controls_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    committed_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[committed_by_id])
    history_rows: Mapped[List["RiskHistory"]] = relationship(
        "RiskHistory", back_populates="period", order_by="RiskHistory.risk_code"
    )

    @property
    def label(self) -> str:
        return format_quarter_label(self.opened_at)

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value


class RiskHistory(Base):
    """
    Snapshot of one risk's resolved state at a period commit.

    Written once by the commit coordinator; any later update or delete
    through the ORM is refused.
    """
    __tablename__ = "risk_history"
    __table_args__ = (
        UniqueConstraint("period_id", "risk_id", name="uq_risk_history_period_risk"),
        Index("ix_risk_history_risk_committed_at", "risk_id", "committed_at"),
    )

    history_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("periods.period_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # By value: history survives deletion of the risk
    risk_id: Mapped[int] = mapped_column(Integer, nullable=False)
    committed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    risk_code: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    inherent_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    inherent_impact: Mapped[int] = mapped_column(Integer, nullable=False)
    working_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    working_impact: Mapped[int] = mapped_column(Integer, nullable=False)
    residual_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    residual_impact: Mapped[int] = mapped_column(Integer, nullable=False)
    residual_score: Mapped[int] = mapped_column(Integer, nullable=False)

    # Per-control effectiveness, max per dimension and control counts
    control_effectiveness: Mapped[dict] = mapped_column(JSON, nullable=False)

    period: Mapped["Period"] = relationship("Period", back_populates="history_rows")


@event.listens_for(RiskHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise ValidationError(f"Risk history row {target.history_id} is write-once")


@event.listens_for(RiskHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise ValidationError(f"Risk history row {target.history_id} is write-once")
