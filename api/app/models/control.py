"""Controls and their links to risks.

A control is a standalone, reusable mitigation owned by an organization.
Risks reference controls through ``RiskControlLink``; deleting a risk
removes its links but never the controls themselves.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import (
    String, Integer, Text, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.risk_calculation import calculate_control_effectiveness
from app.core.time import utc_now

if TYPE_CHECKING:
    from app.models.risk import Risk
    from app.models.user import User


class ControlType(str, enum.Enum):
    PREVENTIVE = "preventive"
    DETECTIVE = "detective"
    CORRECTIVE = "corrective"


class ControlTarget(str, enum.Enum):
    """Risk dimension a control mitigates."""
    LIKELIHOOD = "likelihood"
    IMPACT = "impact"


class Control(Base):
    """
    Mitigating control with its DIME scores.

    Scores (design, implementation, monitoring, evaluation) live in
    [0, CONTROL_SCORE_MAX]. ``version`` is bumped on every update and must
    be quoted back by writers (optimistic concurrency).
    """
    __tablename__ = "controls"
    __table_args__ = (
        UniqueConstraint("organization_id", "control_code", name="uq_controls_org_code"),
    )

    control_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.organization_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    # CTL-NNNNN, sequential per organization
    control_code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    control_type: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="preventive | detective | corrective"
    )
    target: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="likelihood | impact"
    )

    design_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    implementation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monitoring_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    links: Mapped[List["RiskControlLink"]] = relationship(
        "RiskControlLink", back_populates="control"
    )
    created_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[created_by_id])

    __mapper_args__ = {"version_id_col": version}

    @property
    def effectiveness(self) -> float:
        return calculate_control_effectiveness(
            self.design_score,
            self.implementation_score,
            self.monitoring_score,
            self.evaluation_score,
        )


class RiskControlLink(Base):
    """Join of a risk and a control with optional per-link score overrides."""
    __tablename__ = "risk_control_links"
    __table_args__ = (
        UniqueConstraint("risk_id", "control_id", name="uq_risk_control_links_pair"),
    )

    link_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    risk_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("risks.risk_id", ondelete="CASCADE"), nullable=False, index=True
    )
    control_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("controls.control_id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # NULL means "use the control's own score"
    design_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    implementation_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    monitoring_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    evaluation_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    risk: Mapped["Risk"] = relationship("Risk", back_populates="control_links")
    control: Mapped["Control"] = relationship("Control", back_populates="links")
