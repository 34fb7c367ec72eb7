"""Risk register entries."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import (
    String, Integer, Text, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.time import utc_now

if TYPE_CHECKING:
    from app.models.control import RiskControlLink
    from app.models.treatment import TreatmentAlert
    from app.models.user import User


class RiskStatus(str, enum.Enum):
    OPEN = "OPEN"
    MONITORING = "MONITORING"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


INACTIVE_RISK_STATUSES = (RiskStatus.CLOSED.value, RiskStatus.ARCHIVED.value)


class Risk(Base):
    """
    A catalogued risk.

    ``inherent_likelihood`` / ``inherent_impact`` are set by people and are
    never overwritten by the engine: working values (inherent + applied
    treatment) and residual values (after controls) are derived on read.
    """
    __tablename__ = "risks"
    __table_args__ = (
        UniqueConstraint("organization_id", "risk_code", name="uq_risks_org_code"),
    )

    risk_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.organization_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    # RSK-NNNNN, sequential per organization
    risk_code: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    inherent_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    inherent_impact: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RiskStatus.OPEN.value, index=True
    )
    owner_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    owner: Mapped[Optional["User"]] = relationship("User", foreign_keys=[owner_id])
    control_links: Mapped[List["RiskControlLink"]] = relationship(
        "RiskControlLink", back_populates="risk",
        cascade="all, delete-orphan",
        order_by="RiskControlLink.link_id",
    )
    treatment_alerts: Mapped[List["TreatmentAlert"]] = relationship(
        "TreatmentAlert", back_populates="risk",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_RISK_STATUSES
