"""Store-backed resolution of a risk's live state.

Working values (inherent adjusted by applied treatment) and residual values
(working adjusted by the best control per dimension) are always derived from
the current rows; nothing computed here is written back.
"""
import logging
from dataclasses import dataclass
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.errors import NotFound, StorageFailure
from app.core.retry import retry
from app.core.risk_calculation import (
    ControlInput,
    ResidualResult,
    compute_working_values,
    effective_link_scores,
    merge_treatment_deltas,
    resolve_residual_risk,
    summarize_controls,
)
from app.models.control import RiskControlLink
from app.models.risk import Risk
from app.models.treatment import TreatmentAlert, TreatmentAlertStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingState:
    risk_id: int
    inherent_likelihood: int
    inherent_impact: int
    likelihood_delta: int
    impact_delta: int
    working_likelihood: int
    working_impact: int
    applied_alert_ids: Tuple[int, ...]


@dataclass(frozen=True)
class ResolvedRiskState:
    """Everything ``resolve`` reports for one risk."""
    risk_id: int
    risk_code: str
    working: WorkingState
    residual: ResidualResult

    @property
    def residual_likelihood(self) -> int:
        return self.residual.residual_likelihood

    @property
    def residual_impact(self) -> int:
        return self.residual.residual_impact

    @property
    def residual_score(self) -> int:
        return self.residual.residual_score

    def control_summary(self) -> dict:
        return summarize_controls(self.residual.per_control)

    def effectiveness_snapshot(self) -> dict:
        """JSON-ready control effectiveness summary stored with history rows."""
        summary = self.control_summary()
        summary.update({
            "max_likelihood_effectiveness": self.residual.max_likelihood_effectiveness,
            "max_impact_effectiveness": self.residual.max_impact_effectiveness,
            "controls": [c.as_dict() for c in self.residual.per_control],
        })
        return summary

    def as_dict(self) -> dict:
        return {
            "risk_id": self.risk_id,
            "risk_code": self.risk_code,
            "inherent_likelihood": self.working.inherent_likelihood,
            "inherent_impact": self.working.inherent_impact,
            "likelihood_delta": self.working.likelihood_delta,
            "impact_delta": self.working.impact_delta,
            "working_likelihood": self.working.working_likelihood,
            "working_impact": self.working.working_impact,
            "applied_alert_ids": list(self.working.applied_alert_ids),
            "residual_likelihood": self.residual_likelihood,
            "residual_impact": self.residual_impact,
            "residual_score": self.residual_score,
            "max_likelihood_effectiveness": self.residual.max_likelihood_effectiveness,
            "max_impact_effectiveness": self.residual.max_impact_effectiveness,
            "per_control_effectiveness": [c.as_dict() for c in self.residual.per_control],
            "control_summary": self.control_summary(),
        }


def load_risk(db: Session, risk_id: int, for_update: bool = False) -> Risk:
    """Fetch a risk or raise NotFound; ``for_update`` locks the row in the store."""
    query = db.query(Risk).filter(Risk.risk_id == risk_id)
    if for_update:
        query = query.populate_existing().with_for_update()
    risk = query.first()
    if not risk:
        raise NotFound("Risk", risk_id)
    return risk


def applied_alerts_for(db: Session, risk_id: int) -> List[TreatmentAlert]:
    return (
        db.query(TreatmentAlert)
        .filter(
            TreatmentAlert.risk_id == risk_id,
            TreatmentAlert.status == TreatmentAlertStatus.APPLIED.value,
        )
        .order_by(TreatmentAlert.alert_id.asc())
        .all()
    )


def get_working_state(db: Session, risk: Risk) -> WorkingState:
    """Inherent values shifted by the max delta of the currently applied alerts."""
    alerts = applied_alerts_for(db, risk.risk_id)
    likelihood_delta, impact_delta = merge_treatment_deltas(alerts)
    working_likelihood, working_impact = compute_working_values(
        risk.inherent_likelihood, risk.inherent_impact, alerts,
        scale_max=settings.RISK_SCALE_MAX,
    )
    return WorkingState(
        risk_id=risk.risk_id,
        inherent_likelihood=risk.inherent_likelihood,
        inherent_impact=risk.inherent_impact,
        likelihood_delta=likelihood_delta,
        impact_delta=impact_delta,
        working_likelihood=working_likelihood,
        working_impact=working_impact,
        applied_alert_ids=tuple(a.alert_id for a in alerts),
    )


def linked_control_inputs(db: Session, risk_id: int) -> List[ControlInput]:
    links = (
        db.query(RiskControlLink)
        .options(joinedload(RiskControlLink.control))
        .filter(RiskControlLink.risk_id == risk_id)
        .order_by(RiskControlLink.link_id.asc())
        .all()
    )
    return [effective_link_scores(link.control, link) for link in links]


def resolve_loaded_risk(db: Session, risk: Risk) -> ResolvedRiskState:
    """Resolve an already-loaded risk against its current alerts and links."""
    working = get_working_state(db, risk)
    residual = resolve_residual_risk(
        working.working_likelihood,
        working.working_impact,
        linked_control_inputs(db, risk.risk_id),
        score_max=settings.CONTROL_SCORE_MAX,
    )
    return ResolvedRiskState(
        risk_id=risk.risk_id,
        risk_code=risk.risk_code,
        working=working,
        residual=residual,
    )


@retry(
    max_retries=settings.READ_RETRY_ATTEMPTS,
    base_delay=settings.READ_RETRY_BASE_DELAY,
    retryable_exceptions=(StorageFailure,),
)
def resolve_risk(db: Session, risk_id: int) -> ResolvedRiskState:
    """
    Resolve a risk's working and residual values on demand.

    Read-only, so a failed store round trip is retried a bounded number of
    times before ``StorageFailure`` reaches the caller.
    """
    try:
        risk = load_risk(db, risk_id)
        return resolve_loaded_risk(db, risk)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Resolving risk %s failed: %s", risk_id, exc)
        raise StorageFailure(f"Could not read risk {risk_id} from the store") from exc
