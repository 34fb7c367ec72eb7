"""Treatment ledger: lifecycle of treatment alerts and their effect on risks.

Alerts move through pending -> accepted | rejected, accepted -> applied,
applied -> withdrawn (undo) and withdrawn -> applied (re-apply). The working
likelihood/impact of a risk is derived from whatever alerts are applied at
read time; apply and undo only flip the alert status and record the
before/after values in the treatment log.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from app.core.audit import create_audit_log
from app.core.config import settings
from app.core.database import write_transaction
from app.core.errors import (
    InvalidTransition,
    NotApplied,
    NotFound,
    ValidationError,
)
from app.core.locks import risk_mutation
from app.core.period_store import PeriodStore
from app.core.risk_state import get_working_state, load_risk
from app.core.time import utc_now
from app.models.treatment import (
    TreatmentAction,
    TreatmentAlert,
    TreatmentAlertStatus,
    TreatmentLogEntry,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    TreatmentAlertStatus.PENDING.value: {
        TreatmentAlertStatus.ACCEPTED.value,
        TreatmentAlertStatus.REJECTED.value,
    },
    TreatmentAlertStatus.ACCEPTED.value: {TreatmentAlertStatus.APPLIED.value},
    TreatmentAlertStatus.APPLIED.value: {TreatmentAlertStatus.WITHDRAWN.value},
    TreatmentAlertStatus.WITHDRAWN.value: {TreatmentAlertStatus.APPLIED.value},
    TreatmentAlertStatus.REJECTED.value: set(),
}


def check_transition(alert: TreatmentAlert, to_status: str) -> None:
    if to_status not in ALLOWED_TRANSITIONS.get(alert.status, set()):
        raise InvalidTransition(alert.alert_id, alert.status, to_status)


@dataclass
class TreatmentOutcome:
    """Result of apply/undo: the alert and the risk's recomputed working values."""
    alert: TreatmentAlert
    working_likelihood: int
    working_impact: int
    log_entry: Optional[TreatmentLogEntry] = None
    changed: bool = True


class TreatmentLedgerService:
    """Propose, review, apply and undo treatment alerts for risks."""

    def __init__(self, db: Session):
        self.db = db
        self.periods = PeriodStore(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_alert(self, alert_id: int, organization_id: Optional[int] = None) -> TreatmentAlert:
        query = self.db.query(TreatmentAlert).filter(TreatmentAlert.alert_id == alert_id)
        if organization_id is not None:
            query = query.filter(TreatmentAlert.organization_id == organization_id)
        alert = query.first()
        if not alert:
            raise NotFound("TreatmentAlert", alert_id)
        return alert

    def list_alerts(
        self,
        organization_id: int,
        risk_id: Optional[int] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[TreatmentAlert]:
        query = self.db.query(TreatmentAlert).filter(
            TreatmentAlert.organization_id == organization_id
        )
        if risk_id is not None:
            query = query.filter(TreatmentAlert.risk_id == risk_id)
        if status:
            query = query.filter(TreatmentAlert.status == status)
        return (
            query.order_by(TreatmentAlert.created_at.desc(), TreatmentAlert.alert_id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_log(
        self, risk_id: int, include_deleted: bool = False, organization_id: Optional[int] = None
    ) -> List[TreatmentLogEntry]:
        """Apply/undo entries for a risk, oldest first. Tombstoned entries are hidden by default."""
        query = self.db.query(TreatmentLogEntry).filter(TreatmentLogEntry.risk_id == risk_id)
        if organization_id is not None:
            query = query.filter(TreatmentLogEntry.organization_id == organization_id)
        if not include_deleted:
            query = query.filter(TreatmentLogEntry.deleted_at.is_(None))
        return query.order_by(TreatmentLogEntry.created_at.asc(), TreatmentLogEntry.log_id.asc()).all()

    def _lock_alert(self, alert_id: int) -> TreatmentAlert:
        alert = (
            self.db.query(TreatmentAlert)
            .filter(TreatmentAlert.alert_id == alert_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not alert:
            raise NotFound("TreatmentAlert", alert_id)
        return alert

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def propose(
        self,
        risk_id: int,
        likelihood_delta: int,
        impact_delta: int,
        source_event_ref: Optional[str] = None,
        rationale: Optional[str] = None,
        confidence: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> TreatmentAlert:
        """Create a pending alert for an existing risk."""
        bound = settings.RISK_SCALE_MAX - 1
        for name, value in (("likelihood_delta", likelihood_delta), ("impact_delta", impact_delta)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{name} must be an integer")
            if abs(value) > bound:
                raise ValidationError(f"{name} must be between -{bound} and {bound}")
        if confidence is not None and not 0 <= confidence <= 100:
            raise ValidationError("confidence must be between 0 and 100")

        risk = load_risk(self.db, risk_id)
        organization_id = risk.organization_id

        with risk_mutation(organization_id), write_transaction(self.db, f"Propose alert for risk {risk_id}"):
            self.periods.guard_mutation(organization_id)
            alert = TreatmentAlert(
                organization_id=organization_id,
                risk_id=risk_id,
                likelihood_delta=likelihood_delta,
                impact_delta=impact_delta,
                status=TreatmentAlertStatus.PENDING.value,
                source_event_ref=source_event_ref,
                rationale=rationale,
                confidence=confidence,
            )
            self.db.add(alert)
            self.db.flush()
            create_audit_log(
                self.db,
                organization_id=organization_id,
                entity_type="TreatmentAlert",
                entity_id=alert.alert_id,
                action="CREATE",
                user_id=actor_id,
                changes={
                    "risk_id": risk_id,
                    "likelihood_delta": likelihood_delta,
                    "impact_delta": impact_delta,
                    "source_event_ref": source_event_ref,
                },
            )

        self.db.refresh(alert)
        logger.info(
            "Proposed alert %s for risk %s (likelihood %+d, impact %+d)",
            alert.alert_id, risk_id, likelihood_delta, impact_delta,
        )
        return alert

    def _review(
        self, alert_id: int, to_status: str, actor_id: Optional[int], reason: Optional[str] = None
    ) -> TreatmentAlert:
        current = self.get_alert(alert_id)
        organization_id, risk_id = current.organization_id, current.risk_id

        with risk_mutation(organization_id, risk_id), write_transaction(
            self.db, f"Review alert {alert_id}"
        ):
            self.periods.guard_mutation(organization_id)
            alert = self._lock_alert(alert_id)
            check_transition(alert, to_status)

            old_status = alert.status
            alert.status = to_status
            alert.reviewed_by_id = actor_id
            alert.reviewed_at = utc_now()
            if to_status == TreatmentAlertStatus.REJECTED.value:
                alert.rejection_reason = reason

            create_audit_log(
                self.db,
                organization_id=organization_id,
                entity_type="TreatmentAlert",
                entity_id=alert_id,
                action="ACCEPT" if to_status == TreatmentAlertStatus.ACCEPTED.value else "REJECT",
                user_id=actor_id,
                changes={"status": {"old": old_status, "new": to_status}, "reason": reason},
            )

        self.db.refresh(alert)
        logger.info("Alert %s moved to %s by user %s", alert_id, to_status, actor_id)
        return alert

    def accept(self, alert_id: int, actor_id: Optional[int]) -> TreatmentAlert:
        return self._review(alert_id, TreatmentAlertStatus.ACCEPTED.value, actor_id)

    def reject(self, alert_id: int, actor_id: Optional[int], reason: Optional[str] = None) -> TreatmentAlert:
        return self._review(alert_id, TreatmentAlertStatus.REJECTED.value, actor_id, reason)

    def apply(self, alert_id: int, actor_id: Optional[int], notes: Optional[str] = None) -> TreatmentOutcome:
        """
        Apply an accepted (or previously withdrawn) alert to its risk.

        Applying an already-applied alert changes nothing and writes no log
        entry. The risk's working values are recomputed from all applied
        alerts using the maximum delta per dimension.
        """
        return self._set_applied(alert_id, actor_id, notes, applied=True)

    def undo(self, alert_id: int, actor_id: Optional[int], notes: Optional[str] = None) -> TreatmentOutcome:
        """
        Withdraw an applied alert and recompute from the remaining applied ones.

        Raises ``NotApplied`` for any alert that is not currently applied.
        """
        return self._set_applied(alert_id, actor_id, notes, applied=False)

    def _set_applied(
        self, alert_id: int, actor_id: Optional[int], notes: Optional[str], applied: bool
    ) -> TreatmentOutcome:
        current = self.get_alert(alert_id)
        organization_id, risk_id = current.organization_id, current.risk_id
        verb = "Apply" if applied else "Undo"

        with risk_mutation(organization_id, risk_id), write_transaction(
            self.db, f"{verb} alert {alert_id}"
        ):
            self.periods.guard_mutation(organization_id)
            risk = load_risk(self.db, risk_id, for_update=True)
            alert = self._lock_alert(alert_id)

            if applied:
                if alert.status == TreatmentAlertStatus.APPLIED.value:
                    before = get_working_state(self.db, risk)
                    return TreatmentOutcome(
                        alert=alert,
                        working_likelihood=before.working_likelihood,
                        working_impact=before.working_impact,
                        changed=False,
                    )
                check_transition(alert, TreatmentAlertStatus.APPLIED.value)
            elif alert.status != TreatmentAlertStatus.APPLIED.value:
                raise NotApplied(alert_id, alert.status)

            before = get_working_state(self.db, risk)
            now = utc_now()
            if applied:
                alert.status = TreatmentAlertStatus.APPLIED.value
                alert.applied_at = now
                alert.withdrawn_at = None
            else:
                alert.status = TreatmentAlertStatus.WITHDRAWN.value
                alert.withdrawn_at = now
            # Recompute must see the new status
            self.db.flush()
            after = get_working_state(self.db, risk)

            entry = TreatmentLogEntry(
                organization_id=organization_id,
                risk_id=risk_id,
                alert_id=alert_id,
                action=(TreatmentAction.APPLY if applied else TreatmentAction.UNDO).value,
                previous_likelihood=before.working_likelihood,
                new_likelihood=after.working_likelihood,
                previous_impact=before.working_impact,
                new_impact=after.working_impact,
                notes=notes,
                actor_id=actor_id,
                created_at=now,
            )
            self.db.add(entry)
            self.db.flush()

        self.db.refresh(alert)
        self.db.refresh(entry)
        logger.info(
            "%s alert %s on risk %s: likelihood %s -> %s, impact %s -> %s",
            verb, alert_id, risk_id,
            before.working_likelihood, after.working_likelihood,
            before.working_impact, after.working_impact,
        )
        return TreatmentOutcome(
            alert=alert,
            working_likelihood=after.working_likelihood,
            working_impact=after.working_impact,
            log_entry=entry,
        )

    def soft_delete_log_entry(
        self, log_id: int, actor_id: Optional[int], organization_id: Optional[int] = None
    ) -> TreatmentLogEntry:
        """Tombstone a log entry; it stays stored but leaves the default views."""
        query = self.db.query(TreatmentLogEntry).filter(
            TreatmentLogEntry.log_id == log_id,
            TreatmentLogEntry.deleted_at.is_(None),
        )
        if organization_id is not None:
            query = query.filter(TreatmentLogEntry.organization_id == organization_id)
        entry = query.first()
        if not entry:
            raise NotFound("TreatmentLogEntry", log_id)

        with risk_mutation(entry.organization_id), write_transaction(
            self.db, f"Delete treatment log entry {log_id}"
        ):
            self.periods.guard_mutation(entry.organization_id)
            entry.deleted_at = utc_now()
            entry.deleted_by_id = actor_id
            create_audit_log(
                self.db,
                organization_id=entry.organization_id,
                entity_type="TreatmentLogEntry",
                entity_id=log_id,
                action="DELETE",
                user_id=actor_id,
                changes={"alert_id": entry.alert_id, "risk_id": entry.risk_id},
            )

        self.db.refresh(entry)
        return entry
