"""Period store and commit coordinator.

Each organization has exactly one open period. A commit resolves every risk
of the organization, writes one RiskHistory row per risk, flips the period to
committed and opens the next one, all in a single database transaction:
readers see either the whole commit or nothing of it. Committed snapshots
also feed the period comparison, trend and severity-migration reports.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import create_audit_log
from app.core.config import settings
from app.core.errors import (
    CommitInProgress,
    ConcurrentModification,
    NoOpenPeriod,
    NotFound,
    RiskEngineError,
    StorageFailure,
    ValidationError,
)
from app.core.locks import organization_gate
from app.core.retry import retry
from app.core.risk_calculation import HIGH_SEVERITY_LEVELS, RISK_LEVELS, risk_level
from app.core.risk_state import ResolvedRiskState, resolve_loaded_risk
from app.core.time import utc_now
from app.models.control import Control
from app.models.period import Period, PeriodStatus, RiskHistory
from app.models.risk import Risk

logger = logging.getLogger(__name__)

# PostgreSQL "lock_not_available": NOWAIT row locks and lock_timeout expiry
LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_unavailable(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == LOCK_NOT_AVAILABLE


@dataclass(frozen=True)
class CommitResult:
    period_id: int
    snapshot_count: int
    next_period_id: int
    committed_at: datetime


class PeriodStore:
    """Open/committed periods of an organization and their history rows."""

    def __init__(self, db: Session):
        self.db = db

    def _open_period_query(self, organization_id: int):
        return self.db.query(Period).filter(
            Period.organization_id == organization_id,
            Period.status == PeriodStatus.OPEN.value,
        )

    def get_open_period(self, organization_id: int) -> Optional[Period]:
        return self._open_period_query(organization_id).first()

    def _open_new_period(self, organization_id: int, opened_at: Optional[datetime] = None) -> Period:
        period = Period(
            organization_id=organization_id,
            status=PeriodStatus.OPEN.value,
            opened_at=opened_at or utc_now(),
        )
        self.db.add(period)
        self.db.flush()
        logger.info("Opened period %s for organization %s", period.period_id, organization_id)
        return period

    def ensure_open_period(self, organization_id: int) -> Period:
        """Return the open period, creating it on the organization's first write."""
        period = self.get_open_period(organization_id)
        if period is None:
            period = self._open_new_period(organization_id)
        return period

    def guard_mutation(self, organization_id: int) -> Period:
        """
        Ensure an open period and hold it in share mode for this transaction.

        A commit running in another process holds the row exclusively; the
        NOWAIT share lock then fails at once and is reported as
        ``CommitInProgress``.
        """
        try:
            period = (
                self._open_period_query(organization_id)
                .with_for_update(read=True, nowait=True)
                .first()
            )
        except OperationalError as exc:
            if _is_lock_unavailable(exc):
                self.db.rollback()
                raise CommitInProgress(organization_id) from exc
            raise
        if period is None:
            period = self._open_new_period(organization_id)
        return period

    def _set_commit_lock_timeout(self) -> None:
        """Bound this transaction's row-lock waits by LOCK_TIMEOUT_SECONDS (PostgreSQL only)."""
        if self.db.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(settings.LOCK_TIMEOUT_SECONDS * 1000)
        self.db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))

    def lock_open_period(self, organization_id: int) -> Optional[Period]:
        """
        Exclusive lock on the open period (commit path).

        Waits for mutations of other processes to release their share locks,
        up to ``LOCK_TIMEOUT_SECONDS``. Mutations still holding the row after
        that surface as ``ConcurrentModification``, the same as an in-process
        drain timeout.
        """
        self._set_commit_lock_timeout()
        try:
            return (
                self._open_period_query(organization_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        except OperationalError as exc:
            if _is_lock_unavailable(exc):
                self.db.rollback()
                logger.warning(
                    "Commit for organization %s timed out waiting for in-flight mutations",
                    organization_id,
                )
                raise ConcurrentModification(
                    f"Organization {organization_id} still has in-flight mutations; commit aborted"
                ) from exc
            raise

    def get_period(self, period_id: int, organization_id: Optional[int] = None) -> Period:
        query = self.db.query(Period).filter(Period.period_id == period_id)
        if organization_id is not None:
            query = query.filter(Period.organization_id == organization_id)
        period = query.first()
        if not period:
            raise NotFound("Period", period_id)
        return period

    def list_periods(self, organization_id: int, status: Optional[str] = None) -> List[Period]:
        """Periods in the order they were opened (committed ones first, open last)."""
        query = self.db.query(Period).filter(Period.organization_id == organization_id)
        if status:
            query = query.filter(Period.status == status)
        return query.order_by(Period.opened_at.asc(), Period.period_id.asc()).all()

    def get_period_snapshot(self, period_id: int, organization_id: Optional[int] = None) -> List[RiskHistory]:
        period = self.get_period(period_id, organization_id)
        return (
            self.db.query(RiskHistory)
            .filter(RiskHistory.period_id == period.period_id)
            .order_by(RiskHistory.risk_code.asc(), RiskHistory.risk_id.asc())
            .all()
        )

    @retry(
        max_retries=settings.READ_RETRY_ATTEMPTS,
        base_delay=settings.READ_RETRY_BASE_DELAY,
        retryable_exceptions=(StorageFailure,),
    )
    def get_history(
        self, risk_id: int, skip: int = 0, limit: int = 100, organization_id: Optional[int] = None
    ) -> List[RiskHistory]:
        """Snapshots of one risk, oldest commit first; stable for pagination."""
        query = self.db.query(RiskHistory).filter(RiskHistory.risk_id == risk_id)
        if organization_id is not None:
            query = query.filter(RiskHistory.organization_id == organization_id)
        try:
            return (
                query.order_by(RiskHistory.committed_at.asc(), RiskHistory.period_id.asc())
                .offset(skip)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageFailure(f"Could not read history for risk {risk_id}") from exc

    def _committed_snapshot(self, organization_id: int, period_id: int) -> Dict[int, RiskHistory]:
        period = self.get_period(period_id, organization_id)
        if period.status != PeriodStatus.COMMITTED.value:
            raise ValidationError(f"Period {period.period_id} has not been committed")
        return {row.risk_id: row for row in self.get_period_snapshot(period_id)}

    def compare_periods(self, organization_id: int, from_period_id: int, to_period_id: int) -> dict:
        """
        Differences between two committed snapshots.

        Returns new and removed risk codes, per-risk working/residual changes
        and the average residual score of each side (one decimal).
        """
        before = self._committed_snapshot(organization_id, from_period_id)
        after = self._committed_snapshot(organization_id, to_period_id)

        changed = []
        for risk_id, new in after.items():
            old = before.get(risk_id)
            if old is None:
                continue
            diff = {
                "working_likelihood_change": new.working_likelihood - old.working_likelihood,
                "working_impact_change": new.working_impact - old.working_impact,
                "residual_likelihood_change": new.residual_likelihood - old.residual_likelihood,
                "residual_impact_change": new.residual_impact - old.residual_impact,
                "residual_score_change": new.residual_score - old.residual_score,
            }
            if any(diff.values()) or old.status != new.status:
                changed.append({
                    "risk_id": risk_id,
                    "risk_code": new.risk_code,
                    "title": new.title,
                    "old_status": old.status,
                    "new_status": new.status,
                    **diff,
                })

        avg_from = _average(r.residual_score for r in before.values())
        avg_to = _average(r.residual_score for r in after.values())
        return {
            "from_period_id": from_period_id,
            "to_period_id": to_period_id,
            "risk_count_from": len(before),
            "risk_count_to": len(after),
            "new_risks": sorted(after[r].risk_code for r in after.keys() - before.keys()),
            "removed_risks": sorted(before[r].risk_code for r in before.keys() - after.keys()),
            "changed_risks": sorted(changed, key=lambda c: c["risk_code"]),
            "avg_residual_score_from": avg_from,
            "avg_residual_score_to": avg_to,
            "avg_residual_score_change": round(avg_to - avg_from, 1),
        }

    def get_period_trends(self, organization_id: int) -> List[dict]:
        """
        Portfolio summary of every committed period, oldest commit first.

        Severity levels are taken from the residual score; inherent and
        residual averages are rounded to one decimal.
        """
        periods = (
            self.db.query(Period)
            .filter(
                Period.organization_id == organization_id,
                Period.status == PeriodStatus.COMMITTED.value,
            )
            .order_by(Period.committed_at.asc(), Period.period_id.asc())
            .all()
        )
        if not periods:
            return []

        rows_by_period: Dict[int, List[RiskHistory]] = {p.period_id: [] for p in periods}
        rows = self.db.query(RiskHistory).filter(
            RiskHistory.period_id.in_(list(rows_by_period))
        ).all()
        for row in rows:
            rows_by_period[row.period_id].append(row)

        trends = []
        for period in periods:
            period_rows = rows_by_period[period.period_id]
            levels = Counter(risk_level(r.residual_score) for r in period_rows)
            trends.append({
                "period_id": period.period_id,
                "label": period.label,
                "committed_at": period.committed_at,
                "total_risks": len(period_rows),
                "by_status": dict(Counter(r.status for r in period_rows)),
                "by_category": dict(Counter(r.category or "Uncategorized" for r in period_rows)),
                "by_level": {level: levels.get(level, 0) for level in RISK_LEVELS},
                "avg_inherent_score": _average(
                    r.inherent_likelihood * r.inherent_impact for r in period_rows
                ),
                "avg_residual_score": _average(r.residual_score for r in period_rows),
                "high_severe_count": sum(levels.get(level, 0) for level in HIGH_SEVERITY_LEVELS),
            })
        return trends

    def analyze_risk_migrations(
        self, organization_id: int, from_period_id: int, to_period_id: int
    ) -> List[dict]:
        """Risks present in both committed periods whose residual severity level changed."""
        before = self._committed_snapshot(organization_id, from_period_id)
        after = self._committed_snapshot(organization_id, to_period_id)

        migrations = []
        for risk_id, new in after.items():
            old = before.get(risk_id)
            if old is None:
                continue
            from_level, to_level = risk_level(old.residual_score), risk_level(new.residual_score)
            if from_level == to_level:
                continue
            migrations.append({
                "risk_id": risk_id,
                "risk_code": new.risk_code,
                "title": new.title,
                "from_level": from_level,
                "to_level": to_level,
                "from_score": old.residual_score,
                "to_score": new.residual_score,
                "direction": "improved" if new.residual_score < old.residual_score else "deteriorated",
            })
        return sorted(migrations, key=lambda m: m["risk_code"])


def _average(values: Iterable[int]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


class CommitCoordinator:
    """Freezes an organization's live risk state into a committed period."""

    def __init__(self, db: Session):
        self.db = db
        self.periods = PeriodStore(db)

    def commit(self, organization_id: int, actor_id: Optional[int], notes: Optional[str] = None) -> CommitResult:
        """
        Commit the open period of ``organization_id``.

        Holds the organization exclusively for the duration, so no risk
        mutation is accepted mid-commit. Any store failure rolls back every
        snapshot row and the status flip and surfaces as ``StorageFailure``.
        """
        with organization_gate.exclusive(organization_id):
            try:
                result = self._commit_locked(organization_id, actor_id, notes)
                self.db.commit()
            except RiskEngineError:
                self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Commit for organization %s rolled back: %s", organization_id, exc)
                raise StorageFailure(
                    f"Commit for organization {organization_id} failed; no snapshot was recorded"
                ) from exc

        logger.info(
            "Committed period %s for organization %s: %d snapshots, next period %s",
            result.period_id, organization_id, result.snapshot_count, result.next_period_id,
        )
        return result

    def _commit_locked(self, organization_id: int, actor_id: Optional[int], notes: Optional[str]) -> CommitResult:
        period = self.periods.lock_open_period(organization_id)
        if period is None:
            raise NoOpenPeriod(organization_id)

        committed_at = utc_now()
        risks = (
            self.db.query(Risk)
            .filter(Risk.organization_id == organization_id)
            .order_by(Risk.risk_code.asc(), Risk.risk_id.asc())
            .all()
        )

        active_count = 0
        for risk in risks:
            state = resolve_loaded_risk(self.db, risk)
            self._write_snapshot(period, risk, state, committed_at)
            if risk.is_active:
                active_count += 1

        period.status = PeriodStatus.COMMITTED.value
        period.committed_at = committed_at
        period.committed_by_id = actor_id
        period.notes = notes
        period.risks_count = len(risks)
        period.active_risks_count = active_count
        period.closed_risks_count = len(risks) - active_count
        period.controls_count = (
            self.db.query(Control).filter(Control.organization_id == organization_id).count()
        )
        # Flip must reach the store before the next open period is inserted
        self.db.flush()

        next_period = self.periods._open_new_period(organization_id, opened_at=committed_at)

        create_audit_log(
            self.db,
            organization_id=organization_id,
            entity_type="Period",
            entity_id=period.period_id,
            action="COMMIT",
            user_id=actor_id,
            changes={
                "snapshot_count": len(risks),
                "active_risks_count": active_count,
                "closed_risks_count": len(risks) - active_count,
                "next_period_id": next_period.period_id,
                "notes": notes,
            },
        )
        self.db.flush()

        return CommitResult(
            period_id=period.period_id,
            snapshot_count=len(risks),
            next_period_id=next_period.period_id,
            committed_at=committed_at,
        )

    def _write_snapshot(
        self, period: Period, risk: Risk, state: ResolvedRiskState, committed_at: datetime
    ) -> RiskHistory:
        row = RiskHistory(
            period_id=period.period_id,
            organization_id=period.organization_id,
            risk_id=risk.risk_id,
            committed_at=committed_at,
            risk_code=risk.risk_code,
            title=risk.title,
            category=risk.category,
            status=risk.status,
            inherent_likelihood=risk.inherent_likelihood,
            inherent_impact=risk.inherent_impact,
            working_likelihood=state.working.working_likelihood,
            working_impact=state.working.working_impact,
            residual_likelihood=state.residual_likelihood,
            residual_impact=state.residual_impact,
            residual_score=state.residual_score,
            control_effectiveness=state.effectiveness_snapshot(),
        )
        self.db.add(row)
        self.db.flush()
        return row
