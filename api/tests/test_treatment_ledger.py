"""Tests for the treatment ledger service."""
import pytest

from app.core.errors import (
    CommitInProgress,
    InvalidTransition,
    NotApplied,
    NotFound,
    ValidationError,
)
from app.core.locks import organization_gate
from app.core.risk_state import get_working_state, resolve_risk
from app.core.treatment_ledger import TreatmentLedgerService
from app.models.audit_log import AuditLog
from app.models.period import Period
from app.models.risk import Risk
from app.models.treatment import TreatmentLogEntry


@pytest.fixture
def ledger(db_session):
    return TreatmentLedgerService(db_session)


@pytest.fixture
def accepted_alert(ledger, admin_user):
    """Factory: propose and accept an alert for a risk."""
    def _make(risk, likelihood_delta=0, impact_delta=0):
        alert = ledger.propose(
            risk.risk_id, likelihood_delta, impact_delta,
            source_event_ref="evt-1", rationale="Vendor breach reported",
            actor_id=admin_user.user_id,
        )
        return ledger.accept(alert.alert_id, admin_user.user_id)

    return _make


def _working(db_session, risk_id):
    risk = db_session.get(Risk, risk_id)
    state = get_working_state(db_session, risk)
    return state.working_likelihood, state.working_impact


class TestPropose:

    def test_creates_pending_alert(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(
            sample_risk.risk_id, 1, -1,
            source_event_ref="news-42", rationale="Regulator fine", confidence=80,
            actor_id=admin_user.user_id,
        )
        assert alert.status == "pending"
        assert alert.organization_id == sample_risk.organization_id
        assert (alert.likelihood_delta, alert.impact_delta) == (1, -1)
        assert alert.rationale == "Regulator fine"

    def test_writes_audit_log(self, ledger, db_session, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0, actor_id=admin_user.user_id)
        entry = db_session.query(AuditLog).filter(
            AuditLog.entity_type == "TreatmentAlert",
            AuditLog.entity_id == alert.alert_id,
        ).one()
        assert entry.action == "CREATE"

    def test_delta_out_of_range(self, ledger, sample_risk):
        with pytest.raises(ValidationError):
            ledger.propose(sample_risk.risk_id, 5, 0)
        with pytest.raises(ValidationError):
            ledger.propose(sample_risk.risk_id, 0, -5)

    def test_confidence_out_of_range(self, ledger, sample_risk):
        with pytest.raises(ValidationError):
            ledger.propose(sample_risk.risk_id, 1, 0, confidence=101)

    def test_unknown_risk(self, ledger, open_period):
        with pytest.raises(NotFound):
            ledger.propose(9999, 1, 0)

    def test_first_write_opens_a_period(self, ledger, db_session, make_risk, organization):
        risk = make_risk()
        assert db_session.query(Period).count() == 0
        ledger.propose(risk.risk_id, 1, 0)
        period = db_session.query(Period).one()
        assert period.status == "open"
        assert period.organization_id == organization.organization_id


class TestReview:

    def test_accept(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        accepted = ledger.accept(alert.alert_id, admin_user.user_id)
        assert accepted.status == "accepted"
        assert accepted.reviewed_by_id == admin_user.user_id
        assert accepted.reviewed_at is not None

    def test_reject_records_reason(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        rejected = ledger.reject(alert.alert_id, admin_user.user_id, "Duplicate of earlier event")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Duplicate of earlier event"

    def test_rejected_alert_cannot_be_accepted_or_applied(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        ledger.reject(alert.alert_id, admin_user.user_id)
        with pytest.raises(InvalidTransition):
            ledger.accept(alert.alert_id, admin_user.user_id)
        with pytest.raises(InvalidTransition):
            ledger.apply(alert.alert_id, admin_user.user_id)

    def test_accept_twice_is_invalid(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        ledger.accept(alert.alert_id, admin_user.user_id)
        with pytest.raises(InvalidTransition) as exc_info:
            ledger.accept(alert.alert_id, admin_user.user_id)
        assert exc_info.value.from_status == "accepted"

    def test_unknown_alert(self, ledger, open_period, admin_user):
        with pytest.raises(NotFound):
            ledger.accept(12345, admin_user.user_id)


class TestApply:

    def test_pending_alert_cannot_be_applied(self, ledger, sample_risk, admin_user):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        with pytest.raises(InvalidTransition):
            ledger.apply(alert.alert_id, admin_user.user_id)

    def test_apply_adjusts_working_values(self, ledger, db_session, make_risk, open_period,
                                          accepted_alert, admin_user):
        risk = make_risk(likelihood=2, impact=3)
        alert = accepted_alert(risk, likelihood_delta=2, impact_delta=-1)

        outcome = ledger.apply(alert.alert_id, admin_user.user_id, notes="Confirmed by CISO")

        assert outcome.changed is True
        assert outcome.alert.status == "applied"
        assert outcome.alert.applied_at is not None
        assert (outcome.working_likelihood, outcome.working_impact) == (4, 2)
        assert _working(db_session, risk.risk_id) == (4, 2)

    def test_apply_never_touches_inherent_values(self, ledger, db_session, make_risk, open_period,
                                                 accepted_alert, admin_user):
        risk = make_risk(likelihood=2, impact=3)
        alert = accepted_alert(risk, likelihood_delta=2)
        ledger.apply(alert.alert_id, admin_user.user_id)
        db_session.expire_all()
        stored = db_session.get(Risk, risk.risk_id)
        assert (stored.inherent_likelihood, stored.inherent_impact) == (2, 3)

    def test_apply_is_idempotent(self, ledger, db_session, make_risk, open_period,
                                 accepted_alert, admin_user):
        risk = make_risk(likelihood=2, impact=2)
        alert = accepted_alert(risk, likelihood_delta=1)
        first = ledger.apply(alert.alert_id, admin_user.user_id)
        second = ledger.apply(alert.alert_id, admin_user.user_id)

        assert second.changed is False
        assert second.log_entry is None
        assert (second.working_likelihood, second.working_impact) == \
            (first.working_likelihood, first.working_impact)
        assert db_session.query(TreatmentLogEntry).count() == 1

    def test_writes_log_entry(self, ledger, make_risk, open_period, accepted_alert, admin_user):
        risk = make_risk(likelihood=3, impact=3)
        alert = accepted_alert(risk, likelihood_delta=1, impact_delta=2)
        outcome = ledger.apply(alert.alert_id, admin_user.user_id, notes="Applied after review")

        entry = outcome.log_entry
        assert entry.action == "APPLY"
        assert (entry.previous_likelihood, entry.new_likelihood) == (3, 4)
        assert (entry.previous_impact, entry.new_impact) == (3, 5)
        assert entry.notes == "Applied after review"
        assert entry.actor_id == admin_user.user_id

    def test_working_values_clamp_to_scale(self, ledger, make_risk, open_period,
                                           accepted_alert, admin_user):
        risk = make_risk(likelihood=4, impact=2)
        alert = accepted_alert(risk, likelihood_delta=4, impact_delta=-4)
        outcome = ledger.apply(alert.alert_id, admin_user.user_id)
        assert (outcome.working_likelihood, outcome.working_impact) == (5, 1)


class TestMerge:
    """Several applied alerts merge by maximum delta."""

    def test_max_delta_not_sum(self, ledger, db_session, make_risk, open_period,
                               accepted_alert, admin_user):
        risk = make_risk(likelihood=1, impact=1)
        alerts = [accepted_alert(risk, likelihood_delta=d) for d in (1, 2, 1)]
        for alert in alerts:
            ledger.apply(alert.alert_id, admin_user.user_id)

        assert _working(db_session, risk.risk_id) == (3, 1)
        state = get_working_state(db_session, db_session.get(Risk, risk.risk_id))
        assert state.likelihood_delta == 2
        assert len(state.applied_alert_ids) == 3

    def test_undo_largest_falls_back_to_next(self, ledger, db_session, make_risk, open_period,
                                             accepted_alert, admin_user):
        risk = make_risk(likelihood=1, impact=1)
        small = accepted_alert(risk, likelihood_delta=1)
        large = accepted_alert(risk, likelihood_delta=3)
        ledger.apply(small.alert_id, admin_user.user_id)
        ledger.apply(large.alert_id, admin_user.user_id)
        assert _working(db_session, risk.risk_id) == (4, 1)

        outcome = ledger.undo(large.alert_id, admin_user.user_id)
        assert (outcome.working_likelihood, outcome.working_impact) == (2, 1)

    def test_pending_alerts_do_not_count(self, ledger, db_session, make_risk, open_period, admin_user):
        risk = make_risk(likelihood=2, impact=2)
        ledger.propose(risk.risk_id, 3, 3)
        assert _working(db_session, risk.risk_id) == (2, 2)


class TestUndo:

    def test_undo_restores_previous_values(self, ledger, db_session, make_risk, open_period,
                                           accepted_alert, admin_user):
        risk = make_risk(likelihood=2, impact=2)
        alert = accepted_alert(risk, likelihood_delta=2, impact_delta=1)
        ledger.apply(alert.alert_id, admin_user.user_id)

        outcome = ledger.undo(alert.alert_id, admin_user.user_id, notes="False positive")

        assert outcome.alert.status == "withdrawn"
        assert outcome.alert.withdrawn_at is not None
        assert (outcome.working_likelihood, outcome.working_impact) == (2, 2)
        assert outcome.log_entry.action == "UNDO"
        assert (outcome.log_entry.previous_likelihood, outcome.log_entry.new_likelihood) == (4, 2)

    def test_undo_then_reapply_restores_same_values(self, ledger, make_risk, open_period,
                                                    accepted_alert, admin_user):
        risk = make_risk(likelihood=3, impact=2)
        alert = accepted_alert(risk, likelihood_delta=1, impact_delta=2)
        applied = ledger.apply(alert.alert_id, admin_user.user_id)
        ledger.undo(alert.alert_id, admin_user.user_id)
        reapplied = ledger.apply(alert.alert_id, admin_user.user_id)

        assert reapplied.changed is True
        assert reapplied.alert.status == "applied"
        assert reapplied.alert.withdrawn_at is None
        assert (reapplied.working_likelihood, reapplied.working_impact) == \
            (applied.working_likelihood, applied.working_impact)

    @pytest.mark.parametrize("review", [None, "accept", "reject"])
    def test_undo_requires_applied(self, ledger, sample_risk, admin_user, review):
        alert = ledger.propose(sample_risk.risk_id, 1, 0)
        if review == "accept":
            ledger.accept(alert.alert_id, admin_user.user_id)
        elif review == "reject":
            ledger.reject(alert.alert_id, admin_user.user_id)
        with pytest.raises(NotApplied):
            ledger.undo(alert.alert_id, admin_user.user_id)

    def test_undo_twice(self, ledger, sample_risk, accepted_alert, admin_user):
        alert = accepted_alert(sample_risk, likelihood_delta=-1)
        ledger.apply(alert.alert_id, admin_user.user_id)
        ledger.undo(alert.alert_id, admin_user.user_id)
        with pytest.raises(NotApplied) as exc_info:
            ledger.undo(alert.alert_id, admin_user.user_id)
        assert exc_info.value.current_status == "withdrawn"


class TestTreatmentAndControls:

    def test_residual_resolves_from_working_values(self, ledger, make_risk, make_control, link_control,
                                                   open_period, accepted_alert, admin_user, db_session):
        risk = make_risk(likelihood=3, impact=3)
        link_control(risk, make_control(target="likelihood", scores=(3, 3, 2, 2)))
        alert = accepted_alert(risk, likelihood_delta=2)
        ledger.apply(alert.alert_id, admin_user.user_id)

        state = resolve_risk(db_session, risk.risk_id)
        assert state.working.working_likelihood == 5
        # 5 - round(4 * 0.833) = 2
        assert state.residual_likelihood == 2
        assert state.residual_impact == 3
        assert state.residual_score == 6


class TestTreatmentLog:

    def test_list_log_in_order(self, ledger, sample_risk, accepted_alert, admin_user):
        alert = accepted_alert(sample_risk, impact_delta=1)
        ledger.apply(alert.alert_id, admin_user.user_id)
        ledger.undo(alert.alert_id, admin_user.user_id)
        actions = [e.action for e in ledger.list_log(sample_risk.risk_id)]
        assert actions == ["APPLY", "UNDO"]

    def test_soft_delete_hides_entry(self, ledger, sample_risk, accepted_alert, admin_user):
        alert = accepted_alert(sample_risk, impact_delta=-1)
        entry = ledger.apply(alert.alert_id, admin_user.user_id).log_entry

        deleted = ledger.soft_delete_log_entry(entry.log_id, admin_user.user_id)

        assert deleted.deleted_at is not None
        assert deleted.deleted_by_id == admin_user.user_id
        assert ledger.list_log(sample_risk.risk_id) == []
        assert [e.log_id for e in ledger.list_log(sample_risk.risk_id, include_deleted=True)] == [entry.log_id]

    def test_soft_delete_does_not_change_working_values(self, ledger, db_session, sample_risk,
                                                        accepted_alert, admin_user):
        alert = accepted_alert(sample_risk, likelihood_delta=-2)
        outcome = ledger.apply(alert.alert_id, admin_user.user_id)
        ledger.soft_delete_log_entry(outcome.log_entry.log_id, admin_user.user_id)
        assert _working(db_session, sample_risk.risk_id) == (3, 4)

    def test_deleting_twice_is_not_found(self, ledger, sample_risk, accepted_alert, admin_user):
        alert = accepted_alert(sample_risk, likelihood_delta=-1)
        entry = ledger.apply(alert.alert_id, admin_user.user_id).log_entry
        ledger.soft_delete_log_entry(entry.log_id, admin_user.user_id)
        with pytest.raises(NotFound):
            ledger.soft_delete_log_entry(entry.log_id, admin_user.user_id)


class TestCommitExclusivity:

    def test_mutation_refused_while_commit_holds_gate(self, ledger, sample_risk, accepted_alert,
                                                      admin_user, db_session):
        alert = accepted_alert(sample_risk, likelihood_delta=-1)
        with organization_gate.exclusive(sample_risk.organization_id):
            with pytest.raises(CommitInProgress):
                ledger.apply(alert.alert_id, admin_user.user_id)
        db_session.expire_all()
        assert ledger.get_alert(alert.alert_id).status == "accepted"
        # Gate released: the mutation now goes through
        assert ledger.apply(alert.alert_id, admin_user.user_id).changed is True
