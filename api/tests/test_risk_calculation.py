"""Tests for the pure risk calculation functions."""
from types import SimpleNamespace

import pytest

from app.core.risk_calculation import (
    ControlInput,
    calculate_control_effectiveness,
    clamp,
    compute_working_values,
    create_audit_log_changes,
    effective_link_scores,
    merge_treatment_deltas,
    reduce_dimension,
    resolve_residual_risk,
    risk_level,
    round_half_up,
    summarize_controls,
)


def _control(target, scores, control_id=None):
    d, i, m, e = scores
    return ControlInput(
        control_id=control_id,
        target=target,
        design_score=d,
        implementation_score=i,
        monitoring_score=m,
        evaluation_score=e,
    )


def _alert(likelihood_delta, impact_delta):
    return SimpleNamespace(likelihood_delta=likelihood_delta, impact_delta=impact_delta)


class TestControlEffectiveness:
    """Normalized DIME effectiveness."""

    def test_all_scores_at_max_is_one(self):
        assert calculate_control_effectiveness(3, 3, 3, 3) == 1.0

    def test_all_zero_is_zero(self):
        assert calculate_control_effectiveness(0, 0, 0, 0) == 0.0

    def test_zero_design_gates_to_zero(self):
        assert calculate_control_effectiveness(0, 3, 3, 3) == 0.0

    def test_zero_implementation_gates_to_zero(self):
        assert calculate_control_effectiveness(3, 0, 3, 3) == 0.0

    def test_partial_scores(self):
        assert calculate_control_effectiveness(3, 3, 2, 2) == pytest.approx(10 / 12)
        assert calculate_control_effectiveness(2, 2, 1, 1) == pytest.approx(0.5)

    def test_out_of_range_scores_are_clamped(self):
        """Scores above the maximum count as the maximum, negatives as 0."""
        assert calculate_control_effectiveness(9, 9, 9, 9) == 1.0
        assert calculate_control_effectiveness(3, 3, -2, -2) == pytest.approx(0.5)

    def test_none_counts_as_zero(self):
        assert calculate_control_effectiveness(None, 3, 3, 3) == 0.0
        assert calculate_control_effectiveness(3, 3, None, None) == pytest.approx(0.5)

    def test_custom_scale(self):
        assert calculate_control_effectiveness(5, 5, 5, 5, score_max=5) == 1.0
        assert calculate_control_effectiveness(3, 3, 3, 3, score_max=5) == pytest.approx(0.6)


class TestRounding:

    def test_half_rounds_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3

    def test_below_half_rounds_down(self):
        assert round_half_up(3.333) == 3

    def test_reduce_dimension_never_below_one(self):
        assert reduce_dimension(5, 1.0) == 1
        assert reduce_dimension(1, 1.0) == 1

    def test_reduce_dimension_uses_half_up(self):
        """(3 - 1) * 0.25 = 0.5 must round to 1, leaving 2."""
        assert reduce_dimension(3, 0.25) == 2

    def test_clamp(self):
        assert clamp(7, 1, 5) == 5
        assert clamp(-1, 1, 5) == 1
        assert clamp(None, 1, 5) == 1
        assert clamp(3, 1, 5) == 3


class TestResolveResidualRisk:
    """Residual values from the best control per dimension."""

    def test_reference_example(self):
        """L=5, I=4; likelihood control 0.83, impact control 1.00 -> L=2, I=1, score 2."""
        result = resolve_residual_risk(
            5, 4,
            [_control("likelihood", (3, 3, 2, 2), 1), _control("impact", (3, 3, 3, 3), 2)],
        )
        assert result.residual_likelihood == 2
        assert result.residual_impact == 1
        assert result.residual_score == 2
        assert result.max_likelihood_effectiveness == pytest.approx(0.8333, abs=1e-3)
        assert result.max_impact_effectiveness == 1.0

    def test_only_strongest_control_counts(self):
        """0.83 and 0.50 on likelihood: 0.83 is used, effects do not stack."""
        strong_only = resolve_residual_risk(5, 4, [_control("likelihood", (3, 3, 2, 2))])
        both = resolve_residual_risk(
            5, 4, [_control("likelihood", (2, 2, 1, 1)), _control("likelihood", (3, 3, 2, 2))]
        )
        assert both.max_likelihood_effectiveness == pytest.approx(10 / 12)
        assert both.residual_likelihood == strong_only.residual_likelihood == 2

    def test_no_controls_leaves_values_unchanged(self):
        result = resolve_residual_risk(4, 3, [])
        assert (result.residual_likelihood, result.residual_impact, result.residual_score) == (4, 3, 12)
        assert result.per_control == []

    def test_gated_control_has_no_effect(self):
        result = resolve_residual_risk(4, 4, [_control("impact", (0, 3, 3, 3))])
        assert result.residual_impact == 4
        assert result.per_control[0].effectiveness == 0.0

    def test_controls_only_affect_their_target(self):
        result = resolve_residual_risk(5, 5, [_control("impact", (3, 3, 3, 3))])
        assert result.residual_likelihood == 5
        assert result.residual_impact == 1

    def test_per_control_in_input_order(self):
        controls = [_control("impact", (3, 3, 3, 3), 7), _control("likelihood", (1, 1, 1, 1), 3)]
        result = resolve_residual_risk(3, 3, controls)
        assert [c.control_id for c in result.per_control] == [7, 3]

    def test_deterministic(self):
        controls = [_control("likelihood", (3, 2, 1, 0)), _control("impact", (1, 1, 1, 1))]
        assert resolve_residual_risk(5, 5, controls) == resolve_residual_risk(5, 5, controls)

    def test_accepts_enum_targets(self):
        from app.models.control import ControlTarget
        control = SimpleNamespace(
            target=ControlTarget.LIKELIHOOD,
            design_score=3, implementation_score=3, monitoring_score=3, evaluation_score=3,
        )
        assert resolve_residual_risk(5, 5, [control]).residual_likelihood == 1


class TestEffectiveLinkScores:

    def test_overrides_fall_back_per_field(self):
        control = SimpleNamespace(
            control_id=1, name="MFA", target="likelihood",
            design_score=3, implementation_score=3, monitoring_score=3, evaluation_score=3,
        )
        link = SimpleNamespace(
            design_score=None, implementation_score=1, monitoring_score=None, evaluation_score=0,
        )
        scores = effective_link_scores(control, link)
        assert (scores.design_score, scores.implementation_score,
                scores.monitoring_score, scores.evaluation_score) == (3, 1, 3, 0)
        assert scores.target == "likelihood"
        assert scores.name == "MFA"

    def test_no_link_uses_control_scores(self):
        control = SimpleNamespace(
            control_id=2, name=None, target="impact",
            design_score=2, implementation_score=1, monitoring_score=0, evaluation_score=3,
        )
        assert effective_link_scores(control).implementation_score == 1


class TestSummarizeControls:

    def test_counts_and_average(self):
        result = resolve_residual_risk(
            5, 5,
            [_control("likelihood", (3, 3, 3, 3)), _control("likelihood", (0, 3, 3, 3)),
             _control("impact", (2, 2, 1, 1))],
        )
        summary = summarize_controls(result.per_control)
        assert summary["total_controls"] == 3
        assert summary["controls_targeting_likelihood"] == 2
        assert summary["controls_targeting_impact"] == 1
        assert summary["average_effectiveness"] == pytest.approx(0.5)

    def test_empty(self):
        assert summarize_controls([])["average_effectiveness"] == 0.0


class TestRiskLevel:

    def test_band_boundaries(self):
        assert [risk_level(s) for s in (1, 2, 3, 5, 6, 11, 12, 19, 20, 25)] == [
            "Minimal", "Minimal", "Low", "Low", "Moderate", "Moderate", "High", "High", "Severe", "Severe",
        ]


class TestTreatmentMerge:
    """Merging applied deltas uses the maximum, never the sum."""

    def test_max_not_sum(self):
        alerts = [_alert(1, 0), _alert(2, 1), _alert(1, 0)]
        assert merge_treatment_deltas(alerts) == (2, 1)

    def test_empty_is_zero(self):
        assert merge_treatment_deltas([]) == (0, 0)

    def test_negative_deltas(self):
        assert merge_treatment_deltas([_alert(-2, -1), _alert(-1, -3)]) == (-1, -1)

    def test_working_values_clamped_to_scale(self):
        assert compute_working_values(4, 2, [_alert(3, -4)]) == (5, 1)

    def test_working_values_without_alerts(self):
        assert compute_working_values(3, 4, []) == (3, 4)

    def test_custom_scale(self):
        assert compute_working_values(8, 2, [_alert(4, 1)], scale_max=10) == (10, 3)


class TestAuditChanges:

    def test_only_changed_keys(self):
        changes = create_audit_log_changes({"a": 1, "b": 2}, {"a": 1, "b": 3})
        assert changes == {"b": {"old": 2, "new": 3}}

    def test_metadata_prefixed(self):
        changes = create_audit_log_changes({}, {}, control_id=4, skipped=None)
        assert changes == {"_control_id": 4}
