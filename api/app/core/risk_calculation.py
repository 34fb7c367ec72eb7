"""Risk calculation logic for the continuous risk state engine.

Implements:
- Control effectiveness from the four-dimension score vector
- Residual likelihood/impact from the best control per dimension
- Severity bands for likelihood x impact scores
- Treatment delta merge (maximum, never a sum) and working values
- Audit change dicts for engine writes

Everything here is pure: no session, no clock, no settings mutation.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Tuple

from app.core.config import settings


TARGET_LIKELIHOOD = "likelihood"
TARGET_IMPACT = "impact"
TARGETS = (TARGET_LIKELIHOOD, TARGET_IMPACT)

SCORE_FIELDS = ("design_score", "implementation_score", "monitoring_score", "evaluation_score")


@dataclass(frozen=True)
class ControlInput:
    """A linked control with its override-resolved scores."""
    control_id: Optional[int]
    target: str
    design_score: Optional[int]
    implementation_score: Optional[int]
    monitoring_score: Optional[int]
    evaluation_score: Optional[int]
    name: Optional[str] = None


@dataclass(frozen=True)
class ControlEffectiveness:
    control_id: Optional[int]
    target: str
    effectiveness: float
    name: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "control_id": self.control_id,
            "name": self.name,
            "target": self.target,
            "effectiveness": self.effectiveness,
        }


@dataclass(frozen=True)
class ResidualResult:
    residual_likelihood: int
    residual_impact: int
    residual_score: int
    max_likelihood_effectiveness: float
    max_impact_effectiveness: float
    per_control: List[ControlEffectiveness] = field(default_factory=list)


def clamp(value: Optional[int], lower: int, upper: int) -> int:
    """Clamp ``value`` into [lower, upper]; None counts as ``lower``."""
    if value is None:
        return lower
    return max(lower, min(upper, int(value)))


def calculate_control_effectiveness(
    design: Optional[int],
    implementation: Optional[int],
    monitoring: Optional[int],
    evaluation: Optional[int],
    score_max: Optional[int] = None,
) -> float:
    """
    Normalized effectiveness of one control, in [0, 1].

    Scores are clamped to [0, score_max] rather than rejected. A control that
    is not designed (design = 0) or not implemented (implementation = 0)
    earns nothing, whatever its monitoring and evaluation scores.

    Args:
        design, implementation, monitoring, evaluation: Raw sub-scores
        score_max: Top of the score scale (defaults to CONTROL_SCORE_MAX)

    Returns:
        (d + i + m + e) / (4 * score_max), or 0.0 when d or i is 0
    """
    score_max = settings.CONTROL_SCORE_MAX if score_max is None else score_max
    d = clamp(design, 0, score_max)
    i = clamp(implementation, 0, score_max)
    m = clamp(monitoring, 0, score_max)
    e = clamp(evaluation, 0, score_max)

    if d == 0 or i == 0:
        return 0.0

    return (d + i + m + e) / (4 * score_max)


def round_half_up(value: float) -> int:
    """Round .5 away from zero (Python's round() would round to even)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def reduce_dimension(value: int, max_effectiveness: float) -> int:
    """Residual value for one dimension; never below the scale minimum of 1."""
    return max(1, value - round_half_up((value - 1) * max_effectiveness))


def effective_link_scores(control: Any, link: Any = None) -> ControlInput:
    """
    Combine a control's scores with optional per-link overrides.

    Each override falls back independently to the control's own score.
    """
    scores = {}
    for name in SCORE_FIELDS:
        override = getattr(link, name, None) if link is not None else None
        scores[name] = override if override is not None else getattr(control, name)

    target = control.target
    return ControlInput(
        control_id=control.control_id,
        target=getattr(target, "value", target),
        name=getattr(control, "name", None),
        **scores,
    )


def resolve_residual_risk(
    likelihood: int,
    impact: int,
    controls: Iterable[Any],
    score_max: Optional[int] = None,
) -> ResidualResult:
    """
    Residual likelihood, impact and score for a risk.

    Controls are partitioned by target dimension; only the single most
    effective control of each partition counts (controls do not stack).
    An empty partition contributes 0.

    Args:
        likelihood: Likelihood before controls (inherent or working value)
        impact: Impact before controls
        controls: Objects with ``target`` and the four score attributes
        score_max: Top of the control score scale

    Returns:
        ResidualResult with per-control effectiveness in input order
    """
    per_control: List[ControlEffectiveness] = []
    best = {TARGET_LIKELIHOOD: 0.0, TARGET_IMPACT: 0.0}

    for control in controls:
        target = getattr(control.target, "value", control.target)
        effectiveness = calculate_control_effectiveness(
            control.design_score,
            control.implementation_score,
            control.monitoring_score,
            control.evaluation_score,
            score_max=score_max,
        )
        per_control.append(ControlEffectiveness(
            control_id=getattr(control, "control_id", None),
            target=target,
            effectiveness=effectiveness,
            name=getattr(control, "name", None),
        ))
        if target in best:
            best[target] = max(best[target], effectiveness)

    residual_likelihood = reduce_dimension(likelihood, best[TARGET_LIKELIHOOD])
    residual_impact = reduce_dimension(impact, best[TARGET_IMPACT])

    return ResidualResult(
        residual_likelihood=residual_likelihood,
        residual_impact=residual_impact,
        residual_score=residual_likelihood * residual_impact,
        max_likelihood_effectiveness=best[TARGET_LIKELIHOOD],
        max_impact_effectiveness=best[TARGET_IMPACT],
        per_control=per_control,
    )


def summarize_controls(per_control: List[ControlEffectiveness]) -> dict:
    """Control counts per target and average effectiveness across all links."""
    total = len(per_control)
    average = sum(c.effectiveness for c in per_control) / total if total else 0.0
    return {
        "total_controls": total,
        "controls_targeting_likelihood": sum(1 for c in per_control if c.target == TARGET_LIKELIHOOD),
        "controls_targeting_impact": sum(1 for c in per_control if c.target == TARGET_IMPACT),
        "average_effectiveness": average,
    }


# Lower bounds of the severity bands on the likelihood x impact score (5x5 scale)
RISK_LEVEL_BANDS = (
    (20, "Severe"),
    (12, "High"),
    (6, "Moderate"),
    (3, "Low"),
)
RISK_LEVEL_MINIMAL = "Minimal"
RISK_LEVELS = ("Minimal", "Low", "Moderate", "High", "Severe")
HIGH_SEVERITY_LEVELS = ("High", "Severe")


def risk_level(score: int) -> str:
    """Severity band of a likelihood x impact score."""
    for lower_bound, level in RISK_LEVEL_BANDS:
        if score >= lower_bound:
            return level
    return RISK_LEVEL_MINIMAL


def merge_treatment_deltas(applied_alerts: Iterable[Any]) -> Tuple[int, int]:
    """
    Effective (likelihood, impact) delta of the currently applied alerts.

    Uses the maximum of each delta across alerts, never their sum, so that
    several alerts about the same evidence cannot inflate severity. No
    applied alerts means no adjustment.
    """
    alerts = list(applied_alerts)
    if not alerts:
        return 0, 0
    return (
        max(a.likelihood_delta for a in alerts),
        max(a.impact_delta for a in alerts),
    )


def compute_working_values(
    inherent_likelihood: int,
    inherent_impact: int,
    applied_alerts: Iterable[Any],
    scale_max: Optional[int] = None,
) -> Tuple[int, int]:
    """Inherent values shifted by the merged treatment delta, kept on the 1..N scale."""
    scale_max = settings.RISK_SCALE_MAX if scale_max is None else scale_max
    likelihood_delta, impact_delta = merge_treatment_deltas(applied_alerts)
    return (
        clamp(inherent_likelihood + likelihood_delta, 1, scale_max),
        clamp(inherent_impact + impact_delta, 1, scale_max),
    )


def create_audit_log_changes(old_values: dict, new_values: dict, **metadata: Any) -> dict:
    """
    Changes dict for AuditLog.changes.

    Only keys whose value differs are recorded as ``{'old': ..., 'new': ...}``;
    ``metadata`` entries are stored under a leading underscore.
    """
    changes = {}

    for key in set(old_values.keys()) | set(new_values.keys()):
        old_val = old_values.get(key)
        new_val = new_values.get(key)
        if old_val != new_val:
            changes[key] = {'old': old_val, 'new': new_val}

    for key, value in metadata.items():
        if value is not None:
            changes[f'_{key}'] = value

    return changes
