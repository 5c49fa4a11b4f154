"""
Regression Detector

Compares an AssuranceScan with its baseline: the most recent earlier
completed AssuranceScan of the same domain. A domain's first scan only
establishes the baseline. At most one rule type is reported per scan, in
priority order:

    critical score_drop > new_critical_issues > compliance_drop > score_drop
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.features.assurance.models.assurance import (
    AlertRule,
    AlertSeverity,
    AlertType,
    AssuranceDomain,
    AssuranceScan,
    AssuranceScanStatus,
)
from app.features.scoring.services.scoring_engine import round_public
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Drop magnitude (points) -> severity, checked top down
DROP_SEVERITY_STEPS = (
    (20.0, AlertSeverity.critical),
    (10.0, AlertSeverity.high),
    (5.0, AlertSeverity.moderate),
)

# AA compliance below these values -> severity, checked top down
COMPLIANCE_SEVERITY_STEPS = (
    (40.0, AlertSeverity.critical),
    (55.0, AlertSeverity.high),
)

NEW_CRITICAL_SEVERITY = AlertSeverity.high


@dataclass(frozen=True)
class RegressionThresholds:
    score_drop: float
    new_critical: int
    compliance: float

    @classmethod
    def from_settings(cls) -> "RegressionThresholds":
        return cls(
            score_drop=settings.REGRESSION_SCORE_DROP_THRESHOLD,
            new_critical=settings.REGRESSION_NEW_CRITICAL_THRESHOLD,
            compliance=settings.REGRESSION_COMPLIANCE_THRESHOLD,
        )

    @classmethod
    def from_rule(cls, rule: Optional[AlertRule]) -> "RegressionThresholds":
        if rule is None:
            return cls.from_settings()
        return cls(
            score_drop=rule.score_drop_threshold,
            new_critical=rule.new_violations_threshold,
            compliance=rule.compliance_threshold,
        )


@dataclass
class RegressionResult:
    detected: bool
    type: Optional[AlertType] = None
    severity: AlertSeverity = AlertSeverity.low
    title: str = "No regression detected"
    message: str = "No regression detected"
    current_score: Optional[float] = None
    previous_score: Optional[float] = None
    threshold: Optional[float] = None


def drop_severity(drop: float) -> AlertSeverity:
    for floor, severity in DROP_SEVERITY_STEPS:
        if drop >= floor:
            return severity
    return AlertSeverity.low


def compliance_severity(compliance: float) -> AlertSeverity:
    for ceiling, severity in COMPLIANCE_SEVERITY_STEPS:
        if compliance < ceiling:
            return severity
    return AlertSeverity.moderate


def _score_drop(current: AssuranceScan, baseline: AssuranceScan, thresholds: RegressionThresholds) -> Optional[RegressionResult]:
    if current.score is None or baseline.score is None:
        return None
    drop = baseline.score - current.score
    if drop < thresholds.score_drop:
        return None
    return RegressionResult(
        detected=True,
        type=AlertType.score_drop,
        severity=drop_severity(drop),
        title="Accessibility score dropped",
        message=(
            f"Score decreased from {baseline.score:g} to {current.score:g} "
            f"(-{round_public(drop):g} points, threshold {thresholds.score_drop:g})"
        ),
        current_score=current.score,
        previous_score=baseline.score,
        threshold=thresholds.score_drop,
    )


def _new_critical(current: AssuranceScan, baseline: AssuranceScan, thresholds: RegressionThresholds) -> Optional[RegressionResult]:
    increase = (current.critical_count or 0) - (baseline.critical_count or 0)
    if increase <= 0 or increase < thresholds.new_critical:
        return None
    noun = "issue" if increase == 1 else "issues"
    return RegressionResult(
        detected=True,
        type=AlertType.new_critical_issues,
        severity=NEW_CRITICAL_SEVERITY,
        title="New critical accessibility issues",
        message=f"{increase} new critical accessibility {noun} detected",
        current_score=current.score,
        previous_score=baseline.score,
        threshold=float(thresholds.new_critical),
    )


def _compliance_drop(current: AssuranceScan, baseline: AssuranceScan, thresholds: RegressionThresholds) -> Optional[RegressionResult]:
    compliance = current.wcag_aa_compliance
    if compliance is None or compliance >= thresholds.compliance:
        return None
    return RegressionResult(
        detected=True,
        type=AlertType.compliance_drop,
        severity=compliance_severity(compliance),
        title="WCAG AA compliance below threshold",
        message=f"WCAG AA compliance is {compliance:g}% (threshold {thresholds.compliance:g}%)",
        current_score=current.score,
        previous_score=baseline.score,
        threshold=thresholds.compliance,
    )


def detect_regression(
    current: AssuranceScan,
    baseline: Optional[AssuranceScan],
    thresholds: Optional[RegressionThresholds] = None,
) -> RegressionResult:
    """Pure classification of current against baseline. Exactly one result."""
    thresholds = thresholds or RegressionThresholds.from_settings()
    if baseline is None:
        return RegressionResult(
            detected=False,
            message="First scan for this domain, baseline established",
            current_score=current.score,
        )

    score_drop = _score_drop(current, baseline, thresholds)
    if score_drop is not None and score_drop.severity == AlertSeverity.critical:
        return score_drop

    for candidate in (
        _new_critical(current, baseline, thresholds),
        _compliance_drop(current, baseline, thresholds),
        score_drop,
    ):
        if candidate is not None:
            return candidate

    return RegressionResult(
        detected=False,
        current_score=current.score,
        previous_score=baseline.score,
    )


class RegressionDetector:
    def __init__(self, db: Session):
        self.db = db

    def baseline_for(self, domain_id: str, current: AssuranceScan) -> Optional[AssuranceScan]:
        stmt = (
            select(AssuranceScan)
            .where(
                AssuranceScan.domain_id == domain_id,
                AssuranceScan.status == AssuranceScanStatus.completed,
                AssuranceScan.id != current.id,
            )
            .order_by(AssuranceScan.created_at.desc(), AssuranceScan.id.desc())
            .limit(1)
        )
        if current.created_at is not None:
            stmt = stmt.where(or_(
                AssuranceScan.created_at < current.created_at,
                and_(AssuranceScan.created_at == current.created_at, AssuranceScan.id < current.id),
            ))
        return self.db.execute(stmt).scalars().first()

    def detect(
        self,
        domain: AssuranceDomain,
        current: AssuranceScan,
        thresholds: Optional[RegressionThresholds] = None,
    ) -> RegressionResult:
        baseline = self.baseline_for(domain.id, current)
        result = detect_regression(current, baseline, thresholds)
        if result.detected:
            logger.info(f"[{domain.id}] Regression {result.type.value} ({result.severity.value}): {result.message}")
        return result
