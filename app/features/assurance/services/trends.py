"""
Score trends for a monitored domain.

Only completed assurance scans carry a score, so failed runs are left out of
both the chart points and the statistics.
"""
from typing import List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.models.assurance import AssuranceScan, AssuranceScanStatus
from app.features.assurance.schemas.assurance import DomainStatistics, TrendPoint
from app.features.scoring.services.scoring_engine import round_public

STATISTICS_WINDOW = 30
TREND_GROUP_SIZE = 5
TREND_MARGIN = 2.0


def trend_direction(scores: Sequence[float]) -> str:
    """
    Compare the mean of the five most recent scores with the mean of the five
    before them. `scores` is newest first.
    """
    recent = scores[:TREND_GROUP_SIZE]
    older = scores[TREND_GROUP_SIZE:TREND_GROUP_SIZE * 2]
    if len(scores) < 2 or not older:
        return "stable"

    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)
    if recent_avg > older_avg + TREND_MARGIN:
        return "improving"
    if recent_avg < older_avg - TREND_MARGIN:
        return "declining"
    return "stable"


async def _recent_completed(db: AsyncSession, domain_id: str, limit: int) -> List[AssuranceScan]:
    result = await db.execute(
        select(AssuranceScan)
        .where(
            AssuranceScan.domain_id == domain_id,
            AssuranceScan.status == AssuranceScanStatus.completed,
        )
        .order_by(AssuranceScan.created_at.desc(), AssuranceScan.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def calculate_trend(db: AsyncSession, domain_id: str, limit: int = 8) -> List[TrendPoint]:
    """Last `limit` scans, oldest first for charting."""
    scans = await _recent_completed(db, domain_id, limit)
    return [
        TrendPoint(
            date=scan.created_at,
            score=scan.score,
            wcag_aa=scan.wcag_aa_compliance,
            wcag_aaa=scan.wcag_aaa_compliance,
            issues_count=scan.issues_count,
            is_regression=scan.is_regression,
        )
        for scan in reversed(scans)
    ]


async def get_domain_statistics(db: AsyncSession, domain_id: str) -> DomainStatistics:
    scans = await _recent_completed(db, domain_id, STATISTICS_WINDOW)
    if not scans:
        return DomainStatistics(total_scans=0, trend="stable", regression_count=0)

    scores = [scan.score for scan in scans if scan.score is not None]
    return DomainStatistics(
        total_scans=len(scans),
        latest_score=scans[0].score,
        latest_scan_at=scans[0].created_at,
        average_score=round_public(sum(scores) / len(scores)) if scores else None,
        min_score=min(scores) if scores else None,
        max_score=max(scores) if scores else None,
        trend=trend_direction(scores),
        regression_count=sum(1 for scan in scans if scan.is_regression),
    )
