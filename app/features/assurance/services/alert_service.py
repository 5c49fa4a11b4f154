from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.models.assurance import AlertSeverity, AlertType, AssuranceAlert
from app.features.assurance.schemas.assurance import AlertListResponse, AlertResponse, AlertSummary
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

SUMMARY_LATEST = 5


async def list_alerts(
    db: AsyncSession,
    domain_id: Optional[str] = None,
    resolved: Optional[bool] = None,
    severity: Optional[AlertSeverity] = None,
    alert_type: Optional[AlertType] = None,
    limit: int = 50,
    offset: int = 0,
) -> AlertListResponse:
    filters = []
    if domain_id is not None:
        filters.append(AssuranceAlert.domain_id == domain_id)
    if resolved is not None:
        filters.append(AssuranceAlert.resolved.is_(resolved))
    if severity is not None:
        filters.append(AssuranceAlert.severity == severity)
    if alert_type is not None:
        filters.append(AssuranceAlert.type == alert_type)

    total = (await db.execute(select(func.count(AssuranceAlert.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(AssuranceAlert)
        .where(*filters)
        .order_by(AssuranceAlert.created_at.desc(), AssuranceAlert.id.desc())
        .limit(limit)
        .offset(offset)
    )
    items = [AlertResponse.model_validate(alert) for alert in result.scalars().all()]
    return AlertListResponse(items=items, total=total, limit=limit, offset=offset)


async def resolve_alert(db: AsyncSession, alert_id: str, resolved_by: str) -> AssuranceAlert:
    alert = await db.get(AssuranceAlert, alert_id)
    if not alert:
        raise NotFoundError(f"Alert {alert_id} not found")
    if alert.resolved:
        raise InvalidStateError(f"Alert {alert_id} is already resolved")

    alert.resolved = True
    alert.resolved_at = utcnow()
    alert.resolved_by = resolved_by
    await db.commit()
    await db.refresh(alert)
    logger.info(f"Alert {alert_id} resolved by {resolved_by}")
    return alert


async def get_alert_summary(db: AsyncSession, domain_id: Optional[str] = None) -> AlertSummary:
    """Totals, unresolved counts per severity and the most recent alerts."""
    filters = [AssuranceAlert.domain_id == domain_id] if domain_id is not None else []

    total = (await db.execute(select(func.count(AssuranceAlert.id)).where(*filters))).scalar_one()

    rows = await db.execute(
        select(AssuranceAlert.severity, func.count(AssuranceAlert.id))
        .where(*filters, AssuranceAlert.resolved.is_(False))
        .group_by(AssuranceAlert.severity)
    )
    by_severity = {severity.value: 0 for severity in AlertSeverity}
    for severity, count in rows.all():
        by_severity[severity.value] = count

    latest = await db.execute(
        select(AssuranceAlert)
        .where(*filters)
        .order_by(AssuranceAlert.created_at.desc(), AssuranceAlert.id.desc())
        .limit(SUMMARY_LATEST)
    )

    return AlertSummary(
        total=total,
        unresolved=sum(by_severity.values()),
        by_severity=by_severity,
        latest=[AlertResponse.model_validate(alert) for alert in latest.scalars().all()],
    )
