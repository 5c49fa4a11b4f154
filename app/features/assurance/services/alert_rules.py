"""
Alert rule repository.

Rules live in the alert_rules table. A domain uses its own enabled rule when
it has one, then the enabled global rule (domain_id NULL), then the Settings
defaults.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.features.assurance.models.assurance import AlertRule, AlertSeverity, AssuranceDomain
from app.features.assurance.schemas.alert_rule import AlertRuleCreate, AlertRuleUpdate
from app.platform.config import settings
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger

logger = get_logger(__name__)

ALL_SEVERITIES = [severity.value for severity in AlertSeverity]
NULLABLE_FIELDS = {"description", "webhook_url"}


def rule_for_domain(db: Session, domain_id: str) -> Optional[AlertRule]:
    """Effective rule for a domain (sync, worker side)."""
    for domain_filter in (AlertRule.domain_id == domain_id, AlertRule.domain_id.is_(None)):
        rule = db.execute(
            select(AlertRule)
            .where(domain_filter, AlertRule.enabled.is_(True))
            .order_by(AlertRule.created_at.desc(), AlertRule.id.desc())
            .limit(1)
        ).scalars().first()
        if rule is not None:
            return rule
    return None


def severity_notifies(rule: Optional[AlertRule], severity: AlertSeverity) -> bool:
    if rule is None or not rule.severity_levels:
        return True
    return severity.value in rule.severity_levels


def cooldown_minutes(rule: Optional[AlertRule]) -> int:
    return rule.cooldown_minutes if rule is not None else settings.ALERT_COOLDOWN_MINUTES


# ── API side ────────────────────────────────────

async def list_rules(db: AsyncSession, domain_id: Optional[str] = None) -> List[AlertRule]:
    stmt = select(AlertRule).order_by(AlertRule.created_at.desc(), AlertRule.id.desc())
    if domain_id:
        stmt = stmt.where(AlertRule.domain_id == domain_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_rule(db: AsyncSession, rule_id: str) -> AlertRule:
    rule = await db.get(AlertRule, rule_id, populate_existing=True)
    if not rule:
        raise NotFoundError(f"Alert rule {rule_id} not found")
    return rule


async def create_rule(db: AsyncSession, payload: AlertRuleCreate) -> AlertRule:
    if payload.domain_id:
        domain = await db.get(AssuranceDomain, payload.domain_id)
        if not domain:
            raise NotFoundError(f"Assurance domain {payload.domain_id} not found")

    rule = AlertRule(
        domain_id=payload.domain_id,
        name=payload.name,
        description=payload.description,
        enabled=payload.enabled,
        score_drop_threshold=(
            payload.score_drop_threshold
            if payload.score_drop_threshold is not None
            else settings.REGRESSION_SCORE_DROP_THRESHOLD
        ),
        new_violations_threshold=(
            payload.new_violations_threshold
            if payload.new_violations_threshold is not None
            else settings.REGRESSION_NEW_CRITICAL_THRESHOLD
        ),
        compliance_threshold=(
            payload.compliance_threshold
            if payload.compliance_threshold is not None
            else settings.REGRESSION_COMPLIANCE_THRESHOLD
        ),
        severity_levels=[severity.value for severity in payload.severity_levels] or ALL_SEVERITIES,
        cooldown_minutes=(
            payload.cooldown_minutes
            if payload.cooldown_minutes is not None
            else settings.ALERT_COOLDOWN_MINUTES
        ),
        notify_email=payload.notify_email,
        notify_webhook=payload.notify_webhook,
        webhook_url=payload.webhook_url,
        recipients=payload.recipients,
        total_alerts_sent=0,
    )
    if rule.notify_webhook and not (rule.webhook_url or settings.ALERT_WEBHOOK_URL):
        raise InvalidStateError("notify_webhook requires a webhook_url")

    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    logger.info(f"Alert rule {rule.id} '{rule.name}' created (domain={rule.domain_id or 'global'})")
    return rule


async def update_rule(db: AsyncSession, rule_id: str, payload: AlertRuleUpdate) -> AlertRule:
    rule = await get_rule(db, rule_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("severity_levels") is not None:
        changes["severity_levels"] = [severity.value for severity in payload.severity_levels] or ALL_SEVERITIES
    for key, value in changes.items():
        if value is None and key not in NULLABLE_FIELDS:
            continue
        setattr(rule, key, value)
    if rule.notify_webhook and not (rule.webhook_url or settings.ALERT_WEBHOOK_URL):
        await db.rollback()
        await db.refresh(rule)
        raise InvalidStateError("notify_webhook requires a webhook_url")

    await db.commit()
    await db.refresh(rule)
    return rule


async def delete_rule(db: AsyncSession, rule_id: str):
    rule = await get_rule(db, rule_id)
    await db.delete(rule)
    await db.commit()
    logger.info(f"Alert rule {rule_id} deleted")
