from datetime import datetime, timedelta

import pytest

from app.features.assurance.models.assurance import (
    AlertSeverity,
    AlertType,
    AssuranceAlert,
    AssuranceScan,
    AssuranceScanStatus,
    ScanFrequency,
)
from app.features.assurance.schemas.alert_rule import AlertRuleCreate, AlertRuleUpdate
from app.features.assurance.schemas.assurance import DomainCreate
from app.features.assurance.services import alert_rules, alert_service, domain_service, trends
from app.platform.exceptions import InvalidStateError, NotFoundError

START = datetime(2026, 1, 5, 9, 0)


async def monitored_domain(db, domain="https://example.com", subscription_id="sub_1"):
    return await domain_service.create_domain(db, DomainCreate(
        subscription_id=subscription_id,
        domain=domain,
        email_recipients=["owner@example.com"],
    ))


async def add_scans(db, domain_id, scores, failed_at=()):
    for week, score in enumerate(scores):
        db.add(AssuranceScan(
            domain_id=domain_id,
            status=AssuranceScanStatus.failed if week in failed_at else AssuranceScanStatus.completed,
            score=None if week in failed_at else score,
            issues_count=0,
            critical_count=0,
            serious_count=0,
            is_regression=False,
            created_at=START + timedelta(weeks=week),
        ))
    await db.commit()


async def add_alert(db, domain_id, severity=AlertSeverity.high, resolved=False, minutes=0):
    alert = AssuranceAlert(
        domain_id=domain_id,
        type=AlertType.score_drop,
        severity=severity,
        title="Accessibility score dropped",
        message="Score decreased",
        resolved=resolved,
        created_at=START + timedelta(minutes=minutes),
    )
    db.add(alert)
    await db.commit()
    return alert


# ── Domains ─────────────────────────────────────

@pytest.mark.asyncio
async def test_create_domain_binds_site_and_schedules(async_db):
    domain = await monitored_domain(async_db, domain="Example.com/some/page")

    assert domain.domain == "https://example.com"
    assert domain.site_id is not None
    assert domain.active is True
    assert domain.frequency == ScanFrequency.weekly
    assert domain.next_run_at is not None
    assert domain.next_run_at.weekday() == 0


@pytest.mark.asyncio
async def test_duplicate_active_domain_is_rejected(async_db):
    await monitored_domain(async_db)
    with pytest.raises(InvalidStateError):
        await monitored_domain(async_db, domain="https://example.com/")

    other = await monitored_domain(async_db, subscription_id="sub_2")
    assert other.subscription_id == "sub_2"


@pytest.mark.asyncio
async def test_deactivate_and_list_domains(async_db):
    first = await monitored_domain(async_db)
    await monitored_domain(async_db, domain="https://other.org")

    deactivated = await domain_service.deactivate_domain(async_db, first.id)

    assert deactivated.active is False
    assert deactivated.next_run_at is None
    assert [d.domain for d in await domain_service.list_domains(async_db, active=True)] == ["https://other.org"]
    assert len(await domain_service.list_domains(async_db, subscription_id="sub_1")) == 2

    # a deactivated origin can be monitored again
    again = await monitored_domain(async_db)
    assert again.id != first.id


@pytest.mark.asyncio
async def test_unknown_domain(async_db):
    with pytest.raises(NotFoundError):
        await domain_service.get_domain(async_db, "missing")
    with pytest.raises(NotFoundError):
        await domain_service.list_domain_scans(async_db, "missing")


@pytest.mark.asyncio
async def test_domain_scans_newest_first(async_db):
    domain = await monitored_domain(async_db)
    await add_scans(async_db, domain.id, [80.0, 85.0, 90.0])

    scans = await domain_service.list_domain_scans(async_db, domain.id, limit=2)

    assert [scan.score for scan in scans] == [90.0, 85.0]


# ── Trends ──────────────────────────────────────

def test_trend_direction():
    assert trends.trend_direction([]) == "stable"
    assert trends.trend_direction([90.0]) == "stable"
    assert trends.trend_direction([90.0] * 5) == "stable"
    assert trends.trend_direction([90.0] * 5 + [80.0] * 5) == "improving"
    assert trends.trend_direction([80.0] * 5 + [90.0] * 5) == "declining"
    assert trends.trend_direction([81.0] * 5 + [80.0] * 5) == "stable"


@pytest.mark.asyncio
async def test_trend_points_are_oldest_first_and_skip_failures(async_db):
    domain = await monitored_domain(async_db)
    await add_scans(async_db, domain.id, [70.0, 0.0, 75.0, 80.0], failed_at={1})

    points = await trends.calculate_trend(async_db, domain.id, limit=8)

    assert [point.score for point in points] == [70.0, 75.0, 80.0]
    assert points[0].date < points[-1].date


@pytest.mark.asyncio
async def test_domain_statistics(async_db):
    domain = await monitored_domain(async_db)
    await add_scans(async_db, domain.id, [70.0] * 5 + [80.0, 81.0, 82.0, 83.0, 84.0])

    stats = await trends.get_domain_statistics(async_db, domain.id)

    assert stats.total_scans == 10
    assert stats.latest_score == 84.0
    assert stats.min_score == 70.0
    assert stats.max_score == 84.0
    assert stats.average_score == 76.0
    assert stats.trend == "improving"
    assert stats.regression_count == 0


@pytest.mark.asyncio
async def test_statistics_without_scans(async_db):
    domain = await monitored_domain(async_db)
    stats = await trends.get_domain_statistics(async_db, domain.id)
    assert stats.total_scans == 0
    assert stats.trend == "stable"
    assert stats.latest_score is None


# ── Alerts ──────────────────────────────────────

@pytest.mark.asyncio
async def test_list_alerts_filters_and_pages(async_db):
    domain = await monitored_domain(async_db)
    await add_alert(async_db, domain.id, AlertSeverity.high, minutes=0)
    await add_alert(async_db, domain.id, AlertSeverity.critical, minutes=1)
    await add_alert(async_db, domain.id, AlertSeverity.low, resolved=True, minutes=2)

    everything = await alert_service.list_alerts(async_db, domain_id=domain.id)
    open_only = await alert_service.list_alerts(async_db, resolved=False)
    critical = await alert_service.list_alerts(async_db, severity=AlertSeverity.critical)
    page = await alert_service.list_alerts(async_db, limit=1, offset=1)

    assert everything.total == 3
    assert [a.severity for a in everything.items] == [AlertSeverity.low, AlertSeverity.critical, AlertSeverity.high]
    assert open_only.total == 2
    assert critical.total == 1
    assert page.total == 3
    assert len(page.items) == 1
    assert page.items[0].severity == AlertSeverity.critical


@pytest.mark.asyncio
async def test_resolve_alert(async_db):
    domain = await monitored_domain(async_db)
    alert = await add_alert(async_db, domain.id)

    resolved = await alert_service.resolve_alert(async_db, alert.id, "ops@example.com")

    assert resolved.resolved is True
    assert resolved.resolved_by == "ops@example.com"
    with pytest.raises(InvalidStateError):
        await alert_service.resolve_alert(async_db, alert.id, "ops@example.com")
    with pytest.raises(NotFoundError):
        await alert_service.resolve_alert(async_db, "missing", "ops@example.com")


@pytest.mark.asyncio
async def test_alert_summary(async_db):
    domain = await monitored_domain(async_db)
    for minute, severity in enumerate([AlertSeverity.high, AlertSeverity.high, AlertSeverity.critical]):
        await add_alert(async_db, domain.id, severity, minutes=minute)
    await add_alert(async_db, domain.id, AlertSeverity.low, resolved=True, minutes=10)

    summary = await alert_service.get_alert_summary(async_db, domain.id)

    assert summary.total == 4
    assert summary.unresolved == 3
    assert summary.by_severity == {"low": 0, "moderate": 0, "high": 2, "critical": 1}
    assert summary.latest[0].severity == AlertSeverity.low
    assert len(summary.latest) == 4


# ── Alert rules ─────────────────────────────────

@pytest.mark.asyncio
async def test_create_rule_fills_defaults(async_db):
    rule = await alert_rules.create_rule(async_db, AlertRuleCreate(name="Defaults"))

    assert rule.domain_id is None
    assert rule.score_drop_threshold == 5.0
    assert rule.new_violations_threshold == 1
    assert rule.compliance_threshold == 70.0
    assert rule.cooldown_minutes == 60
    assert rule.severity_levels == ["low", "moderate", "high", "critical"]


@pytest.mark.asyncio
async def test_rule_validation(async_db):
    with pytest.raises(NotFoundError):
        await alert_rules.create_rule(async_db, AlertRuleCreate(name="Orphan", domain_id="missing"))
    with pytest.raises(InvalidStateError):
        await alert_rules.create_rule(async_db, AlertRuleCreate(name="Hook", notify_webhook=True))


@pytest.mark.asyncio
async def test_update_rule(async_db):
    rule = await alert_rules.create_rule(async_db, AlertRuleCreate(name="Team", severity_levels=["critical"]))

    updated = await alert_rules.update_rule(async_db, rule.id, AlertRuleUpdate(
        cooldown_minutes=0,
        severity_levels=None,
        description="Only the big ones",
    ))

    assert updated.cooldown_minutes == 0
    assert updated.severity_levels == ["critical"]
    assert updated.description == "Only the big ones"

    with pytest.raises(InvalidStateError):
        await alert_rules.update_rule(async_db, rule.id, AlertRuleUpdate(notify_webhook=True))
    refreshed = await alert_rules.get_rule(async_db, rule.id)
    assert refreshed.notify_webhook is False
    assert refreshed.cooldown_minutes == 0
    assert refreshed.description == "Only the big ones"


@pytest.mark.asyncio
async def test_domain_rule_takes_precedence(async_db):
    domain = await monitored_domain(async_db)
    await alert_rules.create_rule(async_db, AlertRuleCreate(name="Global"))
    own = await alert_rules.create_rule(async_db, AlertRuleCreate(name="Own", domain_id=domain.id, score_drop_threshold=15))

    effective = await async_db.run_sync(lambda sync_db: alert_rules.rule_for_domain(sync_db, domain.id))

    assert effective.id == own.id
    assert len(await alert_rules.list_rules(async_db, domain_id=domain.id)) == 1

    await alert_rules.delete_rule(async_db, own.id)
    fallback = await async_db.run_sync(lambda sync_db: alert_rules.rule_for_domain(sync_db, domain.id))
    assert fallback.name == "Global"
