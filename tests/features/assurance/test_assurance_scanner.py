from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from app.features.assurance.models.assurance import (
    AlertType,
    AssuranceAlert,
    AssuranceDomain,
    AssuranceScan,
    AssuranceScanStatus,
    AssuranceScanTrigger,
)
from app.features.assurance.services.alert_engine import AlertEngine
from app.features.assurance.services.assurance_scanner import AssuranceScanner
from app.features.scan.models.scan import Scan, ScanBatch, ScanBatchStatus, ScanStatus
from app.platform.exceptions import AssuranceError, InvalidStateError, NotFoundError
from app.platform.utils.time import utcnow
from tests.factories import create_domain, create_site


class FakeBatchRunner:
    """Completes each batch with one scan row carrying the next queued score."""

    def __init__(self, session_factory, scores=(), failing_sites=()):
        self.session_factory = session_factory
        self.scores = list(scores)
        self.failing_sites = set(failing_sites)
        self.batches = []

    def run(self, batch_id):
        db = self.session_factory()
        try:
            batch = db.get(ScanBatch, batch_id)
            self.batches.append(batch_id)
            scan = Scan(
                site_id=batch.site_id,
                batch_id=batch.id,
                page_url=batch.urls[0],
                sequence=0,
                trigger=batch.trigger,
            )
            db.add(scan)
            if batch.site_id in self.failing_sites:
                scan.mark_error("Navigation timed out", attempts=3)
                batch.pages_error = 1
            else:
                score = self.scores.pop(0) if self.scores else 90.0
                scan.mark_done(
                    score=score,
                    wcag_aa_compliance=score,
                    wcag_aaa_compliance=score * 0.85,
                    issues_count=0,
                    critical_count=0,
                    serious_count=0,
                    moderate_count=0,
                    minor_count=0,
                )
                batch.pages_done = 1
            batch.status = ScanBatchStatus.done
            db.commit()
            return {"batch_id": batch.id, "status": "done", "error_message": None}
        finally:
            db.close()


def make_scanner(session_factory, **runner_kwargs):
    dispatcher = MagicMock()
    runner = FakeBatchRunner(session_factory, **runner_kwargs)
    scanner = AssuranceScanner(
        session_factory=session_factory,
        batch_runner=runner,
        dispatcher_factory=lambda db: dispatcher,
    )
    return scanner, runner, dispatcher


def test_first_scan_establishes_baseline(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session))
    scanner, runner, dispatcher = make_scanner(session_factory, scores=[90.0])

    result = scanner.execute_assurance_scan(domain.id)

    assert result["status"] == "completed"
    assert result["score"] == 90.0
    assert result["score_change"] == 0.0
    assert result["is_regression"] is False
    assert result["alert_id"] is None
    dispatcher.dispatch.assert_not_called()

    db_session.expire_all()
    refreshed = db_session.get(AssuranceDomain, domain.id)
    assert refreshed.last_score == 90.0
    assert refreshed.last_run_at is not None
    assert refreshed.next_run_at > refreshed.last_run_at
    assert refreshed.next_run_at.weekday() == 0

    batch = db_session.get(ScanBatch, runner.batches[0])
    assert batch.urls == ["https://example.com/"]
    assert batch.trigger.value == "scheduled"


def test_score_drop_creates_alert_and_notifies(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session))
    scanner, _, dispatcher = make_scanner(session_factory, scores=[90.0, 65.0])

    scanner.execute_assurance_scan(domain.id)
    result = scanner.execute_assurance_scan(domain.id, AssuranceScanTrigger.manual)

    assert result["is_regression"] is True
    assert result["regression_type"] == "score_drop"
    assert result["score_change"] == -25.0
    assert result["alert_id"] is not None
    dispatcher.dispatch.assert_called_once()

    db_session.expire_all()
    alert = db_session.get(AssuranceAlert, result["alert_id"])
    assert alert.type == AlertType.score_drop
    assert alert.previous_score == 90.0
    current = db_session.get(AssuranceScan, result["assurance_scan_id"])
    assert current.previous_scan_id is not None
    assert current.triggered_by == AssuranceScanTrigger.manual


def test_repeat_regression_inside_cooldown_is_not_realerted(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session))
    scanner, _, dispatcher = make_scanner(session_factory, scores=[90.0, 80.0, 72.0])

    scanner.execute_assurance_scan(domain.id)
    second = scanner.execute_assurance_scan(domain.id)
    third = scanner.execute_assurance_scan(domain.id)

    assert second["alert_id"] is not None
    assert third["is_regression"] is True
    assert third["alert_id"] is None
    assert dispatcher.dispatch.call_count == 1


def test_failed_scan_is_recorded_and_schedule_advances(session_factory, db_session):
    site = create_site(db_session)
    domain = create_domain(db_session, site)
    scanner, _, dispatcher = make_scanner(session_factory, failing_sites=[site.id])

    with pytest.raises(AssuranceError) as excinfo:
        scanner.execute_assurance_scan(domain.id)

    assert "Navigation timed out" in excinfo.value.message
    db_session.expire_all()
    scans = db_session.execute(select(AssuranceScan).where(AssuranceScan.domain_id == domain.id)).scalars().all()
    assert [scan.status for scan in scans] == [AssuranceScanStatus.failed]
    assert "Navigation timed out" in scans[0].error_message

    refreshed = db_session.get(AssuranceDomain, domain.id)
    assert refreshed.next_run_at is not None
    assert refreshed.last_score is None
    dispatcher.dispatch.assert_not_called()


def test_failed_run_does_not_become_baseline(session_factory, db_session):
    site = create_site(db_session)
    domain = create_domain(db_session, site)
    scanner, runner, _ = make_scanner(session_factory, scores=[90.0, 89.0])

    scanner.execute_assurance_scan(domain.id)
    runner.failing_sites.add(site.id)
    with pytest.raises(AssuranceError):
        scanner.execute_assurance_scan(domain.id)
    runner.failing_sites.clear()
    result = scanner.execute_assurance_scan(domain.id)

    assert result["score_change"] == -1.0
    assert result["is_regression"] is False


def test_unknown_and_inactive_domains(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session), active=False)
    scanner, runner, _ = make_scanner(session_factory)

    with pytest.raises(NotFoundError):
        scanner.execute_assurance_scan("missing")
    with pytest.raises(InvalidStateError):
        scanner.execute_assurance_scan(domain.id)
    assert runner.batches == []


def test_due_sweep_counts_successes_and_failures(session_factory, db_session):
    past = utcnow() - timedelta(hours=1)
    healthy = create_domain(db_session, create_site(db_session, "https://good.example"), next_run_at=past)
    broken_site = create_site(db_session, "https://broken.example")
    broken = create_domain(db_session, broken_site, next_run_at=past - timedelta(minutes=5))
    create_domain(db_session, create_site(db_session, "https://later.example"), next_run_at=utcnow() + timedelta(days=1))
    create_domain(db_session, create_site(db_session, "https://off.example"), next_run_at=past, active=False)
    scanner, runner, _ = make_scanner(session_factory, failing_sites=[broken_site.id])

    results = scanner.execute_due_scans()

    assert results["total"] == 2
    assert results["successful"] == 1
    assert results["failed"] == 1
    assert results["errors"][0]["domain_id"] == broken.id
    assert results["errors"][0]["domain"] == "https://broken.example"
    assert len(runner.batches) == 2

    db_session.expire_all()
    assert db_session.get(AssuranceDomain, healthy.id).next_run_at > utcnow()
    assert db_session.get(AssuranceDomain, broken.id).next_run_at > utcnow()


def test_due_sweep_respects_limit(session_factory, db_session):
    past = utcnow() - timedelta(hours=1)
    for host in ("a", "b", "c"):
        create_domain(db_session, create_site(db_session, f"https://{host}.example"), next_run_at=past)
    scanner, runner, _ = make_scanner(session_factory)

    assert scanner.execute_due_scans(limit=2)["total"] == 2
    assert len(runner.batches) == 2


class LockedAlertEngine(AlertEngine):
    def create_alert(self, regression, domain, assurance_scan=None, rule=None):
        raise InvalidStateError(f"Alert lock busy for {domain.id}/{regression.type.value}")


def history(db, domain_id):
    db.expire_all()
    scans = db.execute(
        select(AssuranceScan).where(AssuranceScan.domain_id == domain_id).order_by(AssuranceScan.created_at)
    ).scalars().all()
    return [(scan.status, scan.score, scan.is_regression) for scan in scans]


def test_alert_failure_leaves_one_failed_row_and_keeps_the_baseline(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session))
    runner = FakeBatchRunner(session_factory, scores=[90.0, 60.0, 60.0])
    dispatcher = MagicMock()
    locked = AssuranceScanner(
        session_factory=session_factory,
        batch_runner=runner,
        dispatcher_factory=lambda db: dispatcher,
        alert_engine_factory=LockedAlertEngine,
    )

    locked.execute_assurance_scan(domain.id)
    with pytest.raises(InvalidStateError):
        locked.execute_assurance_scan(domain.id)

    assert history(db_session, domain.id) == [
        (AssuranceScanStatus.completed, 90.0, False),
        (AssuranceScanStatus.failed, None, False),
    ]
    assert db_session.execute(select(AssuranceAlert)).scalars().all() == []

    healthy = AssuranceScanner(
        session_factory=session_factory,
        batch_runner=runner,
        dispatcher_factory=lambda db: dispatcher,
    )
    result = healthy.execute_assurance_scan(domain.id)

    assert result["score_change"] == -30.0
    assert result["alert_id"] is not None
    db_session.expire_all()
    alert = db_session.get(AssuranceAlert, result["alert_id"])
    assert alert.previous_score == 90.0
    assert alert.assurance_scan_id == result["assurance_scan_id"]


def test_notification_error_keeps_the_completed_scan_and_alert(session_factory, db_session):
    domain = create_domain(db_session, create_site(db_session))
    scanner, _, dispatcher = make_scanner(session_factory, scores=[90.0, 60.0])
    dispatcher.dispatch.side_effect = RuntimeError("mail relay down")

    scanner.execute_assurance_scan(domain.id)
    result = scanner.execute_assurance_scan(domain.id)

    assert result["status"] == "completed"
    assert result["alert_id"] is not None
    assert history(db_session, domain.id) == [
        (AssuranceScanStatus.completed, 90.0, False),
        (AssuranceScanStatus.completed, 60.0, True),
    ]
    assert db_session.get(AssuranceAlert, result["alert_id"]) is not None
