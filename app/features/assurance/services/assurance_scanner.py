"""
Assurance scan execution (worker side).

One assurance scan = one scan batch over the domain's origin, an appended
AssuranceScan row, regression detection against the domain's baseline and,
when something regressed, an alert plus its notifications. The domain's next
run is advanced whether the scan succeeded or not, so a broken domain never
blocks the sweep.
"""
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.features.assurance.models.assurance import (
    AssuranceDomain,
    AssuranceScan,
    AssuranceScanStatus,
    AssuranceScanTrigger,
)
from app.features.assurance.services.alert_engine import AlertEngine
from app.features.assurance.services.alert_rules import rule_for_domain
from app.features.assurance.services.notifications import NotificationDispatcher
from app.features.assurance.services.regression import (
    RegressionDetector,
    RegressionThresholds,
    detect_regression,
)
from app.features.assurance.services.schedule import calculate_next_run
from app.features.crawl.services.frontier import normalize_url
from app.features.scan.models.scan import Scan, ScanBatch, ScanBatchStatus, ScanStatus, ScanTrigger
from app.features.scan.services.scan_batch import ScanBatchRunner
from app.features.scoring.services.scoring_engine import round_public
from app.platform.config import settings
from app.platform.db.session import get_sync_db
from app.platform.exceptions import AssuranceError, InvalidStateError, NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

SCAN_TRIGGERS = {
    AssuranceScanTrigger.scheduled: ScanTrigger.scheduled,
    AssuranceScanTrigger.manual: ScanTrigger.manual,
}


class AssuranceScanner:
    def __init__(
        self,
        session_factory: Callable[[], Session] = get_sync_db,
        batch_runner: Optional[ScanBatchRunner] = None,
        dispatcher_factory: Callable[[Session], NotificationDispatcher] = NotificationDispatcher,
        alert_engine_factory: Callable[[Session], AlertEngine] = AlertEngine,
    ):
        self.session_factory = session_factory
        self.batch_runner = batch_runner or ScanBatchRunner(session_factory)
        self.dispatcher_factory = dispatcher_factory
        self.alert_engine_factory = alert_engine_factory

    def execute_assurance_scan(
        self,
        domain_id: str,
        trigger: AssuranceScanTrigger = AssuranceScanTrigger.scheduled,
    ) -> dict:
        db = self.session_factory()
        try:
            domain = db.get(AssuranceDomain, domain_id)
            if domain is None:
                raise NotFoundError(f"Assurance domain {domain_id} not found")
            if not domain.active:
                raise InvalidStateError(f"Assurance domain {domain_id} is inactive")

            logger.info(f"[{domain_id}] Assurance scan started for {domain.domain} ({trigger.value})")
            try:
                return self._run(db, domain, trigger)
            except Exception as e:
                db.rollback()
                logger.error(f"[{domain_id}] Assurance scan failed: {e}", exc_info=True)
                self._record_failure(db, domain_id, trigger, str(e))
                raise
            finally:
                self._advance_schedule(db, domain_id)
        finally:
            db.close()

    def _scan_page(self, db: Session, domain: AssuranceDomain, trigger: AssuranceScanTrigger) -> Scan:
        if not domain.site_id:
            raise InvalidStateError(f"Assurance domain {domain.id} has no site")

        url = normalize_url(domain.domain)
        if url is None:
            raise InvalidStateError(f"Assurance domain {domain.id} has an invalid URL: {domain.domain}")

        batch = ScanBatch(
            site_id=domain.site_id,
            status=ScanBatchStatus.queued,
            trigger=SCAN_TRIGGERS[trigger],
            urls=[url],
            total_pages=1,
        )
        db.add(batch)
        db.commit()
        batch_id = batch.id

        summary = self.batch_runner.run(batch_id)
        db.expire_all()

        scan = db.execute(
            select(Scan).where(Scan.batch_id == batch_id).order_by(Scan.sequence).limit(1)
        ).scalars().first()
        if summary["status"] != ScanBatchStatus.done.value or scan is None or scan.status != ScanStatus.done:
            reason = (scan.error_reason if scan is not None else None) or summary.get("error_message") or "scan failed"
            raise AssuranceError(f"Scan of {url} failed: {reason}")
        return scan

    def _run(self, db: Session, domain: AssuranceDomain, trigger: AssuranceScanTrigger) -> dict:
        scan = self._scan_page(db, domain, trigger)
        domain = db.get(AssuranceDomain, domain.id)

        current = AssuranceScan(
            domain_id=domain.id,
            scan_id=scan.id,
            status=AssuranceScanStatus.completed,
            triggered_by=trigger,
            score=scan.score,
            wcag_aa_compliance=scan.wcag_aa_compliance,
            wcag_aaa_compliance=scan.wcag_aaa_compliance,
            issues_count=scan.issues_count or 0,
            critical_count=scan.critical_count or 0,
            serious_count=scan.serious_count or 0,
            created_at=utcnow(),
        )
        db.add(current)
        db.flush()

        rule = rule_for_domain(db, domain.id)
        baseline = RegressionDetector(db).baseline_for(domain.id, current)
        regression = detect_regression(current, baseline, RegressionThresholds.from_rule(rule))

        current.previous_scan_id = baseline.id if baseline is not None else None
        current.score_change = round_public(current.score - baseline.score) if baseline is not None else 0.0
        current.is_regression = regression.detected
        domain.last_score = current.score

        alert = None
        engine = self.alert_engine_factory(db)
        if regression.detected:
            logger.info(f"[{domain.id}] Regression {regression.type.value} ({regression.severity.value}): {regression.message}")
            # commits the scan row together with the alert
            alert = engine.create_alert(regression, domain, current, rule)
        if alert is None:
            db.commit()

        if alert is not None:
            self._notify(db, alert, domain, rule)
        elif not regression.detected:
            self._auto_resolve(db, engine, domain, current, regression)

        logger.info(
            f"[{domain.id}] Assurance scan {current.id} completed: score={current.score} "
            f"change={current.score_change} regression={current.is_regression}"
        )
        return {
            "assurance_scan_id": current.id,
            "domain_id": domain.id,
            "scan_id": scan.id,
            "status": current.status.value,
            "score": current.score,
            "score_change": current.score_change,
            "is_regression": current.is_regression,
            "regression_type": regression.type.value if regression.type else None,
            "alert_id": alert.id if alert is not None else None,
        }

    def _notify(self, db: Session, alert, domain: AssuranceDomain, rule):
        try:
            self.dispatcher_factory(db).dispatch(alert, domain, rule)
        except Exception as e:
            db.rollback()
            logger.error(f"[{domain.id}] Notification for alert {alert.id} failed: {e}", exc_info=True)

    def _auto_resolve(self, db: Session, engine: AlertEngine, domain: AssuranceDomain, current: AssuranceScan, regression):
        try:
            engine.auto_resolve(domain, current, regression)
        except Exception as e:
            db.rollback()
            logger.error(f"[{domain.id}] Auto-resolution after scan {current.id} failed: {e}", exc_info=True)

    def _record_failure(self, db: Session, domain_id: str, trigger: AssuranceScanTrigger, message: str):
        db.add(AssuranceScan(
            domain_id=domain_id,
            status=AssuranceScanStatus.failed,
            triggered_by=trigger,
            error_message=message[:1000],
            created_at=utcnow(),
        ))
        db.commit()

    def _advance_schedule(self, db: Session, domain_id: str):
        domain = db.get(AssuranceDomain, domain_id)
        if domain is None:
            return
        now = utcnow()
        domain.last_run_at = now
        domain.next_run_at = calculate_next_run(domain.frequency, domain.day_of_week, domain.time_of_day, now)
        db.commit()
        logger.info(f"[{domain_id}] Next assurance scan scheduled for {domain.next_run_at.isoformat()}")

    def execute_due_scans(self, limit: Optional[int] = None) -> dict:
        """Run every due domain sequentially. One failing domain never stops the sweep."""
        limit = limit or settings.ASSURANCE_DUE_SCAN_LIMIT
        db = self.session_factory()
        try:
            due = db.execute(
                select(AssuranceDomain.id, AssuranceDomain.domain)
                .where(AssuranceDomain.active.is_(True), AssuranceDomain.next_run_at <= utcnow())
                .order_by(AssuranceDomain.next_run_at.asc())
                .limit(limit)
            ).all()
        finally:
            db.close()

        logger.info(f"Found {len(due)} assurance domains due for scanning")
        results = {"total": len(due), "successful": 0, "failed": 0, "errors": []}

        for domain_id, domain_url in due:
            try:
                self.execute_assurance_scan(domain_id, AssuranceScanTrigger.scheduled)
                results["successful"] += 1
            except Exception as e:
                results["failed"] += 1
                results["errors"].append({"domain_id": domain_id, "domain": domain_url, "error": str(e)})

        logger.info(
            f"Assurance sweep complete: {results['successful']} successful, {results['failed']} failed"
        )
        return results
