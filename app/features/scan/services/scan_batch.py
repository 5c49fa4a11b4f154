"""
Scan batch execution (worker side).

ScanBatchRunner owns the database side of a batch: it creates one pending
Scan row per URL in input order, hands the URLs to the ScanOrchestrator and
records every outcome as soon as it arrives. The batch is done once every
page is done or error; partial failure is still done.
"""
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.features.crawl.models.crawl import CrawlUrl
from app.features.scan.models.scan import Scan, ScanBatch, ScanBatchStatus, ScanStatus
from app.features.scan.schemas.results import FailureKind, ScanFailure, ScanOutcome, ScanResult
from app.features.scan.services.orchestrator import ScanOrchestrator
from app.features.scoring.services.compliance import estimate_wcag_compliance
from app.features.scoring.services.scoring_engine import round_public
from app.features.sites.models.site import Site
from app.platform.db.session import get_sync_db
from app.platform.exceptions import NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.cancellation import CancellationToken
from app.platform.utils.time import utcnow

logger = get_logger(__name__)


def rule_deltas(previous: Optional[Dict[str, int]], current: Dict[str, int]):
    """(issues_fixed, new_issues) between two violations_by_rule maps."""
    previous = previous or {}
    fixed = sum(max(0, count - current.get(rule, 0)) for rule, count in previous.items())
    new = sum(max(0, count - previous.get(rule, 0)) for rule, count in current.items())
    return fixed, new


def result_fields(result: ScanResult) -> dict:
    counts = result.impact_counts
    score = round_public(result.score)
    wcag_aa, wcag_aaa = estimate_wcag_compliance(score, counts.critical, counts.serious, result.issues_count)
    return {
        "score": score,
        "base_score": round_public(result.base_score),
        "keyboard_score": round_public(result.keyboard.score),
        "screen_reader_score": round_public(result.screen_reader.score),
        "mobile_score": round_public(result.mobile.score),
        "wcag_aa_compliance": wcag_aa,
        "wcag_aaa_compliance": wcag_aaa,
        "issues_count": result.issues_count,
        "critical_count": counts.critical,
        "serious_count": counts.serious,
        "moderate_count": counts.moderate,
        "minor_count": counts.minor,
        "violations": [violation.model_dump(mode="json") for violation in result.violations],
        "violations_by_rule": result.violations_by_rule(),
        "sub_audits": {
            "keyboard": result.keyboard.model_dump(mode="json"),
            "screen_reader": result.screen_reader.model_dump(mode="json"),
            "mobile": result.mobile.model_dump(mode="json"),
        },
        "engine_name": result.engine_name,
        "engine_version": result.engine_version,
        "attempts": result.attempts,
    }


class ScanRecorder:
    """Writes scan outcomes for one batch. Outcomes arrive from a single thread."""

    def __init__(self, db: Session, batch: ScanBatch):
        self.db = db
        self.batch = batch
        self.scans: List[Scan] = []

    def create_pending(self, urls: List[str], crawl_url_ids: Optional[Dict[str, str]] = None) -> List[Scan]:
        crawl_url_ids = crawl_url_ids or {}
        for sequence, url in enumerate(urls):
            scan = Scan(
                site_id=self.batch.site_id,
                batch_id=self.batch.id,
                crawl_url_id=crawl_url_ids.get(url),
                page_url=url,
                sequence=sequence,
                status=ScanStatus.pending,
                trigger=self.batch.trigger,
            )
            self.db.add(scan)
            self.scans.append(scan)
        self.batch.total_pages = len(urls)
        self.db.commit()
        return self.scans

    def previous_scan(self, scan: Scan) -> Optional[Scan]:
        stmt = (
            select(Scan)
            .where(
                Scan.site_id == scan.site_id,
                Scan.page_url == scan.page_url,
                Scan.status == ScanStatus.done,
                Scan.id != scan.id,
            )
            .order_by(Scan.completed_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def record(self, index: int, outcome: ScanOutcome):
        scan = self.scans[index]
        if isinstance(outcome, ScanResult):
            fields = result_fields(outcome)
            previous = self.previous_scan(scan)
            if previous is not None:
                fixed, new = rule_deltas(previous.violations_by_rule, fields["violations_by_rule"])
                fields.update(
                    previous_scan_id=previous.id,
                    score_change=round_public(fields["score"] - previous.score),
                    issues_fixed=fixed,
                    new_issues=new,
                )
            scan.mark_done(**fields)
            self.batch.pages_done += 1

            site = self.db.get(Site, scan.site_id)
            site.total_scans = (site.total_scans or 0) + 1
            site.last_scanned_at = scan.completed_at
        else:
            scan.mark_error(outcome.reason, attempts=outcome.attempts)
            self.batch.pages_error += 1
        self.db.commit()


class ScanBatchRunner:
    """Runs one ScanBatch to a terminal state. Used from the scan Celery task and assurance scans."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_sync_db,
        orchestrator: Optional[ScanOrchestrator] = None,
        poll_interval: float = 2.0,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator or ScanOrchestrator()
        self.poll_interval = poll_interval

    def _cancel_requested(self, batch_id: str) -> bool:
        db = self.session_factory()
        try:
            batch = db.get(ScanBatch, batch_id)
            return batch is None or batch.cancel_requested_at is not None
        finally:
            db.close()

    def run(self, batch_id: str, token: Optional[CancellationToken] = None) -> dict:
        db = self.session_factory()
        try:
            batch = db.get(ScanBatch, batch_id)
            if batch is None:
                raise NotFoundError(f"Scan batch {batch_id} not found")
            if batch.status in (ScanBatchStatus.done, ScanBatchStatus.error):
                logger.info(f"[{batch_id}] Batch already {batch.status.value}, nothing to do")
                return self._summary(db, batch)

            token = token or CancellationToken(lambda: self._cancel_requested(batch_id), self.poll_interval)
            urls = list(batch.urls or [])

            batch.status = ScanBatchStatus.running
            batch.started_at = utcnow()
            db.commit()

            recorder = ScanRecorder(db, batch)
            recorder.create_pending(urls, self._crawl_url_ids(db, batch))
            outcomes = self.orchestrator.scan_site(batch.site_id, urls, token=token, on_result=recorder.record)

            self._finalize(db, batch, outcomes)
            return self._summary(db, batch)
        except NotFoundError:
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"[{batch_id}] Scan batch crashed: {e}", exc_info=True)
            batch = db.get(ScanBatch, batch_id)
            if batch is not None and batch.status not in (ScanBatchStatus.done, ScanBatchStatus.error):
                batch.status = ScanBatchStatus.error
                batch.error_message = str(e)[:1000]
                batch.finished_at = utcnow()
                db.commit()
            raise
        finally:
            db.close()

    def _crawl_url_ids(self, db: Session, batch: ScanBatch) -> Dict[str, str]:
        if not batch.crawl_id:
            return {}
        rows = db.execute(select(CrawlUrl.url, CrawlUrl.id).where(CrawlUrl.crawl_id == batch.crawl_id)).all()
        return {url: row_id for url, row_id in rows}

    def _finalize(self, db: Session, batch: ScanBatch, outcomes: List[ScanOutcome]):
        fatal = next(
            (o for o in outcomes if isinstance(o, ScanFailure) and o.kind == FailureKind.batch),
            None,
        )
        if fatal is not None:
            batch.status = ScanBatchStatus.error
            batch.error_message = fatal.reason
            logger.error(f"[{batch.id}] Scan batch failed: {fatal.reason}")
        else:
            batch.status = ScanBatchStatus.done
            logger.info(f"[{batch.id}] Scan batch done: {batch.pages_done} done, {batch.pages_error} error")
        batch.finished_at = utcnow()
        db.commit()

    def _summary(self, db: Session, batch: ScanBatch) -> dict:
        scans = db.execute(
            select(Scan).where(Scan.batch_id == batch.id).order_by(Scan.sequence)
        ).scalars().all()
        return {
            "batch_id": batch.id,
            "site_id": batch.site_id,
            "status": batch.status.value,
            "total_pages": batch.total_pages,
            "pages_done": batch.pages_done,
            "pages_error": batch.pages_error,
            "scan_ids": [scan.id for scan in scans],
            "error_message": batch.error_message,
        }
