import pytest
from sqlalchemy import select

from app.features.scan.models.scan import Scan, ScanBatch, ScanBatchStatus, ScanStatus
from app.features.scan.schemas.results import FailureKind, ScanFailure
from app.features.scan.services.scan_batch import ScanBatchRunner, result_fields, rule_deltas
from app.features.sites.models.site import Site
from app.platform.exceptions import NotFoundError
from tests.factories import create_site, make_result, make_violations

URLS = ["https://example.com/", "https://example.com/pricing"]


class FakeOrchestrator:
    """Replays prepared outcomes, reporting each one like the real orchestrator."""

    def __init__(self, outcomes_by_url):
        self.outcomes_by_url = outcomes_by_url
        self.calls = []

    def scan_site(self, site_id, urls, token=None, on_result=None):
        self.calls.append((site_id, list(urls)))
        outcomes = []
        for index, url in enumerate(urls):
            outcome = self.outcomes_by_url[url]
            if on_result is not None:
                on_result(index, outcome)
            outcomes.append(outcome)
        return outcomes


def queue_batch(db, site, urls):
    batch = ScanBatch(site_id=site.id, urls=urls, total_pages=len(urls))
    db.add(batch)
    db.commit()
    return batch.id


def scans_for(db, batch_id):
    return db.execute(select(Scan).where(Scan.batch_id == batch_id).order_by(Scan.sequence)).scalars().all()


def test_rule_deltas():
    assert rule_deltas(None, {"image-alt": 2}) == (0, 2)
    assert rule_deltas({"image-alt": 3, "label": 1}, {"image-alt": 1, "region": 1}) == (3, 1)
    assert rule_deltas({"image-alt": 1}, {"image-alt": 1}) == (0, 0)


def test_result_fields_round_and_estimate_compliance():
    result = make_result("https://example.com/", score=84.25, violations=make_violations({"critical": 1, "serious": 1}))

    fields = result_fields(result)

    assert fields["score"] == 84.3
    assert fields["critical_count"] == 1
    assert fields["serious_count"] == 1
    assert fields["issues_count"] == 2
    # AA: 84.3 - 3 - 2, AAA: (84.3 - 3) * 0.85
    assert fields["wcag_aa_compliance"] == 79.0
    assert fields["wcag_aaa_compliance"] == 69.0
    assert fields["violations_by_rule"] == {"critical-rule-0": 1, "serious-rule-0": 1}
    assert set(fields["sub_audits"]) == {"keyboard", "screen_reader", "mobile"}


def test_first_batch_records_every_page_in_order(session_factory, db_session):
    site = create_site(db_session)
    batch_id = queue_batch(db_session, site, URLS)
    orchestrator = FakeOrchestrator({
        URLS[0]: make_result(URLS[0], score=92.0),
        URLS[1]: make_result(URLS[1], score=75.0, violations=make_violations({"serious": 2})),
    })

    summary = ScanBatchRunner(session_factory, orchestrator=orchestrator).run(batch_id)

    assert summary["status"] == "done"
    assert summary["pages_done"] == 2
    assert summary["pages_error"] == 0
    assert orchestrator.calls == [(site.id, URLS)]

    db_session.expire_all()
    scans = scans_for(db_session, batch_id)
    assert [scan.page_url for scan in scans] == URLS
    assert [scan.status for scan in scans] == [ScanStatus.done, ScanStatus.done]
    assert scans[1].score == 75.0
    assert scans[1].serious_count == 2
    assert all(scan.previous_scan_id is None for scan in scans)
    assert summary["scan_ids"] == [scan.id for scan in scans]

    refreshed = db_session.get(Site, site.id)
    assert refreshed.total_scans == 2
    assert refreshed.last_scanned_at is not None


def test_second_batch_links_previous_scan(session_factory, db_session):
    site = create_site(db_session)
    url = URLS[0]
    first = FakeOrchestrator({url: make_result(url, score=80.0, violations=make_violations({"critical": 1}))})
    ScanBatchRunner(session_factory, orchestrator=first).run(queue_batch(db_session, site, [url]))

    second = FakeOrchestrator({url: make_result(url, score=90.0, violations=make_violations({"minor": 1}))})
    batch_id = queue_batch(db_session, site, [url])
    ScanBatchRunner(session_factory, orchestrator=second).run(batch_id)

    db_session.expire_all()
    latest = scans_for(db_session, batch_id)[0]
    assert latest.previous_scan_id is not None
    assert latest.score_change == 10.0
    assert latest.issues_fixed == 1
    assert latest.new_issues == 1


def test_partial_failure_still_completes_batch(session_factory, db_session):
    site = create_site(db_session)
    batch_id = queue_batch(db_session, site, URLS)
    orchestrator = FakeOrchestrator({
        URLS[0]: make_result(URLS[0]),
        URLS[1]: ScanFailure(url=URLS[1], reason="axe.run failed", kind=FailureKind.page),
    })

    summary = ScanBatchRunner(session_factory, orchestrator=orchestrator).run(batch_id)

    assert summary["status"] == "done"
    assert summary["pages_done"] == 1
    assert summary["pages_error"] == 1

    db_session.expire_all()
    failed = scans_for(db_session, batch_id)[1]
    assert failed.status == ScanStatus.error
    assert failed.error_reason == "axe.run failed"
    assert failed.score is None


def test_batch_fatal_failure_marks_batch_error(session_factory, db_session):
    site = create_site(db_session)
    batch_id = queue_batch(db_session, site, URLS)
    orchestrator = FakeOrchestrator({
        url: ScanFailure(url=url, reason="No browser session available", kind=FailureKind.batch)
        for url in URLS
    })

    summary = ScanBatchRunner(session_factory, orchestrator=orchestrator).run(batch_id)

    assert summary["status"] == "error"
    assert summary["error_message"] == "No browser session available"
    db_session.expire_all()
    batch = db_session.get(ScanBatch, batch_id)
    assert batch.status == ScanBatchStatus.error
    assert batch.finished_at is not None


def test_finished_batch_is_not_rerun(session_factory, db_session):
    site = create_site(db_session)
    batch_id = queue_batch(db_session, site, URLS)
    batch = db_session.get(ScanBatch, batch_id)
    batch.status = ScanBatchStatus.done
    db_session.commit()
    orchestrator = FakeOrchestrator({})

    summary = ScanBatchRunner(session_factory, orchestrator=orchestrator).run(batch_id)

    assert summary["status"] == "done"
    assert orchestrator.calls == []


def test_unknown_batch(session_factory):
    with pytest.raises(NotFoundError):
        ScanBatchRunner(session_factory, orchestrator=FakeOrchestrator({})).run("missing")


def test_orchestrator_crash_marks_batch_error(session_factory, db_session):
    site = create_site(db_session)
    batch_id = queue_batch(db_session, site, URLS)

    class CrashingOrchestrator:
        def scan_site(self, *args, **kwargs):
            raise RuntimeError("worker lost")

    with pytest.raises(RuntimeError):
        ScanBatchRunner(session_factory, orchestrator=CrashingOrchestrator()).run(batch_id)

    db_session.expire_all()
    batch = db_session.get(ScanBatch, batch_id)
    assert batch.status == ScanBatchStatus.error
    assert batch.error_message == "worker lost"
