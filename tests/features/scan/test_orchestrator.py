import threading
import time
from unittest.mock import MagicMock

import pytest

from app.features.scan.schemas.results import FailureKind, ScanFailure, ScanResult
from app.features.scan.services.orchestrator import CANCELLED_REASON, ScanOrchestrator, SiteLocks
from app.platform.exceptions import BatchFatalError
from app.platform.utils.cancellation import CancellationToken
from tests.factories import make_result


class ScriptedRunner:
    """Returns queued outcomes per URL; a clean result once a URL's script runs out."""

    def __init__(self, script=None):
        self.script = {url: list(outcomes) for url, outcomes in (script or {}).items()}
        self.calls = []

    def run_scan(self, url, attempt=1):
        self.calls.append((url, attempt))
        queued = self.script.get(url)
        if queued:
            outcome = queued.pop(0)
            return outcome.model_copy(update={"attempts": attempt})
        return make_result(url).model_copy(update={"attempts": attempt})


def failure(url, kind, reason="failed"):
    return ScanFailure(url=url, reason=reason, kind=kind)


def make_orchestrator(runner, max_retries=2, backoff=1.0):
    sleeps = []
    orchestrator = ScanOrchestrator(
        runner=runner,
        site_locks=SiteLocks(redis_client=None, timeout=5),
        max_retries=max_retries,
        backoff=backoff,
        sleep=sleeps.append,
    )
    return orchestrator, sleeps


URLS = ["https://example.com/", "https://example.com/a", "https://example.com/b"]


def test_outcomes_follow_input_order_and_callbacks_fire():
    orchestrator, _ = make_orchestrator(ScriptedRunner())
    seen = []

    outcomes = orchestrator.scan_site("site-1", URLS, on_result=lambda i, o: seen.append((i, o.url)))

    assert [o.url for o in outcomes] == URLS
    assert all(isinstance(o, ScanResult) for o in outcomes)
    assert seen == [(0, URLS[0]), (1, URLS[1]), (2, URLS[2])]


def test_transient_failures_are_retried_with_backoff():
    runner = ScriptedRunner({URLS[1]: [failure(URLS[1], FailureKind.transient)] * 2})
    orchestrator, sleeps = make_orchestrator(runner)

    outcomes = orchestrator.scan_site("site-1", URLS)

    assert outcomes[1].ok
    assert outcomes[1].attempts == 3
    assert sleeps == [1.0, 2.0]


def test_transient_failure_gives_up_after_max_retries():
    runner = ScriptedRunner({URLS[0]: [failure(URLS[0], FailureKind.transient)] * 5})
    orchestrator, sleeps = make_orchestrator(runner, max_retries=2)

    outcome = orchestrator.scan_page(URLS[0])

    assert outcome.kind == FailureKind.transient
    assert outcome.attempts == 3
    assert len(sleeps) == 2


def test_page_failures_are_not_retried_and_do_not_stop_siblings():
    runner = ScriptedRunner({URLS[0]: [failure(URLS[0], FailureKind.page)]})
    orchestrator, sleeps = make_orchestrator(runner)

    outcomes = orchestrator.scan_site("site-1", URLS)

    assert outcomes[0].kind == FailureKind.page
    assert outcomes[1].ok and outcomes[2].ok
    assert sleeps == []
    assert [call for call in runner.calls if call[0] == URLS[0]] == [(URLS[0], 1)]


def test_batch_fatal_failure_aborts_remaining_pages_without_browser():
    runner = ScriptedRunner({URLS[1]: [failure(URLS[1], FailureKind.batch, "No browser session available")]})
    orchestrator, _ = make_orchestrator(runner)

    outcomes = orchestrator.scan_site("site-1", URLS)

    assert outcomes[0].ok
    assert outcomes[1].kind == FailureKind.batch
    assert outcomes[2].kind == FailureKind.batch
    assert outcomes[2].attempts == 0
    assert "No browser session available" in outcomes[2].reason
    assert URLS[2] not in [url for url, _ in runner.calls]


def test_cancellation_marks_remaining_pages_cancelled():
    token = CancellationToken()
    runner = ScriptedRunner()
    orchestrator, _ = make_orchestrator(runner)

    def cancel_after_first(index, outcome):
        if index == 0:
            token.cancel()

    outcomes = orchestrator.scan_site("site-1", URLS, token=token, on_result=cancel_after_first)

    assert outcomes[0].ok
    assert [o.kind for o in outcomes[1:]] == [FailureKind.cancelled, FailureKind.cancelled]
    assert outcomes[1].reason == CANCELLED_REASON
    assert len(runner.calls) == 1


def test_site_lock_failure_fails_every_page():
    locks = MagicMock()
    locks.hold.side_effect = BatchFatalError("Site busy")
    orchestrator = ScanOrchestrator(runner=ScriptedRunner(), site_locks=locks, max_retries=0, backoff=0)

    outcomes = orchestrator.scan_site("site-1", URLS)

    assert [o.kind for o in outcomes] == [FailureKind.batch] * 3
    assert all(o.reason == "Site busy" for o in outcomes)


def test_one_session_per_site_at_a_time():
    active = {"site-1": 0}
    peak = {"site-1": 0}
    guard = threading.Lock()

    class SlowRunner:
        def run_scan(self, url, attempt=1):
            with guard:
                active["site-1"] += 1
                peak["site-1"] = max(peak["site-1"], active["site-1"])
            time.sleep(0.01)
            with guard:
                active["site-1"] -= 1
            return make_result(url)

    orchestrator, _ = make_orchestrator(SlowRunner())
    threads = [
        threading.Thread(target=orchestrator.scan_site, args=("site-1", URLS))
        for _ in range(3)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert peak["site-1"] == 1


def test_site_lock_times_out():
    locks = SiteLocks(redis_client=None, timeout=0.01)
    with locks.hold("site-1"):
        with pytest.raises(BatchFatalError):
            with locks.hold("site-1"):
                pass
