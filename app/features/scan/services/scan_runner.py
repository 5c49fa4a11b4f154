"""
Single-page scan runner.

run_scan is the boundary between the browser and the rest of the pipeline:
it always returns a ScanResult or a typed ScanFailure, never raises.
"""
import time
from typing import Optional

from selenium.common.exceptions import WebDriverException

from app.features.scan.schemas.results import FailureKind, ScanFailure, ScanOutcome, ScanResult
from app.features.scan.services.browser_pool import BrowserPool
from app.features.scan.services.rule_engine import AxeRuleEngine
from app.features.scan.services.sub_audits import audit_keyboard, audit_mobile, audit_screen_reader
from app.features.scoring.services.scoring_engine import (
    combine_page_score,
    impact_weighted_base,
    tally_impacts,
)
from app.platform.config import settings
from app.platform.exceptions import BatchFatalError, PageScanError, TransientScanError
from app.platform.logger import get_logger

logger = get_logger(__name__)

TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "chrome not reachable",
    "session deleted",
    "disconnected",
    "invalid session id",
    "net::err_name_not_resolved",
    "net::err_connection",
    "net::err_internet_disconnected",
    "net::err_network_changed",
    "crashed",
)


def classify_webdriver_error(error: WebDriverException) -> FailureKind:
    text = f"{type(error).__name__} {error.msg or error}".lower()
    if any(marker in text for marker in TRANSIENT_MARKERS):
        return FailureKind.transient
    return FailureKind.page


def _short(error: Exception) -> str:
    message = getattr(error, "msg", None) or str(error) or type(error).__name__
    return message.strip().splitlines()[0][:500]


class ScanRunner:
    def __init__(
        self,
        pool: BrowserPool,
        rule_engine: Optional[AxeRuleEngine] = None,
        page_timeout: Optional[int] = None,
        script_timeout: Optional[int] = None,
        engine_name: Optional[str] = None,
    ):
        self.pool = pool
        self.rule_engine = rule_engine or AxeRuleEngine()
        self.page_timeout = page_timeout or settings.SCAN_PAGE_TIMEOUT
        self.script_timeout = script_timeout or settings.SCAN_SCRIPT_TIMEOUT
        self.engine_name = engine_name or settings.SCAN_ENGINE_NAME

    def run_scan(self, url: str, attempt: int = 1) -> ScanOutcome:
        started = time.monotonic()
        try:
            with self.pool.checkout() as lease:
                return self._audit(lease.driver, url, attempt, started)
        except TransientScanError as e:
            return self._failure(url, e.message, FailureKind.transient, attempt)
        except PageScanError as e:
            return self._failure(url, e.message, FailureKind.page, attempt)
        except BatchFatalError as e:
            return self._failure(url, e.message, FailureKind.batch, attempt)
        except WebDriverException as e:
            return self._failure(url, _short(e), classify_webdriver_error(e), attempt)
        except Exception as e:
            logger.exception(f"Unexpected error scanning {url}")
            return self._failure(url, _short(e), FailureKind.page, attempt)

    def _audit(self, driver, url: str, attempt: int, started: float) -> ScanResult:
        driver.set_page_load_timeout(self.page_timeout)
        driver.set_script_timeout(self.script_timeout)
        driver.get(url)

        violations, version = self.rule_engine.run(driver)
        keyboard = audit_keyboard(driver)
        screen_reader = audit_screen_reader(driver)
        mobile = audit_mobile(driver)

        counts = tally_impacts(violations)
        base = impact_weighted_base(counts)
        score = combine_page_score(base, keyboard.score, screen_reader.score, mobile.score)

        logger.info(f"Scanned {url}: score={score:.1f} violations={len(violations)} attempt={attempt}")
        return ScanResult(
            url=url,
            score=score,
            base_score=base,
            impact_counts=counts,
            violations=violations,
            keyboard=keyboard,
            screen_reader=screen_reader,
            mobile=mobile,
            engine_name=self.engine_name,
            engine_version=version,
            attempts=attempt,
            duration_seconds=time.monotonic() - started,
        )

    def _failure(self, url: str, reason: str, kind: FailureKind, attempt: int) -> ScanFailure:
        logger.warning(f"Scan of {url} failed ({kind.value}, attempt {attempt}): {reason}")
        return ScanFailure(url=url, reason=reason, kind=kind, attempts=attempt)
