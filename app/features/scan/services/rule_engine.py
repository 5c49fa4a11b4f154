"""
axe-core rule engine.

The axe script is injected into the loaded page and run asynchronously. Raw
violation payloads are parsed here into typed Violations; nothing past this
module sees an impact string.
"""
import os
import threading
from typing import Any, Dict, List, Optional, Tuple

from selenium.common.exceptions import JavascriptException, TimeoutException

from app.features.scan.schemas.results import Impact, Violation
from app.platform.config import settings
from app.platform.exceptions import BatchFatalError, PageScanError, TransientScanError
from app.platform.logger import get_logger

logger = get_logger(__name__)

RUN_AXE_JS = """
const cb = arguments[arguments.length - 1];
if (!window.axe) { return cb({error: 'axe not injected'}); }
axe.run(document, {resultTypes: ['violations']})
  .then(r => cb({ok: true, version: (r.testEngine && r.testEngine.version) || axe.version, violations: r.violations}))
  .catch(e => cb({error: (e && e.message) || String(e)}));
"""


def _flatten_target(target: Any) -> str:
    # axe targets are a list of selectors, nested one level for iframes/shadow DOM
    if isinstance(target, list):
        return " >>> ".join(_flatten_target(part) for part in target)
    return str(target)


def parse_violations(raw: List[Dict[str, Any]]) -> List[Violation]:
    """Convert raw axe violations into Violations. Unknown impacts are rejected."""
    violations = []
    for item in raw or []:
        impact_value = item.get("impact")
        try:
            impact = Impact(impact_value)
        except ValueError:
            raise PageScanError(f"Unknown impact '{impact_value}' for rule {item.get('id')}")

        selectors = [_flatten_target(node.get("target", [])) for node in item.get("nodes", [])]
        violations.append(Violation(
            rule_id=item.get("id", "unknown"),
            impact=impact,
            description=item.get("description", ""),
            help=item.get("help", ""),
            help_url=item.get("helpUrl"),
            tags=list(item.get("tags", [])),
            selectors=selectors,
        ))
    return violations


class AxeRuleEngine:
    name = "axe-core"

    def __init__(self, script_path: Optional[str] = None, script_source: Optional[str] = None):
        self.script_path = script_path or settings.AXE_SCRIPT_PATH
        self._source = script_source
        self._lock = threading.Lock()

    @property
    def source(self) -> str:
        with self._lock:
            if self._source is None:
                if not os.path.exists(self.script_path):
                    raise BatchFatalError(f"axe-core script not found at {self.script_path}")
                with open(self.script_path, "r", encoding="utf-8") as f:
                    self._source = f.read()
            return self._source

    def inject(self, driver):
        driver.execute_script(self.source)
        if not driver.execute_script("return !!window.axe;"):
            raise PageScanError("axe-core was injected but window.axe is not defined")

    def run(self, driver) -> Tuple[List[Violation], Optional[str]]:
        """Run axe on the page currently loaded in driver. Returns (violations, engine version)."""
        self.inject(driver)
        try:
            payload = driver.execute_async_script(RUN_AXE_JS)
        except TimeoutException as e:
            raise TransientScanError(f"axe-core did not finish: {e.msg or e}") from e
        except JavascriptException as e:
            raise PageScanError(f"axe-core script error: {e.msg or e}") from e

        if not isinstance(payload, dict):
            raise PageScanError("axe-core returned an unreadable result")
        if payload.get("error"):
            raise PageScanError(f"axe.run failed: {payload['error']}")

        violations = parse_violations(payload.get("violations", []))
        logger.debug(f"axe-core {payload.get('version')} reported {len(violations)} violations")
        return violations, payload.get("version")
