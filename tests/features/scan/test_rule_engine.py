from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import JavascriptException, TimeoutException

from app.features.scan.schemas.results import Impact
from app.features.scan.services.rule_engine import AxeRuleEngine, parse_violations
from app.platform.exceptions import BatchFatalError, PageScanError, TransientScanError

RAW_VIOLATIONS = [
    {
        "id": "image-alt",
        "impact": "critical",
        "description": "Ensures <img> elements have alternate text",
        "help": "Images must have alternate text",
        "helpUrl": "https://dequeuniversity.com/rules/axe/4.9/image-alt",
        "tags": ["wcag2a", "wcag111"],
        "nodes": [{"target": ["img.hero"]}, {"target": [["iframe#ads", "img"]]}],
    },
    {
        "id": "color-contrast",
        "impact": "serious",
        "nodes": [{"target": ["p.muted"]}],
    },
]


def test_parse_violations_types_impacts_and_targets():
    violations = parse_violations(RAW_VIOLATIONS)

    assert [v.rule_id for v in violations] == ["image-alt", "color-contrast"]
    assert violations[0].impact is Impact.critical
    assert violations[0].selectors == ["img.hero", "iframe#ads >>> img"]
    assert violations[0].node_count == 2
    assert violations[1].help_url is None


def test_parse_violations_rejects_unknown_impact():
    with pytest.raises(PageScanError):
        parse_violations([{"id": "odd-rule", "impact": "catastrophic", "nodes": []}])


def test_parse_violations_rejects_missing_impact():
    with pytest.raises(PageScanError):
        parse_violations([{"id": "odd-rule", "nodes": []}])


def test_missing_script_file_is_batch_fatal(tmp_path):
    engine = AxeRuleEngine(script_path=str(tmp_path / "axe.min.js"))
    with pytest.raises(BatchFatalError):
        engine.source


def test_script_source_is_loaded_from_file(tmp_path):
    script = tmp_path / "axe.min.js"
    script.write_text("window.axe = {};", encoding="utf-8")
    assert AxeRuleEngine(script_path=str(script)).source == "window.axe = {};"


def _driver(payload=None, side_effect=None, axe_present=True):
    driver = MagicMock()
    driver.execute_script.side_effect = lambda script, *args: axe_present if "window.axe" in script else None
    if side_effect is not None:
        driver.execute_async_script.side_effect = side_effect
    else:
        driver.execute_async_script.return_value = payload
    return driver


def test_run_returns_violations_and_version():
    engine = AxeRuleEngine(script_source="/* axe */")
    driver = _driver({"ok": True, "version": "4.9.1", "violations": RAW_VIOLATIONS})

    violations, version = engine.run(driver)

    assert version == "4.9.1"
    assert len(violations) == 2


def test_run_requires_injected_axe():
    engine = AxeRuleEngine(script_source="/* axe */")
    with pytest.raises(PageScanError):
        engine.run(_driver(axe_present=False))


def test_run_timeout_is_transient():
    engine = AxeRuleEngine(script_source="/* axe */")
    with pytest.raises(TransientScanError):
        engine.run(_driver(side_effect=TimeoutException("script timeout")))


def test_run_script_error_is_page_failure():
    engine = AxeRuleEngine(script_source="/* axe */")
    with pytest.raises(PageScanError):
        engine.run(_driver(side_effect=JavascriptException("axe is broken")))
    with pytest.raises(PageScanError):
        engine.run(_driver({"error": "document not ready"}))
