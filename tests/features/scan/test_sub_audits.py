from unittest.mock import MagicMock

from selenium.common.exceptions import WebDriverException

from app.features.scan.services.sub_audits import (
    MOBILE_VIEWPORT,
    audit_mobile,
    detect_focus_trap,
    headings_are_logical,
    score_keyboard,
    score_mobile,
    score_screen_reader,
)


class TestHeadings:
    def test_logical_outline(self):
        assert headings_are_logical([1, 2, 3, 2, 3])
        assert headings_are_logical([1, 2, 2, 1])

    def test_skipped_level(self):
        assert not headings_are_logical([1, 3])

    def test_missing_h1(self):
        assert not headings_are_logical([2, 3])
        assert not headings_are_logical([])


class TestKeyboardScore:
    def test_clean_page(self):
        audit = score_keyboard({"focusable": 5, "skip_link": False, "focus_visible": True, "positive_tabindex": 0})
        assert audit.score == 100
        assert audit.issues == []

    def test_skip_link_only_required_on_busy_pages(self):
        assert score_keyboard({"focusable": 10}).score == 100
        audit = score_keyboard({"focusable": 11})
        assert audit.score == 85
        assert audit.issues[0].type == "skip-link"

    def test_all_deductions(self):
        audit = score_keyboard({
            "focusable": 40,
            "skip_link": False,
            "focus_visible": False,
            "positive_tabindex": 3,
            "focus_trap": True,
        })
        assert audit.score == 100 - 15 - 25 - 10 - 30
        assert {issue.type for issue in audit.issues} == {"skip-link", "focus-visible", "tab-order", "focus-trap"}


class TestScreenReaderScore:
    def test_clean_page(self):
        audit = score_screen_reader({"landmarks": 4, "heading_levels": [1, 2], "images_missing_alt": 0})
        assert audit.score == 100

    def test_all_deductions(self):
        audit = score_screen_reader({
            "landmarks": 1,
            "heading_levels": [2, 4],
            "images_missing_alt": 3,
            "unlabeled_controls": 2,
        })
        assert audit.score == 100 - 20 - 30 - 15 - 15
        assert audit.images_missing_alt == 3
        assert audit.heading_structure is False


class TestMobileScore:
    def test_clean_page(self):
        audit = score_mobile({"touch_targets": 10, "adequate_touch_targets": 8, "viewport_meta": True})
        assert audit.score == 100

    def test_all_deductions(self):
        audit = score_mobile({
            "touch_targets": 10,
            "adequate_touch_targets": 7,
            "viewport_meta": False,
            "horizontal_overflow": True,
        })
        assert audit.score == 100 - 25 - 30 - 15
        assert audit.issues[0].count == 3

    def test_no_touch_targets_is_not_penalized(self):
        assert score_mobile({"touch_targets": 0, "adequate_touch_targets": 0}).score == 100


def test_focus_trap_detected_when_focus_never_moves():
    driver = MagicMock()
    driver.execute_script.return_value = "BUTTON#stuck|<button id=stuck>"
    assert detect_focus_trap(driver, focusable=8) is True


def test_no_focus_trap_when_focus_moves():
    driver = MagicMock()
    keys = iter(f"A#link-{i}|<a>" for i in range(100))
    driver.execute_script.side_effect = lambda script, *args: next(keys)
    assert detect_focus_trap(driver, focusable=8) is False


def test_mobile_audit_restores_window_size():
    driver = MagicMock()
    driver.get_window_size.return_value = {"width": 1280, "height": 800}
    driver.execute_script.return_value = {"touch_targets": 4, "adequate_touch_targets": 4, "viewport_meta": True}

    audit = audit_mobile(driver)

    assert audit.score == 100
    assert driver.set_window_size.call_args_list[0].args == MOBILE_VIEWPORT
    assert driver.set_window_size.call_args_list[-1].args == (1280, 800)


def test_mobile_audit_tolerates_restore_failure():
    driver = MagicMock()
    driver.get_window_size.return_value = {"width": 1280, "height": 800}
    driver.execute_script.return_value = {"viewport_meta": False}
    driver.set_window_size.side_effect = [None, WebDriverException("window gone")]

    assert audit_mobile(driver).score == 70
