"""
Keyboard, screen-reader and mobile sub-audits.

Each audit is split in two: a probe that reads facts out of the live page
(one execute_script round trip where possible) and a pure scoring function
over those facts. Every score starts at 100 and is floored at 0.
"""
from typing import Any, Dict, List

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.keys import Keys

from app.features.scan.schemas.results import (
    AuditIssue,
    Impact,
    KeyboardAudit,
    MobileAudit,
    ScreenReaderAudit,
)
from app.platform.logger import get_logger

logger = get_logger(__name__)

MOBILE_VIEWPORT = (375, 667)
MIN_TOUCH_TARGET_PX = 44
ADEQUATE_TOUCH_RATIO = 0.8
SKIP_LINK_MIN_FOCUSABLES = 10
TAB_WALK_LIMIT = 30
TRAP_REPEATS = 3

FOCUSABLE_SELECTOR = 'a[href], button, input, textarea, select, [tabindex]:not([tabindex="-1"])'

KEYBOARD_PROBE_JS = """
const focusable = Array.from(document.querySelectorAll(arguments[0]))
  .filter(el => !el.disabled);
const skip = Array.from(document.querySelectorAll('a[href^="#"]'))
  .some(a => (a.textContent || '').toLowerCase().includes('skip'));
const positive = Array.from(document.querySelectorAll('[tabindex]'))
  .filter(el => parseInt(el.getAttribute('tabindex'), 10) > 0).length;
let focusVisible = true;
if (focusable.length) {
  const el = focusable[0];
  const before = window.getComputedStyle(el);
  const blurred = [before.outlineStyle, before.outlineWidth, before.boxShadow].join('|');
  el.focus();
  const after = window.getComputedStyle(el);
  const focused = [after.outlineStyle, after.outlineWidth, after.boxShadow].join('|');
  const hasOutline = after.outlineStyle !== 'none' && after.outlineWidth !== '0px';
  focusVisible = hasOutline || focused !== blurred;
  el.blur();
}
return {focusable: focusable.length, skip_link: skip, positive_tabindex: positive, focus_visible: focusVisible};
"""

SCREEN_READER_PROBE_JS = """
const landmarks = document.querySelectorAll(
  "main, nav, aside, header, footer, [role='main'], [role='navigation'], [role='banner'], [role='contentinfo']"
).length;
const levels = Array.from(document.querySelectorAll('h1,h2,h3,h4,h5,h6'))
  .map(h => parseInt(h.tagName[1], 10));
const images = Array.from(document.querySelectorAll('img'));
const missingAlt = images.filter(img => !img.hasAttribute('alt')).length;
const controls = Array.from(document.querySelectorAll(
  "input:not([type='hidden']):not([type='submit']):not([type='button']), select, textarea"
));
const unlabeled = controls.filter(el => {
  if (el.getAttribute('aria-label') || el.getAttribute('aria-labelledby')) return false;
  if (el.id && document.querySelector("label[for='" + CSS.escape(el.id) + "']")) return false;
  return !el.closest('label');
}).length;
return {
  landmarks: landmarks,
  heading_levels: levels,
  aria_labels: document.querySelectorAll('[aria-label], [aria-labelledby]').length,
  live_regions: document.querySelectorAll('[aria-live], [role="alert"], [role="status"]').length,
  images_missing_alt: missingAlt,
  unlabeled_controls: unlabeled
};
"""

MOBILE_PROBE_JS = """
const min = arguments[0];
const targets = Array.from(document.querySelectorAll("a, button, [onclick], [role='button']"))
  .filter(el => { const r = el.getBoundingClientRect(); return r.width > 0 && r.height > 0; });
const adequate = targets.filter(el => {
  const r = el.getBoundingClientRect(); return r.width >= min && r.height >= min;
}).length;
const meta = document.querySelector('meta[name="viewport"]');
const viewport = !!meta && (meta.getAttribute('content') || '').includes('width=device-width');
const overflow = document.documentElement.scrollWidth > window.innerWidth + 1;
return {touch_targets: targets.length, adequate_touch_targets: adequate, viewport_meta: viewport, horizontal_overflow: overflow};
"""


# ── Scoring ─────────────────────────────────────

def headings_are_logical(levels: List[int]) -> bool:
    """Starts with an h1 somewhere and never skips a level going down."""
    if 1 not in levels:
        return False
    for previous, current in zip(levels, levels[1:]):
        if current > previous + 1:
            return False
    return True


def score_keyboard(facts: Dict[str, Any]) -> KeyboardAudit:
    score = 100.0
    issues = []
    focusable = facts.get("focusable", 0)

    if not facts.get("skip_link") and focusable > SKIP_LINK_MIN_FOCUSABLES:
        issues.append(AuditIssue(type="skip-link", severity=Impact.moderate,
                                 description="Page should have a skip link for keyboard navigation"))
        score -= 15
    if not facts.get("focus_visible", True):
        issues.append(AuditIssue(type="focus-visible", severity=Impact.serious,
                                 description="Focus indicators should be visible for keyboard users"))
        score -= 25
    if facts.get("positive_tabindex", 0) > 0:
        issues.append(AuditIssue(type="tab-order", severity=Impact.moderate,
                                 description="Positive tabindex values override the natural tab order",
                                 count=facts["positive_tabindex"]))
        score -= 10
    if facts.get("focus_trap"):
        issues.append(AuditIssue(type="focus-trap", severity=Impact.critical,
                                 description="Keyboard focus gets stuck on one element"))
        score -= 30

    return KeyboardAudit(
        score=max(0.0, score),
        focusable_elements=focusable,
        skip_link=bool(facts.get("skip_link")),
        focus_visible=bool(facts.get("focus_visible", True)),
        positive_tabindex=facts.get("positive_tabindex", 0),
        focus_trap=bool(facts.get("focus_trap")),
        issues=issues,
    )


def score_screen_reader(facts: Dict[str, Any]) -> ScreenReaderAudit:
    score = 100.0
    issues = []
    landmarks = facts.get("landmarks", 0)
    heading_structure = headings_are_logical(facts.get("heading_levels", []))
    missing_alt = facts.get("images_missing_alt", 0)
    unlabeled = facts.get("unlabeled_controls", 0)

    if landmarks < 2:
        issues.append(AuditIssue(type="landmark", severity=Impact.moderate,
                                 description="Use landmark regions (main, nav, header, footer)"))
        score -= 20
    if not heading_structure:
        issues.append(AuditIssue(type="heading-structure", severity=Impact.serious,
                                 description="Heading structure should start with h1 and not skip levels"))
        score -= 30
    if missing_alt > 0:
        issues.append(AuditIssue(type="alt-text", severity=Impact.serious,
                                 description="Images need an alt attribute", count=missing_alt))
        score -= 15
    if unlabeled > 0:
        issues.append(AuditIssue(type="missing-label", severity=Impact.serious,
                                 description="Form controls need an accessible label", count=unlabeled))
        score -= 15

    return ScreenReaderAudit(
        score=max(0.0, score),
        landmarks=landmarks,
        heading_structure=heading_structure,
        aria_labels=facts.get("aria_labels", 0),
        live_regions=facts.get("live_regions", 0),
        images_missing_alt=missing_alt,
        unlabeled_controls=unlabeled,
        issues=issues,
    )


def score_mobile(facts: Dict[str, Any]) -> MobileAudit:
    score = 100.0
    issues = []
    total = facts.get("touch_targets", 0)
    adequate = facts.get("adequate_touch_targets", 0)

    if total > 0 and adequate / total < ADEQUATE_TOUCH_RATIO:
        issues.append(AuditIssue(type="touch-target", severity=Impact.moderate,
                                 description=f"Touch targets should be at least {MIN_TOUCH_TARGET_PX}x{MIN_TOUCH_TARGET_PX}px",
                                 count=total - adequate))
        score -= 25
    if not facts.get("viewport_meta", True):
        issues.append(AuditIssue(type="viewport", severity=Impact.serious,
                                 description="Add a responsive viewport meta tag"))
        score -= 30
    if facts.get("horizontal_overflow"):
        issues.append(AuditIssue(type="horizontal-scroll", severity=Impact.moderate,
                                 description="Content overflows horizontally on small screens"))
        score -= 15

    return MobileAudit(
        score=max(0.0, score),
        touch_targets=total,
        adequate_touch_targets=adequate,
        viewport_meta=bool(facts.get("viewport_meta", True)),
        horizontal_overflow=bool(facts.get("horizontal_overflow")),
        issues=issues,
    )


# ── Probes ──────────────────────────────────────

def _element_key(driver) -> str:
    return driver.execute_script(
        "const el = document.activeElement;"
        "return el ? (el.tagName + '#' + (el.id || '') + '|' + (el.outerHTML || '').slice(0, 120)) : '';"
    )


def detect_focus_trap(driver, focusable: int) -> bool:
    """
    Walk the tab order and report a trap when focus stays on the same
    element for several consecutive Tab presses while other focusable
    elements exist.
    """
    if focusable < 2:
        return False

    driver.execute_script("document.activeElement && document.activeElement.blur(); window.scrollTo(0, 0);")
    previous, repeats = None, 0
    for _ in range(min(focusable, TAB_WALK_LIMIT)):
        driver.switch_to.active_element.send_keys(Keys.TAB)
        current = _element_key(driver)
        if current and current == previous:
            repeats += 1
            if repeats >= TRAP_REPEATS:
                return True
        else:
            repeats = 0
        previous = current
    return False


def audit_keyboard(driver) -> KeyboardAudit:
    facts = driver.execute_script(KEYBOARD_PROBE_JS, FOCUSABLE_SELECTOR) or {}
    facts["focus_trap"] = detect_focus_trap(driver, facts.get("focusable", 0))
    return score_keyboard(facts)


def audit_screen_reader(driver) -> ScreenReaderAudit:
    return score_screen_reader(driver.execute_script(SCREEN_READER_PROBE_JS) or {})


def audit_mobile(driver) -> MobileAudit:
    """Probe at phone size, then restore the original window."""
    original = driver.get_window_size()
    driver.set_window_size(*MOBILE_VIEWPORT)
    try:
        facts = driver.execute_script(MOBILE_PROBE_JS, MIN_TOUCH_TARGET_PX) or {}
    finally:
        try:
            driver.set_window_size(original["width"], original["height"])
        except WebDriverException as e:
            logger.warning(f"Could not restore window size: {e}")
    return score_mobile(facts)
