"""
Scoring Engine

compute_score is a pure function of its inputs: results are ordered by URL
before accumulation, floats are never rounded mid-way, and every public
number is rounded once (half-up, one decimal) on the way out. Running it
twice on the same input yields the same ScoreBreakdown.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from app.features.scan.schemas.results import (
    Impact,
    ImpactCounts,
    ScanFailure,
    ScanOutcome,
    ScanResult,
    Violation,
)
from app.features.scoring.schemas.score import (
    AccessibilitySummary,
    PillarScore,
    ScoreBreakdown,
    ScoreSignals,
)
from app.features.scoring.services.normalize import norm_linear, norm_log, pct_change

# Deduction per violated rule. Every Impact member must have an entry.
IMPACT_WEIGHTS: Dict[Impact, float] = {
    Impact.critical: 10.0,
    Impact.serious: 5.0,
    Impact.moderate: 2.0,
    Impact.minor: 1.0,
}

# Page score = weighted mix of the rule-engine base score and the three sub-audits
PAGE_SCORE_WEIGHTS: Dict[str, float] = {
    "base": 0.7,
    "keyboard": 0.1,
    "screen_reader": 0.1,
    "mobile": 0.1,
}

# (key, name, max points, weight)
PILLARS: Tuple[Tuple[str, str, float, float], ...] = (
    ("p1", "Index & Crawl Health", 250.0, 0.25),
    ("p2", "Search Visibility", 250.0, 0.25),
    ("p3", "Engagement & Intent", 200.0, 0.20),
    ("p4", "Content Performance", 200.0, 0.20),
    ("p5", "Technical Experience", 100.0, 0.10),
)


def check_weight_tables(impact_weights: Dict[Impact, float], pillars, page_weights: Dict[str, float]):
    """Raise ValueError unless every impact has a weight and both weight sets sum to 1."""
    missing = set(Impact) - set(impact_weights)
    if missing:
        raise ValueError(f"No weight for impact classes: {sorted(impact.value for impact in missing)}")
    if abs(sum(weight for *_, weight in pillars) - 1.0) > 1e-9:
        raise ValueError("Pillar weights must sum to 1.0")
    if abs(sum(page_weights.values()) - 1.0) > 1e-9:
        raise ValueError("Page score weights must sum to 1.0")


check_weight_tables(IMPACT_WEIGHTS, PILLARS, PAGE_SCORE_WEIGHTS)


def round_public(value: Optional[float]) -> Optional[float]:
    """One decimal place, half-up. Applied only to values leaving the engine."""
    if value is None:
        return None
    return float(Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


# ── Accessibility ───────────────────────────────

def tally_impacts(violations: Iterable[Violation]) -> ImpactCounts:
    counts = {impact: 0 for impact in Impact}
    for violation in violations:
        counts[violation.impact] += 1
    return ImpactCounts(**{impact.value: count for impact, count in counts.items()})


def impact_penalty(counts: ImpactCounts) -> float:
    return sum(IMPACT_WEIGHTS[impact] * getattr(counts, impact.value) for impact in Impact)


def impact_weighted_base(counts: ImpactCounts, pages: int = 1) -> float:
    """100 minus the mean per-page deduction, floored at 0."""
    if pages <= 0:
        return 100.0
    return max(0.0, 100.0 - impact_penalty(counts) / pages)


def combine_page_score(base: float, keyboard: float, screen_reader: float, mobile: float) -> float:
    return (
        PAGE_SCORE_WEIGHTS["base"] * base
        + PAGE_SCORE_WEIGHTS["keyboard"] * keyboard
        + PAGE_SCORE_WEIGHTS["screen_reader"] * screen_reader
        + PAGE_SCORE_WEIGHTS["mobile"] * mobile
    )


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def _accessibility(pages: List[ScanResult], failed: int) -> Tuple[AccessibilitySummary, Optional[float]]:
    all_violations = [v for page in pages for v in page.violations]
    counts = tally_impacts(all_violations)

    by_rule: Dict[str, int] = {}
    for violation in all_violations:
        by_rule[violation.rule_id] = by_rule.get(violation.rule_id, 0) + 1

    if not pages:
        return AccessibilitySummary(page_count=0, failed_pages=failed, impact_counts=counts), None

    base = impact_weighted_base(counts, len(pages))
    keyboard = _mean([page.keyboard.score for page in pages])
    screen_reader = _mean([page.screen_reader.score for page in pages])
    mobile = _mean([page.mobile.score for page in pages])
    score = combine_page_score(base, keyboard, screen_reader, mobile)

    summary = AccessibilitySummary(
        page_count=len(pages),
        failed_pages=failed,
        score=round_public(score),
        base_score=round_public(base),
        keyboard=round_public(keyboard),
        screen_reader=round_public(screen_reader),
        mobile=round_public(mobile),
        impact_counts=counts,
        issues_count=len(all_violations),
        violations_by_rule=dict(sorted(by_rule.items())),
    )
    return summary, mobile


# ── Pillars ─────────────────────────────────────

def _pillar(key: str, components: Dict[str, Tuple[float, float, bool]]) -> PillarScore:
    """components: name -> (points, max points, measured)."""
    _, name, max_points, weight = next(p for p in PILLARS if p[0] == key)
    points = sum(value for value, _, _ in components.values())
    return PillarScore(
        key=key,
        name=name,
        score=points / max_points * 100.0,
        points=points,
        max_points=max_points,
        weight=weight,
        components={component: value for component, (value, _, _) in components.items()},
        measured=[component for component, (_, _, measured) in components.items() if measured],
    )


def _neutral(max_points: float) -> Tuple[float, float, bool]:
    return max_points / 2.0, max_points, False


def _p1(signals: ScoreSignals) -> PillarScore:
    sc, crawl = signals.search_console, signals.crawl
    components = {}
    if sc is not None:
        previous = sc.previous_impressions if sc.previous_impressions is not None else sc.impressions
        growth = pct_change(sc.impressions, previous)
        components["impressions_trend"] = (norm_linear(growth, -0.2, 0.2) * 100.0, 100.0, True)
        components["index_coverage"] = (100.0 if sc.impressions > 0 else 0.0, 100.0, True)
    else:
        components["impressions_trend"] = _neutral(100.0)
        components["index_coverage"] = _neutral(100.0)

    attempted = (crawl.pages_done + crawl.pages_error) if crawl is not None else 0
    if attempted > 0:
        components["crawl_health"] = (50.0 * crawl.pages_done / attempted, 50.0, True)
    else:
        components["crawl_health"] = _neutral(50.0)
    return _pillar("p1", components)


def _p2(signals: ScoreSignals) -> PillarScore:
    sc = signals.search_console
    if sc is None:
        return _pillar("p2", {
            "clicks_trend": _neutral(100.0),
            "top_queries": _neutral(100.0),
            "average_position": _neutral(50.0),
        })
    previous = sc.previous_clicks if sc.previous_clicks is not None else sc.clicks
    growth = pct_change(sc.clicks, previous)
    return _pillar("p2", {
        "clicks_trend": (norm_linear(growth, -0.2, 0.2) * 100.0, 100.0, True),
        "top_queries": (norm_log(sc.top_queries, 10, 5) * 100.0, 100.0, True),
        "average_position": (norm_linear(50 - sc.average_position, 0, 40) * 50.0, 50.0, True),
    })


def _p3(signals: ScoreSignals) -> PillarScore:
    sc, ga = signals.search_console, signals.analytics
    components = {}
    if sc is not None:
        components["ctr_quality"] = (norm_linear(sc.ctr, 0.02, 0.08) * 80.0, 80.0, True)
    else:
        components["ctr_quality"] = _neutral(80.0)

    if ga is not None:
        returning_ratio = ga.returning_users / ga.total_users if ga.total_users else 0.0
        components["engagement_rate"] = (norm_linear(ga.engagement_rate, 0.3, 0.7) * 80.0, 80.0, True)
        components["returning_users"] = (norm_linear(returning_ratio, 0.1, 0.4) * 40.0, 40.0, True)
    else:
        components["engagement_rate"] = _neutral(80.0)
        components["returning_users"] = _neutral(40.0)
    return _pillar("p3", components)


def _p4(signals: ScoreSignals) -> PillarScore:
    sc, ga = signals.search_console, signals.analytics
    components = {}
    if sc is not None:
        previous = sc.previous_indexed_pages if sc.previous_indexed_pages is not None else sc.indexed_pages
        growth = pct_change(sc.indexed_pages, previous)
        components["top_pages_growth"] = (norm_linear(growth, -0.1, 0.1) * 80.0, 80.0, True)
    else:
        components["top_pages_growth"] = _neutral(80.0)

    if ga is not None:
        conversion_rate = ga.conversions / ga.organic_sessions if ga.organic_sessions > 0 else 0.0
        components["content_depth"] = (norm_linear(ga.avg_engagement_seconds, 30, 120) * 80.0, 80.0, True)
        components["conversion_quality"] = (norm_linear(conversion_rate, 0.01, 0.05) * 40.0, 40.0, True)
    else:
        components["content_depth"] = _neutral(80.0)
        components["conversion_quality"] = _neutral(40.0)
    return _pillar("p4", components)


def _p5(signals: ScoreSignals, mobile_mean: Optional[float]) -> PillarScore:
    ps = signals.page_speed
    components = {}
    if ps is not None:
        lcp = norm_linear(4000 - ps.lcp_ms, 0, 2000) * 30.0
        cls = norm_linear(0.25 - ps.cls, 0, 0.15) * 40.0
        components["core_web_vitals"] = (lcp + cls, 70.0, True)
        components["mobile_usability"] = (norm_linear(ps.performance_score, 50, 90) * 30.0, 30.0, True)
    else:
        components["core_web_vitals"] = _neutral(70.0)
        if mobile_mean is not None:
            components["mobile_usability"] = (mobile_mean / 100.0 * 30.0, 30.0, True)
        else:
            components["mobile_usability"] = _neutral(30.0)
    return _pillar("p5", components)


def _rounded(pillar: PillarScore) -> PillarScore:
    return pillar.model_copy(update={
        "score": round_public(pillar.score),
        "points": round_public(pillar.points),
        "components": {name: round_public(value) for name, value in pillar.components.items()},
    })


# ── Entry point ─────────────────────────────────

def compute_score(
    results: Iterable[ScanOutcome],
    signals: Optional[ScoreSignals] = None,
) -> ScoreBreakdown:
    """
    Fold page scan results and optional external signals into a ScoreBreakdown.

    1. tally violations by impact across all successful pages
    2. base score = 100 - mean per-page impact-weighted deduction (floor 0)
    3. five pillar scores from their independent signal groups
    4. total = fixed-weight sum of the pillars
    """
    signals = signals or ScoreSignals()
    outcomes = list(results)
    pages = sorted((r for r in outcomes if isinstance(r, ScanResult)), key=lambda r: r.url)
    failed = sum(1 for r in outcomes if isinstance(r, ScanFailure))

    accessibility, mobile_mean = _accessibility(pages, failed)

    pillars = [_p1(signals), _p2(signals), _p3(signals), _p4(signals), _p5(signals, mobile_mean)]
    total = sum(pillar.score * pillar.weight for pillar in pillars)

    return ScoreBreakdown(
        total=round_public(total),
        pillars=[_rounded(pillar) for pillar in pillars],
        accessibility=accessibility,
    )
