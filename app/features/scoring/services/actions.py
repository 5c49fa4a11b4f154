"""
Recommended actions derived from a ScoreBreakdown.

Only measured components produce actions; a neutral component has no data
behind it and says nothing about the site.
"""
from typing import List, Optional

from app.features.scoring.schemas.score import Action, PillarScore, ScoreBreakdown

# (pillar, component, floor, key, severity, title, description, impact points)
COMPONENT_RULES = (
    ("p1", "impressions_trend", 40, "low_impressions_trend", "high", "Impressions Declining",
     "Search impressions are trending downward. Review recent content changes and check for indexing issues.", 50),
    ("p1", "index_coverage", 80, "low_index_coverage", "critical", "Low Index Coverage",
     "Some pages may not be indexed. Check Search Console for crawl errors and submit sitemaps.", 80),
    ("p1", "crawl_health", 40, "crawl_errors", "high", "Pages Failing To Load",
     "A share of crawled pages returned errors or timed out. Fix broken links and server errors.", 45),
    ("p2", "clicks_trend", 40, "clicks_declining", "high", "Clicks Declining",
     "Organic clicks are decreasing. Review title tags, meta descriptions, and rankings for key queries.", 60),
    ("p2", "average_position", 15, "poor_avg_position", "medium", "Average Position Too Low",
     "Average search position is beyond page 3. Focus on improving content quality and building authority.", 40),
    ("p3", "ctr_quality", 40, "low_ctr", "high", "Low Click-Through Rate",
     "CTR is below expectations. Optimize title tags and meta descriptions to be more compelling.", 50),
    ("p3", "engagement_rate", 40, "low_engagement", "medium", "Low User Engagement",
     "Users are not engaging with the content. Improve readability and calls to action.", 45),
    ("p4", "top_pages_growth", 35, "stagnant_content", "medium", "Content Growth Stagnant",
     "Top-performing pages are not growing. Create new content targeting underserved keywords.", 40),
    ("p4", "conversion_quality", 20, "low_conversions", "high", "Low Conversion Rate",
     "Organic traffic is not converting. Optimize landing pages, CTAs, and user flows.", 35),
    ("p5", "core_web_vitals", 40, "poor_core_web_vitals", "high", "Poor Core Web Vitals",
     "LCP and CLS are below recommended thresholds. Optimize images, fonts, and layout shifts.", 30),
    ("p5", "mobile_usability", 20, "poor_mobile_usability", "medium", "Weak Mobile Usability",
     "Pages are hard to use on small screens. Enlarge touch targets and add a responsive viewport.", 25),
)

SUB_AUDIT_FLOOR = 75.0


def _component_action(pillar: PillarScore, rule) -> Optional[Action]:
    _, component, floor, key, severity, title, description, impact_points = rule
    if component not in pillar.measured:
        return None
    value = pillar.components.get(component)
    if value is None or value >= floor:
        return None
    return Action(
        pillar=pillar.key.upper(),
        key=key,
        severity=severity,
        title=title,
        description=description,
        impact_points=impact_points,
        metadata={"score": value},
    )


def generate_actions(breakdown: ScoreBreakdown) -> List[Action]:
    actions: List[Action] = []

    for rule in COMPONENT_RULES:
        action = _component_action(breakdown.pillar(rule[0]), rule)
        if action:
            actions.append(action)

    a11y = breakdown.accessibility
    if a11y.page_count:
        if a11y.impact_counts.critical > 0:
            actions.append(Action(
                pillar="A11Y",
                key="critical_violations",
                severity="critical",
                title="Critical Accessibility Violations",
                description="Some pages block assistive technology users entirely. Fix critical rule violations first.",
                impact_points=90,
                metadata={"critical": a11y.impact_counts.critical},
            ))
        for field, key, title, description in (
            ("keyboard", "weak_keyboard_navigation", "Keyboard Navigation Gaps",
             "Add skip links, visible focus styles and a logical tab order."),
            ("screen_reader", "weak_screen_reader_support", "Screen Reader Gaps",
             "Use landmark regions, a consistent heading outline, labels and alt text."),
            ("mobile", "weak_mobile_accessibility", "Mobile Accessibility Gaps",
             "Use 44x44px touch targets and a width=device-width viewport without horizontal scrolling."),
        ):
            value = getattr(a11y, field)
            if value is not None and value < SUB_AUDIT_FLOOR:
                actions.append(Action(
                    pillar="A11Y",
                    key=key,
                    severity="medium",
                    title=title,
                    description=description,
                    impact_points=30,
                    metadata={"score": value},
                ))

    severity_rank = {"critical": 0, "high": 1, "medium": 2, "low": 3}
    actions.sort(key=lambda a: (severity_rank[a.severity], -a.impact_points, a.key))
    return actions
