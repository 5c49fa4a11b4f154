import math
from typing import Tuple

from app.features.scoring.services.scoring_engine import round_public


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def estimate_wcag_compliance(score: float, critical: int, serious: int, issues: int) -> Tuple[float, float]:
    """
    Rough WCAG AA / AAA conformance percentages from a page or site score.

    AA loses 3 points per critical and 2 per serious violation. AAA is stricter:
    1.5 points per issue of any impact, then scaled to 85%.
    """
    aa = _clamp(float(math.floor(max(0.0, score - 3 * critical - 2 * serious) + 0.5)))
    aaa = _clamp(float(math.floor(max(0.0, score - 1.5 * issues) * 0.85 + 0.5)))
    return round_public(aa), round_public(aaa)
