"""
Typed scan results.

Rule-engine payloads are parsed once at the runner boundary into these
models; everything downstream (scoring, persistence, regression) works with
Impact members, never with free-form impact strings.
"""
import enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


class Impact(str, enum.Enum):
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"


class Violation(BaseModel):
    rule_id: str
    impact: Impact
    description: str = ""
    help: str = ""
    help_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    selectors: List[str] = Field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.selectors)


class AuditIssue(BaseModel):
    type: str
    severity: Impact
    description: str
    count: Optional[int] = None


class KeyboardAudit(BaseModel):
    score: float
    focusable_elements: int = 0
    skip_link: bool = False
    focus_visible: bool = True
    positive_tabindex: int = 0
    focus_trap: bool = False
    issues: List[AuditIssue] = Field(default_factory=list)


class ScreenReaderAudit(BaseModel):
    score: float
    landmarks: int = 0
    heading_structure: bool = True
    aria_labels: int = 0
    live_regions: int = 0
    images_missing_alt: int = 0
    unlabeled_controls: int = 0
    issues: List[AuditIssue] = Field(default_factory=list)


class MobileAudit(BaseModel):
    score: float
    touch_targets: int = 0
    adequate_touch_targets: int = 0
    viewport_meta: bool = True
    horizontal_overflow: bool = False
    issues: List[AuditIssue] = Field(default_factory=list)


class ImpactCounts(BaseModel):
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.serious + self.moderate + self.minor

    def as_dict(self) -> Dict[str, int]:
        return {impact.value: getattr(self, impact.value) for impact in Impact}


class ScanResult(BaseModel):
    """Successful audit of one page."""
    url: str
    score: float
    base_score: float
    impact_counts: ImpactCounts
    violations: List[Violation] = Field(default_factory=list)
    keyboard: KeyboardAudit
    screen_reader: ScreenReaderAudit
    mobile: MobileAudit
    engine_name: str
    engine_version: Optional[str] = None
    attempts: int = 1
    duration_seconds: float = 0.0

    ok: bool = True

    @property
    def issues_count(self) -> int:
        return len(self.violations)

    def violations_by_rule(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for violation in self.violations:
            counts[violation.rule_id] = counts.get(violation.rule_id, 0) + 1
        return counts


class FailureKind(str, enum.Enum):
    transient = "transient"  # timeout, browser crash, temporary DNS
    page = "page"            # rule-engine exception, unparseable DOM
    batch = "batch"          # no browser session could be acquired
    cancelled = "cancelled"  # batch cancelled before the page was scanned


class ScanFailure(BaseModel):
    """Typed failure for one page; never raised past the runner boundary."""
    url: str
    reason: str
    kind: FailureKind
    attempts: int = 1

    ok: bool = False

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.transient


ScanOutcome = Union[ScanResult, ScanFailure]
