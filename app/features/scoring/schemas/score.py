"""
Scoring Schemas

Input signal groups and the ScoreBreakdown produced by compute_score.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.features.scan.schemas.results import ImpactCounts, ScanResult


# ============================================================================
# Input signal groups (each one optional)
# ============================================================================

class SearchConsoleSignals(BaseModel):
    impressions: float = 0
    previous_impressions: Optional[float] = None  # trailing average; defaults to current
    clicks: float = 0
    previous_clicks: Optional[float] = None
    average_position: float = 50
    top_queries: int = 0  # queries ranking in the top 10
    ctr: float = 0
    indexed_pages: int = 0
    previous_indexed_pages: Optional[float] = None


class AnalyticsSignals(BaseModel):
    engagement_rate: float = 0
    returning_users: int = 0
    total_users: int = 0
    avg_engagement_seconds: float = 0
    conversions: float = 0
    organic_sessions: int = 0


class PageSpeedSignals(BaseModel):
    performance_score: float = 50
    lcp_ms: float = 2500
    cls: float = 0.1


class CrawlSignals(BaseModel):
    pages_done: int = 0
    pages_error: int = 0


class ScoreSignals(BaseModel):
    search_console: Optional[SearchConsoleSignals] = None
    analytics: Optional[AnalyticsSignals] = None
    page_speed: Optional[PageSpeedSignals] = None
    crawl: Optional[CrawlSignals] = None


# ============================================================================
# Output
# ============================================================================

class PillarScore(BaseModel):
    key: str
    name: str
    score: float  # 0-100
    points: float
    max_points: float
    weight: float
    components: Dict[str, float] = Field(default_factory=dict)
    measured: List[str] = Field(default_factory=list)  # components backed by real signals

    @property
    def neutral(self) -> bool:
        return not self.measured


class AccessibilitySummary(BaseModel):
    page_count: int
    failed_pages: int = 0
    score: Optional[float] = None
    base_score: Optional[float] = None
    keyboard: Optional[float] = None
    screen_reader: Optional[float] = None
    mobile: Optional[float] = None
    impact_counts: ImpactCounts = Field(default_factory=ImpactCounts)
    issues_count: int = 0
    violations_by_rule: Dict[str, int] = Field(default_factory=dict)


class ScoreBreakdown(BaseModel):
    total: float
    pillars: List[PillarScore]
    accessibility: AccessibilitySummary

    def pillar(self, key: str) -> PillarScore:
        for pillar in self.pillars:
            if pillar.key == key:
                return pillar
        raise KeyError(key)


class Action(BaseModel):
    pillar: str
    key: str
    severity: str  # critical | high | medium | low
    title: str
    description: str
    impact_points: int
    metadata: Dict[str, float] = Field(default_factory=dict)


# ============================================================================
# API
# ============================================================================

class ComputeScoreRequest(BaseModel):
    results: List[ScanResult] = Field(default_factory=list)
    signals: ScoreSignals = Field(default_factory=ScoreSignals)


class ComputeScoreResponse(BaseModel):
    breakdown: ScoreBreakdown
    actions: List[Action]
