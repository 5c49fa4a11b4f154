"""
Scan Schemas

Request and response models for the scan API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ScanBatchRequest(BaseModel):
    """Scan a list of pages of one site. Without urls, the pages of crawl_id are used."""
    site_id: str
    urls: List[str] = Field(default_factory=list, max_length=1000)
    crawl_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "site_id": "0190a1b2-7c3d-7e4f-8a9b-0c1d2e3f4a5b",
                "urls": ["https://example.com", "https://example.com/about"],
            }
        }


class ScanBatchStartResponse(BaseModel):
    batch_id: str
    status: str
    total_pages: int
    task_id: Optional[str] = None


class ScanSummary(BaseModel):
    scan_id: str
    page_url: Optional[str] = None
    sequence: int
    status: str
    score: Optional[float] = None
    issues_count: Optional[int] = None
    critical_count: Optional[int] = None
    serious_count: Optional[int] = None
    moderate_count: Optional[int] = None
    minor_count: Optional[int] = None
    score_change: Optional[float] = None
    error_reason: Optional[str] = None
    attempts: int = 0
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, scan) -> "ScanSummary":
        return cls(
            scan_id=scan.id,
            page_url=scan.page_url,
            sequence=scan.sequence,
            status=scan.status.value,
            score=scan.score,
            issues_count=scan.issues_count,
            critical_count=scan.critical_count,
            serious_count=scan.serious_count,
            moderate_count=scan.moderate_count,
            minor_count=scan.minor_count,
            score_change=scan.score_change,
            error_reason=scan.error_reason,
            attempts=scan.attempts,
            completed_at=scan.completed_at,
        )


class ScanDetail(ScanSummary):
    site_id: str
    batch_id: Optional[str] = None
    base_score: Optional[float] = None
    keyboard_score: Optional[float] = None
    screen_reader_score: Optional[float] = None
    mobile_score: Optional[float] = None
    wcag_aa_compliance: Optional[float] = None
    wcag_aaa_compliance: Optional[float] = None
    violations: List[Dict[str, Any]] = Field(default_factory=list)
    violations_by_rule: Dict[str, int] = Field(default_factory=dict)
    sub_audits: Dict[str, Any] = Field(default_factory=dict)
    engine_name: Optional[str] = None
    engine_version: Optional[str] = None
    previous_scan_id: Optional[str] = None
    issues_fixed: Optional[int] = None
    new_issues: Optional[int] = None

    @classmethod
    def from_model(cls, scan) -> "ScanDetail":
        summary = ScanSummary.from_model(scan).model_dump()
        return cls(
            **summary,
            site_id=scan.site_id,
            batch_id=scan.batch_id,
            base_score=scan.base_score,
            keyboard_score=scan.keyboard_score,
            screen_reader_score=scan.screen_reader_score,
            mobile_score=scan.mobile_score,
            wcag_aa_compliance=scan.wcag_aa_compliance,
            wcag_aaa_compliance=scan.wcag_aaa_compliance,
            violations=scan.violations or [],
            violations_by_rule=scan.violations_by_rule or {},
            sub_audits=scan.sub_audits or {},
            engine_name=scan.engine_name,
            engine_version=scan.engine_version,
            previous_scan_id=scan.previous_scan_id,
            issues_fixed=scan.issues_fixed,
            new_issues=scan.new_issues,
        )


class ScanBatchResponse(BaseModel):
    batch_id: str
    site_id: str
    crawl_id: Optional[str] = None
    status: str
    trigger: str
    total_pages: int
    pages_done: int
    pages_error: int
    progress: int
    cancel_requested: bool
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    scans: List[ScanSummary] = Field(default_factory=list)
