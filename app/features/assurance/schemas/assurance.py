"""
Assurance Schemas

Request and response models for monitored domains, alerts and trends.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.features.assurance.models.assurance import AlertSeverity, AlertType, ScanFrequency
from app.features.assurance.services.schedule import parse_time_of_day


class DomainCreate(BaseModel):
    subscription_id: str
    domain: str
    account_id: Optional[str] = None
    frequency: ScanFrequency = ScanFrequency.weekly
    day_of_week: int = Field(default=0, ge=0, le=6)
    time_of_day: str = "09:00"
    email_recipients: List[str] = Field(default_factory=list)
    webhook_url: Optional[str] = None

    @field_validator("time_of_day")
    @classmethod
    def check_time_of_day(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "subscription_id": "sub_123",
                "domain": "https://example.com",
                "frequency": "weekly",
                "day_of_week": 0,
                "time_of_day": "09:00",
                "email_recipients": ["owner@example.com"],
            }
        }


class DomainResponse(BaseModel):
    id: str
    subscription_id: str
    domain: str
    site_id: Optional[str] = None
    active: bool
    frequency: ScanFrequency
    day_of_week: int
    time_of_day: str
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    email_recipients: List[str] = Field(default_factory=list)
    webhook_url: Optional[str] = None
    last_score: Optional[float] = None

    class Config:
        from_attributes = True


class AssuranceScanResponse(BaseModel):
    id: str
    domain_id: str
    scan_id: Optional[str] = None
    previous_scan_id: Optional[str] = None
    status: str
    triggered_by: str
    score: Optional[float] = None
    wcag_aa_compliance: Optional[float] = None
    wcag_aaa_compliance: Optional[float] = None
    issues_count: int = 0
    critical_count: int = 0
    serious_count: int = 0
    is_regression: bool = False
    score_change: Optional[float] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, scan) -> "AssuranceScanResponse":
        return cls(
            id=scan.id,
            domain_id=scan.domain_id,
            scan_id=scan.scan_id,
            previous_scan_id=scan.previous_scan_id,
            status=scan.status.value,
            triggered_by=scan.triggered_by.value,
            score=scan.score,
            wcag_aa_compliance=scan.wcag_aa_compliance,
            wcag_aaa_compliance=scan.wcag_aaa_compliance,
            issues_count=scan.issues_count,
            critical_count=scan.critical_count,
            serious_count=scan.serious_count,
            is_regression=scan.is_regression,
            score_change=scan.score_change,
            error_message=scan.error_message,
            created_at=scan.created_at,
        )


class AlertResponse(BaseModel):
    id: str
    domain_id: str
    assurance_scan_id: Optional[str] = None
    rule_id: Optional[str] = None
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    current_score: Optional[float] = None
    previous_score: Optional[float] = None
    threshold: Optional[float] = None
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlertListResponse(BaseModel):
    items: List[AlertResponse]
    total: int
    limit: int
    offset: int


class ResolveAlertRequest(BaseModel):
    resolved_by: str = Field(min_length=1, max_length=200)


class AlertSummary(BaseModel):
    total: int
    unresolved: int
    by_severity: Dict[str, int]
    latest: List[AlertResponse]


class TrendPoint(BaseModel):
    date: datetime
    score: Optional[float] = None
    wcag_aa: Optional[float] = None
    wcag_aaa: Optional[float] = None
    issues_count: int
    is_regression: bool


class DomainStatistics(BaseModel):
    total_scans: int
    latest_score: Optional[float] = None
    latest_scan_at: Optional[datetime] = None
    average_score: Optional[float] = None
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    trend: str
    regression_count: int
