from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.features.assurance.models.assurance import AlertSeverity


class AlertRuleCreate(BaseModel):
    """Threshold fields left empty fall back to the service defaults."""
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    domain_id: Optional[str] = None
    enabled: bool = True
    score_drop_threshold: Optional[float] = Field(default=None, gt=0, le=100)
    new_violations_threshold: Optional[int] = Field(default=None, ge=1)
    compliance_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    severity_levels: List[AlertSeverity] = Field(default_factory=list)
    cooldown_minutes: Optional[int] = Field(default=None, ge=0, le=60 * 24 * 30)
    notify_email: bool = True
    notify_webhook: bool = False
    webhook_url: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Large drops only",
                "score_drop_threshold": 10,
                "new_violations_threshold": 2,
                "compliance_threshold": 70,
                "severity_levels": ["high", "critical"],
                "cooldown_minutes": 120,
                "notify_email": True,
                "recipients": ["a11y-team@example.com"],
            }
        }


class AlertRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    enabled: Optional[bool] = None
    score_drop_threshold: Optional[float] = Field(default=None, gt=0, le=100)
    new_violations_threshold: Optional[int] = Field(default=None, ge=1)
    compliance_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    severity_levels: Optional[List[AlertSeverity]] = None
    cooldown_minutes: Optional[int] = Field(default=None, ge=0, le=60 * 24 * 30)
    notify_email: Optional[bool] = None
    notify_webhook: Optional[bool] = None
    webhook_url: Optional[str] = None
    recipients: Optional[List[str]] = None


class AlertRuleResponse(BaseModel):
    id: str
    domain_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    enabled: bool
    score_drop_threshold: float
    new_violations_threshold: int
    compliance_threshold: float
    severity_levels: List[str]
    cooldown_minutes: int
    notify_email: bool
    notify_webhook: bool
    webhook_url: Optional[str] = None
    recipients: List[str]
    total_alerts_sent: int
    last_triggered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
