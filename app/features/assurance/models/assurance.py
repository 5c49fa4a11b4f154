import enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class ScanFrequency(enum.Enum):
    weekly = "weekly"
    biweekly = "biweekly"


class AssuranceScanStatus(enum.Enum):
    completed = "completed"
    failed = "failed"


class AssuranceScanTrigger(enum.Enum):
    scheduled = "scheduled"
    manual = "manual"


class AlertType(enum.Enum):
    score_drop = "score_drop"
    new_critical_issues = "new_critical_issues"
    compliance_drop = "compliance_drop"


class AlertSeverity(enum.Enum):
    low = "low"
    moderate = "moderate"
    high = "high"
    critical = "critical"


class AssuranceDomain(BaseModel):
    """A domain monitored under a recurring assurance subscription."""
    __tablename__ = "assurance_domains"

    subscription_id = Column(String, index=True, nullable=False)
    domain = Column(String, index=True, nullable=False)  # origin, e.g. https://example.com
    site_id = Column(String, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True, index=True)
    active = Column(Boolean, default=True, nullable=False)

    # Schedule
    frequency = Column(Enum(ScanFrequency), default=ScanFrequency.weekly, nullable=False)
    day_of_week = Column(Integer, default=0, nullable=False)  # 0 = Monday
    time_of_day = Column(String(5), default="09:00", nullable=False)  # HH:MM, UTC
    next_run_at = Column(DateTime, nullable=True, index=True)
    last_run_at = Column(DateTime, nullable=True)

    email_recipients = Column(JSON, nullable=False, default=list)
    webhook_url = Column(String, nullable=True)

    last_score = Column(Float, nullable=True)

    scans = relationship(
        "AssuranceScan",
        back_populates="domain",
        order_by="AssuranceScan.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_assurance_day_of_week"),
        Index("idx_assurance_domains_due", "active", "next_run_at"),
    )


class AssuranceScan(BaseModel):
    """Append-only history of scans for one AssuranceDomain."""
    __tablename__ = "assurance_scans"

    domain_id = Column(String, ForeignKey("assurance_domains.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_id = Column(String, ForeignKey("scans.id", ondelete="SET NULL"), nullable=True)
    previous_scan_id = Column(String, ForeignKey("assurance_scans.id", ondelete="SET NULL"), nullable=True)

    status = Column(Enum(AssuranceScanStatus), nullable=False)
    triggered_by = Column(Enum(AssuranceScanTrigger), default=AssuranceScanTrigger.scheduled, nullable=False)

    score = Column(Float, nullable=True)
    wcag_aa_compliance = Column(Float, nullable=True)
    wcag_aaa_compliance = Column(Float, nullable=True)
    issues_count = Column(Integer, default=0, nullable=False)
    critical_count = Column(Integer, default=0, nullable=False)
    serious_count = Column(Integer, default=0, nullable=False)

    is_regression = Column(Boolean, default=False, nullable=False)
    score_change = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)

    domain = relationship("AssuranceDomain", back_populates="scans")

    __table_args__ = (
        Index("idx_assurance_scans_domain_created", "domain_id", "created_at"),
    )


class AssuranceAlert(BaseModel):
    """
    Materialized regression notification. Only the resolution fields change
    after creation.
    """
    __tablename__ = "assurance_alerts"

    domain_id = Column(String, ForeignKey("assurance_domains.id", ondelete="CASCADE"), nullable=False, index=True)
    assurance_scan_id = Column(String, ForeignKey("assurance_scans.id", ondelete="SET NULL"), nullable=True)
    rule_id = Column(String, ForeignKey("alert_rules.id", ondelete="SET NULL"), nullable=True)

    type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)

    current_score = Column(Float, nullable=True)
    previous_score = Column(Float, nullable=True)
    threshold = Column(Float, nullable=True)

    resolved = Column(Boolean, default=False, nullable=False, index=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    notified_at = Column(DateTime, nullable=True)

    domain = relationship("AssuranceDomain")

    __table_args__ = (
        Index("idx_assurance_alerts_cooldown", "domain_id", "type", "resolved", "created_at"),
    )


class AlertRule(BaseModel):
    """
    Persisted alerting rule. domain_id NULL means the rule applies to every
    domain that has no rule of its own.
    """
    __tablename__ = "alert_rules"

    domain_id = Column(String, ForeignKey("assurance_domains.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)

    score_drop_threshold = Column(Float, nullable=False)
    new_violations_threshold = Column(Integer, nullable=False)
    compliance_threshold = Column(Float, nullable=False)
    severity_levels = Column(JSON, nullable=False, default=list)  # severities that notify
    cooldown_minutes = Column(Integer, default=60, nullable=False)

    notify_email = Column(Boolean, default=True, nullable=False)
    notify_webhook = Column(Boolean, default=False, nullable=False)
    webhook_url = Column(String, nullable=True)
    recipients = Column(JSON, nullable=False, default=list)

    total_alerts_sent = Column(Integer, default=0, nullable=False)
    last_triggered_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("cooldown_minutes >= 0", name="ck_alert_rule_cooldown"),
        CheckConstraint("score_drop_threshold > 0", name="ck_alert_rule_score_drop"),
    )
