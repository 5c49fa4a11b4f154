import enum

from sqlalchemy import (
    JSON,
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
from app.platform.exceptions import InvalidStateError
from app.platform.utils.time import utcnow


class ScanStatus(enum.Enum):
    """A scan moves pending -> done | error exactly once."""
    pending = "pending"
    done = "done"
    error = "error"


class ScanTrigger(enum.Enum):
    manual = "manual"
    scheduled = "scheduled"
    crawl = "crawl"


class ScanBatchStatus(enum.Enum):
    queued = "queued"
    running = "running"
    done = "done"
    error = "error"


SCAN_TERMINAL_STATUSES = (ScanStatus.done, ScanStatus.error)
IMPACT_COUNT_FIELDS = ("critical_count", "serious_count", "moderate_count", "minor_count")


class ScanBatch(BaseModel):
    """One ScanSite invocation: an ordered list of page URLs for a single site."""
    __tablename__ = "scan_batches"

    site_id = Column(String, ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    crawl_id = Column(String, ForeignKey("crawls.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(Enum(ScanBatchStatus), default=ScanBatchStatus.queued, nullable=False, index=True)
    trigger = Column(Enum(ScanTrigger), default=ScanTrigger.manual, nullable=False)

    urls = Column(JSON, nullable=False, default=list)
    total_pages = Column(Integer, default=0, nullable=False)
    pages_done = Column(Integer, default=0, nullable=False)
    pages_error = Column(Integer, default=0, nullable=False)

    error_message = Column(Text, nullable=True)
    celery_task_id = Column(String(128), nullable=True, index=True)
    cancel_requested_at = Column(DateTime, nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    scans = relationship("Scan", back_populates="batch", order_by="Scan.sequence")


class Scan(BaseModel):
    """
    One accessibility audit result for a page (page_url set) or a whole site.

    Completed scans are immutable: reruns create a new row linked through
    previous_scan_id.
    """
    __tablename__ = "scans"

    site_id = Column(String, ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    batch_id = Column(String, ForeignKey("scan_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    crawl_url_id = Column(String, ForeignKey("crawl_urls.id", ondelete="SET NULL"), nullable=True)
    page_url = Column(String, nullable=True, index=True)
    sequence = Column(Integer, default=0, nullable=False)  # position in the batch input list

    status = Column(Enum(ScanStatus), default=ScanStatus.pending, nullable=False, index=True)
    trigger = Column(Enum(ScanTrigger), default=ScanTrigger.manual, nullable=False)

    # Results (null until done)
    score = Column(Float, nullable=True)
    base_score = Column(Float, nullable=True)
    keyboard_score = Column(Float, nullable=True)
    screen_reader_score = Column(Float, nullable=True)
    mobile_score = Column(Float, nullable=True)
    wcag_aa_compliance = Column(Float, nullable=True)
    wcag_aaa_compliance = Column(Float, nullable=True)

    issues_count = Column(Integer, nullable=True)
    critical_count = Column(Integer, nullable=True)
    serious_count = Column(Integer, nullable=True)
    moderate_count = Column(Integer, nullable=True)
    minor_count = Column(Integer, nullable=True)

    violations = Column(JSON, nullable=True)
    violations_by_rule = Column(JSON, nullable=True)
    sub_audits = Column(JSON, nullable=True)

    engine_name = Column(String, nullable=True)
    engine_version = Column(String, nullable=True)

    # Comparison against the previous completed scan of the same page/site
    previous_scan_id = Column(String, ForeignKey("scans.id", ondelete="SET NULL"), nullable=True)
    score_change = Column(Float, nullable=True)
    issues_fixed = Column(Integer, nullable=True)
    new_issues = Column(Integer, nullable=True)

    error_reason = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    batch = relationship("ScanBatch", back_populates="scans")
    previous_scan = relationship("Scan", remote_side="Scan.id", foreign_keys=[previous_scan_id])

    __table_args__ = (
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)", name="ck_scan_score_range"),
        CheckConstraint("status != 'done' OR score IS NOT NULL", name="ck_scan_done_has_score"),
        Index("idx_scans_site_page_created", "site_id", "page_url", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in SCAN_TERMINAL_STATUSES

    def _ensure_open(self):
        if self.is_terminal:
            raise InvalidStateError(f"Scan {self.id} is already {self.status.value}")

    def mark_done(self, **fields):
        """Close the scan with its result fields. Raises if already terminal."""
        self._ensure_open()
        for key, value in fields.items():
            setattr(self, key, value)
        if self.score is None:
            raise InvalidStateError(f"Scan {self.id} cannot complete without a score")
        missing = [name for name in IMPACT_COUNT_FIELDS if getattr(self, name) is None]
        if missing:
            raise InvalidStateError(f"Scan {self.id} cannot complete without {', '.join(missing)}")
        self.status = ScanStatus.done
        self.completed_at = utcnow()

    def mark_error(self, reason: str, attempts: int = 0):
        self._ensure_open()
        self.status = ScanStatus.error
        self.error_reason = reason
        self.attempts = attempts
        self.completed_at = utcnow()
