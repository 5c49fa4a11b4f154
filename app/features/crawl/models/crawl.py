import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class CrawlStatus(enum.Enum):
    """Crawl state machine. done/error are terminal."""
    queued = "queued"
    running = "running"
    done = "done"
    error = "error"


class CrawlUrlStatus(enum.Enum):
    queued = "queued"
    running = "running"
    done = "done"
    error = "error"
    skipped = "skipped"


CRAWL_TERMINAL_STATUSES = (CrawlStatus.done, CrawlStatus.error)
CRAWL_URL_TERMINAL_STATUSES = (CrawlUrlStatus.done, CrawlUrlStatus.error, CrawlUrlStatus.skipped)


class Crawl(BaseModel):
    __tablename__ = "crawls"

    site_id = Column(String, ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    site = relationship("Site", foreign_keys=[site_id])

    status = Column(Enum(CrawlStatus), default=CrawlStatus.queued, nullable=False, index=True)

    max_pages = Column(Integer, nullable=False)
    max_depth = Column(Integer, nullable=False)
    include_sitemap = Column(Boolean, default=True, nullable=False)

    pages_done = Column(Integer, default=0, nullable=False)
    pages_error = Column(Integer, default=0, nullable=False)
    pages_skipped = Column(Integer, default=0, nullable=False)

    error_message = Column(Text, nullable=True)
    celery_task_id = Column(String(128), nullable=True, index=True)

    # Cancellation is requested from the API process and observed by the worker
    cancel_requested_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    urls = relationship(
        "CrawlUrl",
        back_populates="crawl",
        cascade="all, delete-orphan",
        order_by="CrawlUrl.created_at",
    )

    __table_args__ = (
        CheckConstraint("max_pages > 0", name="ck_crawl_max_pages_positive"),
        CheckConstraint("max_depth >= 0", name="ck_crawl_max_depth_non_negative"),
        Index("idx_crawls_site_status", "site_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in CRAWL_TERMINAL_STATUSES


class CrawlUrl(BaseModel):
    __tablename__ = "crawl_urls"

    crawl_id = Column(String, ForeignKey("crawls.id", ondelete="CASCADE"), nullable=False, index=True)
    crawl = relationship("Crawl", back_populates="urls")

    url = Column(String, nullable=False)  # normalized
    depth = Column(Integer, nullable=False)
    parent_url = Column(String, nullable=True)
    status = Column(Enum(CrawlUrlStatus), default=CrawlUrlStatus.queued, nullable=False, index=True)
    reason = Column(Text, nullable=True)

    http_status = Column(Integer, nullable=True)
    title = Column(String, nullable=True)
    links_found = Column(Integer, default=0, nullable=False)
    fetched_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("crawl_id", "url", name="uq_crawl_url_normalized"),
        CheckConstraint("depth >= 0", name="ck_crawl_url_depth_non_negative"),
    )
