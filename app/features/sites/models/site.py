import enum

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, UniqueConstraint

from app.platform.db.base import BaseModel


class SiteStatus(enum.Enum):
    active = "active"
    deleted = "deleted"


class Site(BaseModel):
    """
    Root domain under audit.

    The origin is fixed at creation time; re-scanning the same origin for the
    same account reuses the row. Sites are soft-deleted only, since crawls and
    scans keep referencing them.
    """
    __tablename__ = "sites"

    account_id = Column(String, index=True, nullable=False)
    root_url = Column(String, index=True, nullable=False)  # canonical origin, e.g. https://example.com
    display_name = Column(String, nullable=True)
    status = Column(Enum(SiteStatus), default=SiteStatus.active, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    total_scans = Column(Integer, default=0, nullable=False)
    last_scanned_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("account_id", "root_url", name="uq_account_site_root_url"),
        Index("ix_sites_root_url_last_scanned", "root_url", "last_scanned_at"),
    )
