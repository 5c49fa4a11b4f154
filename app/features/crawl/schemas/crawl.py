"""
Crawl Schemas

Request and response models for the crawl API endpoints.
"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class CrawlStartRequest(BaseModel):
    """Request to start a crawl of an existing site."""
    site_id: str
    max_pages: Optional[int] = Field(default=None, ge=1, le=1000)
    max_depth: Optional[int] = Field(default=None, ge=0, le=10)
    include_sitemap: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "site_id": "0190a1b2-7c3d-7e4f-8a9b-0c1d2e3f4a5b",
                "max_pages": 50,
                "max_depth": 3,
                "include_sitemap": True,
            }
        }


class CrawlStartResponse(BaseModel):
    crawl_id: str
    status: str
    task_id: Optional[str] = None


class CrawlStatusResponse(BaseModel):
    crawl_id: str
    site_id: str
    status: str
    max_pages: int
    max_depth: int
    pages_done: int
    pages_error: int
    pages_skipped: int
    total_urls: int
    status_counts: Dict[str, int]
    progress: int
    estimated_time_remaining: Optional[str] = None
    is_running: bool
    cancel_requested: bool
    cancelled: bool
    can_restart: bool
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
