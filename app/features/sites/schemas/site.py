from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SiteCreate(BaseModel):
    url: str
    account_id: str
    display_name: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {"url": "https://example.com", "account_id": "acct_123"}
        }


class SiteResponse(BaseModel):
    id: str
    account_id: str
    root_url: str
    display_name: Optional[str] = None
    status: str
    total_scans: int
    last_scanned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, site) -> "SiteResponse":
        return cls(
            id=site.id,
            account_id=site.account_id,
            root_url=site.root_url,
            display_name=site.display_name,
            status=site.status.value,
            total_scans=site.total_scans,
            last_scanned_at=site.last_scanned_at,
            created_at=site.created_at,
        )
