"""
Site management: one row per (account, origin), created on the first scan
request and soft-deleted only.
"""
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.sites.models.site import Site, SiteStatus
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow
from app.platform.utils.url_validator import canonical_origin, validate_url

logger = get_logger(__name__)


async def get_or_create_site(
    db: AsyncSession,
    url: str,
    account_id: str,
    display_name: Optional[str] = None,
) -> Tuple[Site, bool]:
    """
    Get the account's site for this origin, or create it.

    Returns:
        (Site, created: bool)
    """
    is_valid, url_str, error_message = validate_url(url)
    if not is_valid:
        raise InvalidStateError(f"Invalid URL: {error_message}")

    origin = canonical_origin(url_str)

    result = await db.execute(
        select(Site).where(Site.account_id == account_id, Site.root_url == origin)
    )
    site = result.scalar_one_or_none()

    if site:
        if site.status == SiteStatus.deleted:
            # Re-requesting a deleted origin restores the same row and its history
            site.status = SiteStatus.active
            site.deleted_at = None
            await db.commit()
            logger.info(f"Restored site {site.id} ({origin}) for account {account_id}")
        return site, False

    site = Site(
        account_id=account_id,
        root_url=origin,
        display_name=display_name or origin.split("://", 1)[-1],
        status=SiteStatus.active,
        total_scans=0,
    )
    db.add(site)
    await db.commit()
    await db.refresh(site)
    logger.info(f"Created site {site.id} ({origin}) for account {account_id}")
    return site, True


async def get_site(db: AsyncSession, site_id: str, include_deleted: bool = False) -> Site:
    site = await db.get(Site, site_id)
    if not site or (site.status == SiteStatus.deleted and not include_deleted):
        raise NotFoundError(f"Site {site_id} not found")
    return site


async def delete_site(db: AsyncSession, site_id: str) -> Site:
    """Soft delete; crawls and scans keep referencing the row."""
    site = await get_site(db, site_id)
    site.status = SiteStatus.deleted
    site.deleted_at = utcnow()
    await db.commit()
    logger.info(f"Soft-deleted site {site_id}")
    return site
