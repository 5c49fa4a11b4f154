"""
Monitored domain management (API side).
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.models.assurance import AssuranceDomain, AssuranceScan
from app.features.assurance.schemas.assurance import DomainCreate
from app.features.assurance.services.schedule import calculate_next_run
from app.features.sites.services import site_service
from app.platform.exceptions import InvalidStateError, NotFoundError
from app.platform.logger import get_logger

logger = get_logger(__name__)


async def create_domain(db: AsyncSession, payload: DomainCreate) -> AssuranceDomain:
    """
    Register a domain for recurring scans. The domain is bound to the
    account's Site for the same origin, which is created if needed.
    """
    account_id = payload.account_id or payload.subscription_id
    site, _ = await site_service.get_or_create_site(db, url=payload.domain, account_id=account_id)

    existing = await db.execute(
        select(AssuranceDomain).where(
            AssuranceDomain.subscription_id == payload.subscription_id,
            AssuranceDomain.domain == site.root_url,
            AssuranceDomain.active.is_(True),
        )
    )
    if existing.scalars().first() is not None:
        raise InvalidStateError(f"{site.root_url} is already monitored for subscription {payload.subscription_id}")

    domain = AssuranceDomain(
        subscription_id=payload.subscription_id,
        domain=site.root_url,
        site_id=site.id,
        active=True,
        frequency=payload.frequency,
        day_of_week=payload.day_of_week,
        time_of_day=payload.time_of_day,
        next_run_at=calculate_next_run(payload.frequency, payload.day_of_week, payload.time_of_day),
        email_recipients=payload.email_recipients,
        webhook_url=payload.webhook_url,
    )
    db.add(domain)
    await db.commit()
    await db.refresh(domain)
    logger.info(f"Monitoring {domain.domain} as {domain.id}, first run at {domain.next_run_at.isoformat()}")
    return domain


async def get_domain(db: AsyncSession, domain_id: str) -> AssuranceDomain:
    domain = await db.get(AssuranceDomain, domain_id)
    if not domain:
        raise NotFoundError(f"Assurance domain {domain_id} not found")
    return domain


async def list_domains(
    db: AsyncSession,
    subscription_id: Optional[str] = None,
    active: Optional[bool] = None,
) -> List[AssuranceDomain]:
    stmt = select(AssuranceDomain).order_by(AssuranceDomain.created_at.desc())
    if subscription_id is not None:
        stmt = stmt.where(AssuranceDomain.subscription_id == subscription_id)
    if active is not None:
        stmt = stmt.where(AssuranceDomain.active.is_(active))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def deactivate_domain(db: AsyncSession, domain_id: str) -> AssuranceDomain:
    """Stop scheduling; history and alerts are kept."""
    domain = await get_domain(db, domain_id)
    domain.active = False
    domain.next_run_at = None
    await db.commit()
    logger.info(f"Deactivated assurance domain {domain_id}")
    return domain


async def list_domain_scans(db: AsyncSession, domain_id: str, limit: int = 20) -> List[AssuranceScan]:
    await get_domain(db, domain_id)
    result = await db.execute(
        select(AssuranceScan)
        .where(AssuranceScan.domain_id == domain_id)
        .order_by(AssuranceScan.created_at.desc(), AssuranceScan.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
