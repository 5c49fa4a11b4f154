from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.schemas.assurance import AssuranceScanResponse, DomainCreate, DomainResponse
from app.features.assurance.services import domain_service, trends
from app.features.assurance.workers.tasks import run_assurance_scan
from app.platform.db.session import get_db
from app.platform.exceptions import InvalidStateError
from app.platform.response import api_response

router = APIRouter(prefix="/assurance/domains", tags=["assurance"])


@router.post("")
async def create_domain(payload: DomainCreate, db: AsyncSession = Depends(get_db)):
    domain = await domain_service.create_domain(db, payload)
    return api_response(
        data=DomainResponse.model_validate(domain),
        message="Domain monitoring enabled",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("")
async def list_domains(
    subscription_id: Optional[str] = None,
    active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
):
    domains = await domain_service.list_domains(db, subscription_id=subscription_id, active=active)
    return api_response(
        data=[DomainResponse.model_validate(domain) for domain in domains],
        message="Domains retrieved",
    )


@router.get("/{domain_id}")
async def get_domain(domain_id: str, db: AsyncSession = Depends(get_db)):
    domain = await domain_service.get_domain(db, domain_id)
    return api_response(data=DomainResponse.model_validate(domain), message="Domain retrieved")


@router.delete("/{domain_id}")
async def deactivate_domain(domain_id: str, db: AsyncSession = Depends(get_db)):
    domain = await domain_service.deactivate_domain(db, domain_id)
    return api_response(data={"id": domain.id, "active": domain.active}, message="Domain monitoring stopped")


@router.get("/{domain_id}/scans")
async def list_domain_scans(
    domain_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    scans = await domain_service.list_domain_scans(db, domain_id, limit=limit)
    return api_response(
        data=[AssuranceScanResponse.from_model(scan) for scan in scans],
        message="Assurance scans retrieved",
    )


@router.get("/{domain_id}/trend")
async def get_trend(
    domain_id: str,
    limit: int = Query(8, ge=1, le=52),
    db: AsyncSession = Depends(get_db),
):
    await domain_service.get_domain(db, domain_id)
    points = await trends.calculate_trend(db, domain_id, limit=limit)
    return api_response(data=points, message="Trend retrieved")


@router.get("/{domain_id}/statistics")
async def get_statistics(domain_id: str, db: AsyncSession = Depends(get_db)):
    await domain_service.get_domain(db, domain_id)
    stats = await trends.get_domain_statistics(db, domain_id)
    return api_response(data=stats, message="Statistics retrieved")


@router.post("/{domain_id}/scan")
async def trigger_scan(domain_id: str, db: AsyncSession = Depends(get_db)):
    domain = await domain_service.get_domain(db, domain_id)
    if not domain.active:
        raise InvalidStateError(f"Assurance domain {domain_id} is inactive")

    task = run_assurance_scan.delay(domain.id, "manual")
    return api_response(
        data={"domain_id": domain.id, "task_id": task.id},
        message="Assurance scan queued",
        status_code=status.HTTP_202_ACCEPTED,
    )
