from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.sites.schemas.site import SiteCreate, SiteResponse
from app.features.sites.services import site_service
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/sites", tags=["sites"])


@router.post("")
async def create_site(payload: SiteCreate, db: AsyncSession = Depends(get_db)):
    site, created = await site_service.get_or_create_site(
        db, url=payload.url, account_id=payload.account_id, display_name=payload.display_name
    )
    return api_response(
        data=SiteResponse.from_model(site),
        message="Site created" if created else "Site already exists",
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
    )


@router.get("/{site_id}")
async def get_site(site_id: str, db: AsyncSession = Depends(get_db)):
    site = await site_service.get_site(db, site_id)
    return api_response(data=SiteResponse.from_model(site), message="Site retrieved")


@router.delete("/{site_id}")
async def delete_site(site_id: str, db: AsyncSession = Depends(get_db)):
    site = await site_service.delete_site(db, site_id)
    return api_response(data={"id": site.id, "status": site.status.value}, message="Site deleted")
