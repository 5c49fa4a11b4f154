from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.models.assurance import AlertSeverity, AlertType
from app.features.assurance.schemas.assurance import AlertResponse, ResolveAlertRequest
from app.features.assurance.services import alert_service
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/assurance/alerts", tags=["assurance"])


@router.get("")
async def list_alerts(
    domain_id: Optional[str] = None,
    resolved: Optional[bool] = None,
    severity: Optional[AlertSeverity] = None,
    type: Optional[AlertType] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    page = await alert_service.list_alerts(
        db,
        domain_id=domain_id,
        resolved=resolved,
        severity=severity,
        alert_type=type,
        limit=limit,
        offset=offset,
    )
    return api_response(data=page, message="Alerts retrieved")


@router.get("/summary")
async def get_alert_summary(domain_id: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    summary = await alert_service.get_alert_summary(db, domain_id=domain_id)
    return api_response(data=summary, message="Alert summary retrieved")


@router.post("/{alert_id}/resolve")
async def resolve_alert(alert_id: str, payload: ResolveAlertRequest, db: AsyncSession = Depends(get_db)):
    alert = await alert_service.resolve_alert(db, alert_id, payload.resolved_by)
    return api_response(data=AlertResponse.model_validate(alert), message="Alert resolved")
