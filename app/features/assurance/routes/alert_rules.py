from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assurance.schemas.alert_rule import AlertRuleCreate, AlertRuleResponse, AlertRuleUpdate
from app.features.assurance.services import alert_rules
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/assurance/alert-rules", tags=["assurance"])


@router.get("")
async def list_rules(domain_id: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    rules = await alert_rules.list_rules(db, domain_id=domain_id)
    return api_response(
        data=[AlertRuleResponse.model_validate(rule) for rule in rules],
        message="Alert rules retrieved",
    )


@router.post("")
async def create_rule(payload: AlertRuleCreate, db: AsyncSession = Depends(get_db)):
    rule = await alert_rules.create_rule(db, payload)
    return api_response(
        data=AlertRuleResponse.model_validate(rule),
        message="Alert rule created",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("/{rule_id}")
async def get_rule(rule_id: str, db: AsyncSession = Depends(get_db)):
    rule = await alert_rules.get_rule(db, rule_id)
    return api_response(data=AlertRuleResponse.model_validate(rule), message="Alert rule retrieved")


@router.patch("/{rule_id}")
async def update_rule(rule_id: str, payload: AlertRuleUpdate, db: AsyncSession = Depends(get_db)):
    rule = await alert_rules.update_rule(db, rule_id, payload)
    return api_response(data=AlertRuleResponse.model_validate(rule), message="Alert rule updated")


@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, db: AsyncSession = Depends(get_db)):
    await alert_rules.delete_rule(db, rule_id)
    return api_response(data={"id": rule_id}, message="Alert rule deleted")
