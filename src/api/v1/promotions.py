from fastapi import APIRouter, Query

from src.core.dependencies import DB, AdminPrincipal, Config, CurrentPrincipal
from src.schemas.promotion import (
    PromotionCreate,
    PromotionResponse,
    PromotionValidation,
    PromotionValidationResponse,
)
from src.services import promotion as promotion_service
from src.utils.constants import UserRole

router = APIRouter(prefix="/promotions", tags=["Promotions"])


@router.get("", response_model=list[PromotionResponse])
async def list_promotions(
    db: DB, principal: CurrentPrincipal, is_active: bool | None = Query(True)
):
    return await promotion_service.get_promotions(db, is_active)


@router.post("", response_model=PromotionResponse, status_code=201)
async def create_promotion(db: DB, admin: AdminPrincipal, data: PromotionCreate):
    return await promotion_service.create_promotion(db, data)


@router.post("/validate", response_model=PromotionValidationResponse)
async def validate_promotion(
    db: DB, principal: CurrentPrincipal, settings: Config, data: PromotionValidation
):
    customer_id = principal.id if principal.role == UserRole.CUSTOMER else None
    return await promotion_service.validate_promotion(db, data, customer_id, settings)
