from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from core.actor import current_actor
from db.inventory.movement import MovementType
from schemas.inventory import (
    AppliedMovementRead,
    MovementCreate,
    MovementPageRead,
    ProductStockRead,
    ReplayRead,
    TransferCreate,
    TransferRead,
)
from services.container import InventoryServices, get_services
from services.ledger import MAX_PAGE_SIZE, MovementRequest

router = APIRouter()


@router.post("/movements", response_model=AppliedMovementRead, status_code=status.HTTP_201_CREATED)
async def create_movement(
    payload: MovementCreate,
    actor_id: UUID = Depends(current_actor),
    services: InventoryServices = Depends(get_services),
):
    applied = await services.ledger.apply_movement(
        MovementRequest(
            product_id=payload.product_id,
            type=MovementType(payload.type),
            quantity=payload.quantity,
            actor_id=actor_id,
            from_location_id=payload.from_location_id,
            to_location_id=payload.to_location_id,
            reason=payload.reason,
        )
    )
    return AppliedMovementRead.model_validate(applied)


@router.post("/transfers", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: TransferCreate,
    actor_id: UUID = Depends(current_actor),
    services: InventoryServices = Depends(get_services),
):
    """Move stock between two locations as one TRANSFER movement."""
    result = await services.transfers.transfer_stock(
        product_id=payload.product_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
        actor_id=actor_id,
        reason=payload.reason,
    )
    return TransferRead.model_validate(result)


@router.get("/transfers", response_model=MovementPageRead)
async def list_transfers(
    product_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    services: InventoryServices = Depends(get_services),
):
    page = await services.transfers.get_transfer_history(
        product_id=product_id, location_id=location_id, limit=limit, offset=offset
    )
    return MovementPageRead.model_validate(page)


@router.get("/products/{product_id}/stock", response_model=ProductStockRead)
async def get_product_stock(product_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.ledger.get_product_stock(product_id)


@router.get("/products/{product_id}/movements", response_model=MovementPageRead)
async def list_product_movements(
    product_id: UUID,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    services: InventoryServices = Depends(get_services),
):
    page = await services.ledger.get_stock_movements(product_id, limit=limit, offset=offset)
    return MovementPageRead.model_validate(page)


@router.get("/products/{product_id}/replay", response_model=ReplayRead)
async def replay_product(product_id: UUID, services: InventoryServices = Depends(get_services)):
    """Recompute quantities from the movement history and compare with the stored ones."""
    return ReplayRead.model_validate(await services.ledger.replay_product(product_id))
