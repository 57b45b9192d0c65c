from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from core.actor import current_actor
from db.order import OrderStatus
from schemas.inventory import MovementRead
from schemas.orders import OrderCancel, OrderCreate, OrderRead, OrderReturnRead
from services.container import InventoryServices, get_services
from services.fulfillment import OrderLineRequest
from services.ledger import MAX_PAGE_SIZE

router = APIRouter()


@router.post("/", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    actor_id: UUID = Depends(current_actor),
    services: InventoryServices = Depends(get_services),
):
    """Create an order and reserve stock for every line, all or nothing."""
    return await services.fulfillment.create_order(
        lines=[OrderLineRequest(ln.product_id, ln.quantity, ln.unit_price) for ln in payload.lines],
        actor_id=actor_id,
        location_id=payload.location_id,
        order_number=payload.order_number,
        notes=payload.notes,
    )


@router.get("/", response_model=List[OrderRead])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    services: InventoryServices = Depends(get_services),
):
    return await services.fulfillment.list_orders(status=status_filter, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(order_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.fulfillment.get_order(order_id)


@router.get("/{order_id}/movements", response_model=List[MovementRead])
async def get_order_movements(order_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.fulfillment.get_order_movements(order_id)


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    payload: Optional[OrderCancel] = None,
    actor_id: UUID = Depends(current_actor),
    services: InventoryServices = Depends(get_services),
):
    reason = payload.reason if payload else None
    return await services.fulfillment.cancel_order(order_id, actor_id, reason=reason)


@router.post("/{order_id}/complete", response_model=OrderRead, dependencies=[Depends(current_actor)])
async def complete_order(
    order_id: UUID,
    services: InventoryServices = Depends(get_services),
):
    return await services.fulfillment.complete_order(order_id)


@router.post("/{order_id}/return", response_model=OrderReturnRead, status_code=status.HTTP_201_CREATED)
async def return_order(
    order_id: UUID,
    payload: Optional[OrderCancel] = None,
    actor_id: UUID = Depends(current_actor),
    services: InventoryServices = Depends(get_services),
):
    reason = payload.reason if payload else None
    movements = await services.fulfillment.return_order(order_id, actor_id, reason=reason)
    return {"order_id": order_id, "movements": movements}
