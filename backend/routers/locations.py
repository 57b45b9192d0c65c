from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from schemas.locations import LocationCreate, LocationRead, LocationStockRead
from services.container import InventoryServices, get_services

router = APIRouter()


@router.post("/", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
async def create_location(payload: LocationCreate, services: InventoryServices = Depends(get_services)):
    return await services.locations.create_location(payload.name, payload.description, payload.address)


@router.get("/", response_model=List[LocationRead])
async def list_locations(include_inactive: bool = False, services: InventoryServices = Depends(get_services)):
    return await services.locations.list_locations(include_inactive=include_inactive)


@router.get("/{location_id}", response_model=LocationRead)
async def get_location(location_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.locations.get_location(location_id)


@router.post("/{location_id}/deactivate", response_model=LocationRead)
async def deactivate_location(location_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.locations.deactivate_location(location_id)


@router.post("/{location_id}/activate", response_model=LocationRead)
async def activate_location(location_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.locations.activate_location(location_id)


@router.get("/{location_id}/stock", response_model=List[LocationStockRead])
async def get_location_stock(location_id: UUID, services: InventoryServices = Depends(get_services)):
    rows = await services.locations.get_location_stock(location_id)
    return [LocationStockRead.model_validate(r) for r in rows]
