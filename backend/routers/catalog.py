from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from schemas.catalog import CategoryCreate, CategoryRead, ProductCreate, ProductRead, ProductUpdate
from services.container import InventoryServices, get_services

router = APIRouter()


@router.post("/categories", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(payload: CategoryCreate, services: InventoryServices = Depends(get_services)):
    return await services.catalog.create_category(payload.name, payload.description)


@router.get("/categories", response_model=List[CategoryRead])
async def list_categories(services: InventoryServices = Depends(get_services)):
    return await services.catalog.list_categories()


@router.post("/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, services: InventoryServices = Depends(get_services)):
    return await services.catalog.create_product(**payload.model_dump())


@router.get("/products", response_model=List[ProductRead])
async def list_products(
    search: Optional[str] = Query(None),
    category_id: Optional[UUID] = None,
    services: InventoryServices = Depends(get_services),
):
    return await services.catalog.list_products(search=search, category_id=category_id)


@router.get("/products/{product_id}", response_model=ProductRead)
async def get_product(product_id: UUID, services: InventoryServices = Depends(get_services)):
    return await services.catalog.get_product(product_id)


@router.patch("/products/{product_id}", response_model=ProductRead)
async def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    services: InventoryServices = Depends(get_services),
):
    return await services.catalog.update_product(product_id, **payload.model_dump(exclude_unset=True))
