from __future__ import annotations

from fastapi import APIRouter, Depends, status

from .deps.context import get_actor, get_catalog
from .schemas import ProductCreate
from .services import Actor
from .services.catalog import CatalogService
from .utils.responses import ok

router = APIRouter()


@router.post("/api/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    catalog: CatalogService = Depends(get_catalog),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await catalog.create_product(body, actor))


@router.get("/api/products/{product_id}")
async def get_product(product_id: int, catalog: CatalogService = Depends(get_catalog)) -> dict:
    return ok(await catalog.get_product(product_id))
