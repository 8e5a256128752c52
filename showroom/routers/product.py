# showroom/routers/product.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from showroom.crud.product import ProductRepository
from showroom.routers.deps import get_product_repo, require_admin
from showroom.schemas.product import ProductCreate, ProductList, ProductRead, ProductUpdate
from showroom.services.admin_session import AdminSession

router = APIRouter(prefix="/products", tags=["products"])


@router.get(
    "",
    response_model=ProductList,
    summary="List products (newest first)",
)
def list_products(
    response: Response,
    category: Optional[str] = Query(default=None, min_length=1, description="Exact category name"),
    repo: ProductRepository = Depends(get_product_repo),
):
    items = repo.list_products(category=category)
    response.headers["X-Total-Count"] = str(len(items))
    return ProductList(items=[ProductRead.model_validate(p) for p in items], total=len(items))


@router.get(
    "/{product_id}",
    response_model=ProductRead,
    summary="Get product by id",
)
def get_product(product_id: str, repo: ProductRepository = Depends(get_product_repo)):
    return repo.get_product(product_id)


@router.post(
    "",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create product",
)
def create_product(
    payload: ProductCreate,
    repo: ProductRepository = Depends(get_product_repo),
    _admin: AdminSession = Depends(require_admin),
):
    return repo.create_product(payload.model_dump())


@router.put(
    "/{product_id}",
    response_model=ProductRead,
    summary="Update product",
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    repo: ProductRepository = Depends(get_product_repo),
    _admin: AdminSession = Depends(require_admin),
):
    return repo.update_product(product_id, payload.model_dump(exclude_unset=True))


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete product",
    description="Object-store images of the product are removed best effort.",
)
def delete_product(
    product_id: str,
    repo: ProductRepository = Depends(get_product_repo),
    _admin: AdminSession = Depends(require_admin),
):
    repo.delete_product(product_id)
    return None
