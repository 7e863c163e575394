"""Catalog: products, their batches and the seller's inventory alerts."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.models.user import User
from marketplace.schemas.product import (
    BatchCreate, BatchResponse, BatchUpdate, ProductCreate, ProductResponse, ProductUpdate,
)
from marketplace.services import catalog_service

router = APIRouter()


@router.get("", response_model=List[ProductResponse])
def list_products(
    product_type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    owner_id: Optional[int] = Query(None),
    sort_by: Optional[str] = Query(None),
    sort_order: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Active listings for buyers."""
    return catalog_service.list_products(
        db,
        product_type=product_type.upper() if product_type else None,
        category=category,
        search=search,
        owner_id=owner_id,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.post("", response_model=ProductResponse)
def create_product(data: ProductCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    fields = data.model_dump(exclude={"product_type"}, exclude_none=True)
    return catalog_service.create_product(db, current_user, data.product_type.upper(), fields)


@router.get("/mine", response_model=List[ProductResponse])
def my_products(
    product_type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return catalog_service.list_owner_products(
        db,
        current_user.id,
        product_type=product_type.upper() if product_type else None,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/inventory/low-stock", response_model=list)
def low_stock(
    threshold: int = Query(20, description="Stock threshold for low stock alert"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return catalog_service.low_stock_batches(db, current_user.id, threshold)


@router.get("/inventory/expiring", response_model=list)
def expiring(
    days: int = Query(30, description="Days until expiry"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return catalog_service.expiring_batches(db, current_user.id, days)


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return catalog_service.get_batch(db, batch_id)


@router.patch("/batches/{batch_id}", response_model=BatchResponse)
def update_batch(batch_id: int, data: BatchUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return catalog_service.update_batch(db, current_user, batch_id, data.model_dump(exclude_unset=True))


@router.delete("/batches/{batch_id}")
def delete_batch(batch_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": catalog_service.delete_batch(db, current_user, batch_id)}


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return catalog_service.get_product(db, product_id)


@router.patch("/{product_id}", response_model=ProductResponse)
def update_product(product_id: int, data: ProductUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return catalog_service.update_product(db, current_user, product_id, data.model_dump(exclude_unset=True))


@router.delete("/{product_id}", response_model=ProductResponse)
def delete_product(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return catalog_service.delete_product(db, current_user, product_id)


@router.get("/{product_id}/stock")
def product_stock(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    catalog_service.get_product(db, product_id)
    return {"product_id": product_id, "quantity": catalog_service.stock_for_product(db, product_id)}


@router.get("/{product_id}/batches", response_model=List[BatchResponse])
def list_batches(
    product_id: int,
    in_stock_only: bool = Query(False),
    sort_by: Optional[str] = Query(None),
    sort_order: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return catalog_service.list_batches(
        db,
        product_id=product_id,
        in_stock_only=in_stock_only,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.post("/{product_id}/batches", response_model=BatchResponse)
def create_batch(product_id: int, data: BatchCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    fields = data.model_dump(exclude={"product_type"}, exclude_none=True)
    return catalog_service.create_batch(db, current_user, product_id, data.product_type.upper(), fields)
