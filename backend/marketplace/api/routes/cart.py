"""Cart: automatic and explicit batch selection."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.models.user import User
from marketplace.schemas.cart import AddBatchToCartRequest, AddToCartRequest, CartResponse, UpdateCartBatchRequest
from marketplace.services import cart_service

router = APIRouter()


@router.get("", response_model=CartResponse)
def get_cart(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return cart_service.get_cart(db, current_user.id)


@router.post("/items", response_model=CartResponse)
def add_to_cart(data: AddToCartRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Allocate ``quantity`` across the product's batches, earliest expiry first for drugs."""
    return cart_service.add_to_cart(db, current_user, data.product_id, data.quantity)


@router.post("/batches", response_model=CartResponse)
def add_batch(data: AddBatchToCartRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return cart_service.add_specific_batch_to_cart(db, current_user, data.product_id, data.batch_id, data.quantity)


@router.patch("/items/{product_id}/batches/{batch_id}", response_model=CartResponse)
def update_batch_item(
    product_id: int,
    batch_id: int,
    data: UpdateCartBatchRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return cart_service.update_cart_batch_item(db, current_user, product_id, batch_id, data.quantity)


@router.delete("/items/{product_id}", response_model=CartResponse)
def remove_product(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return cart_service.remove_product_from_cart(db, current_user, product_id)


@router.delete("/items/{product_id}/batches/{batch_id}", response_model=CartResponse)
def remove_batch(product_id: int, batch_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return cart_service.remove_batch_from_cart(db, current_user, product_id, batch_id)


@router.delete("", response_model=CartResponse)
def clear_cart(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return cart_service.clear_cart(db, current_user)
