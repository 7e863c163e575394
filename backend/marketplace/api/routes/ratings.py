"""Ratings between order parties and of purchased products."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.models.user import User
from marketplace.schemas.order import ReasonRequest
from marketplace.schemas.rating import ProductRatingCreate, RatingResponse, RatingStats, UserRatingCreate
from marketplace.services import rating_service

router = APIRouter()


@router.post("/users", response_model=RatingResponse)
def rate_user(data: UserRatingCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return rating_service.create_user_rating(
        db, current_user, data.rated_user_id, data.order_id, data.rating, data.comment, data.rating_role
    )


@router.post("/products", response_model=RatingResponse)
def rate_product(data: ProductRatingCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return rating_service.create_product_rating(db, current_user, data.product_id, data.order_id, data.rating, data.comment)


@router.get("/can-rate/user")
def can_rate_user(
    order_id: int = Query(...),
    rated_user_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"can_rate": rating_service.can_rate_user(db, current_user, order_id, rated_user_id)}


@router.get("/can-rate/product")
def can_rate_product(
    order_id: int = Query(...),
    product_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"can_rate": rating_service.can_rate_product(db, current_user, order_id, product_id)}


@router.get("/mine", response_model=List[RatingResponse])
def written_by_me(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return rating_service.ratings_by_user(db, current_user.id, limit, offset)


@router.get("/users/{user_id}", response_model=List[RatingResponse])
def for_user(
    user_id: int,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return rating_service.user_ratings(db, user_id, limit, offset)


@router.get("/users/{user_id}/stats", response_model=RatingStats)
def user_stats(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return rating_service.user_rating_stats(db, user_id)


@router.get("/products/{product_id}", response_model=List[RatingResponse])
def for_product(
    product_id: int,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return rating_service.product_ratings(db, product_id, limit, offset)


@router.get("/products/{product_id}/stats", response_model=RatingStats)
def product_stats(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return rating_service.product_rating_stats(db, product_id)


@router.get("/orders/{order_id}", response_model=List[RatingResponse])
def for_order(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return rating_service.ratings_by_order(db, order_id)


@router.delete("/{rating_id}")
def delete(rating_id: int, data: ReasonRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": rating_service.delete_rating(db, current_user, rating_id, data.reason)}
