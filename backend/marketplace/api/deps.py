"""FastAPI dependencies: DB session and current user from the bearer token.

The token ``sub`` is the account email. ``get_token_email`` is enough for
first-time initialization; everything else needs a stored account.
"""
from typing import Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from marketplace.core.security import decode_access_token
from marketplace.db.session import SessionLocal
from marketplace.models.user import User
from marketplace.services.user_service import get_by_email
from marketplace.services.chapa_client import ChapaClient, get_chapa_client

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_token_email(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    sub = decode_access_token(credentials.credentials)
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return sub


def user_for_token(db: Session, token: Optional[str]) -> Optional[User]:
    """Resolve a raw token outside the HTTP dependency chain (websockets)."""
    sub = decode_access_token(token) if token else None
    return get_by_email(db, sub) if sub else None


def get_current_user(
    db: Session = Depends(get_db),
    email: str = Depends(get_token_email),
) -> User:
    """Load current user from DB."""
    user = get_by_email(db, email)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_payment_client() -> ChapaClient:
    return get_chapa_client()
