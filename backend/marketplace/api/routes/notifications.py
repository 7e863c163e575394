"""Notifications: inbox queries and the live event stream."""
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from marketplace.api.deps import get_current_user, get_db, user_for_token
from marketplace.core.permissions import require_admin
from marketplace.db.session import SessionLocal
from marketplace.models.user import User
from marketplace.schemas.notification import BulkDeleteRequest, NotificationResponse, NotificationStats
from marketplace.services import notification_service
from marketplace.services.notification_hub import Subscription, hub

logger = logging.getLogger(__name__)

router = APIRouter()

POLL_SECONDS = 1.0


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    unread_only: bool = Query(False),
    type: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return notification_service.list_notifications(db, current_user.id, unread_only, type, priority, limit, offset)


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"count": notification_service.get_unread_count(db, current_user.id)}


@router.get("/stats", response_model=NotificationStats)
def stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return notification_service.stats(db, current_user.id)


@router.post("/read-all")
def read_all(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"updated": notification_service.mark_all_as_read(db, current_user.id)}


@router.post("/bulk-delete")
def bulk_delete(data: BulkDeleteRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": notification_service.bulk_delete(db, current_user.id, data.notification_ids)}


@router.post("/cleanup")
def cleanup(days: int = Query(30, ge=1), db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Admin housekeeping: drop read notifications older than ``days``."""
    require_admin(current_user)
    return {"deleted": notification_service.cleanup_read_older_than(db, days)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(notification_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return notification_service.mark_as_read(db, current_user.id, notification_id)


@router.delete("/{notification_id}")
def delete(notification_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": notification_service.delete_notification(db, current_user.id, notification_id)}


def _resolve_user(token: Optional[str]) -> Optional[int]:
    db = SessionLocal()
    try:
        user = user_for_token(db, token)
        return user.id if user else None
    finally:
        db.close()


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await run_in_threadpool(subscription.get, POLL_SECONDS)
        if event is not None:
            await websocket.send_json(event)


async def _wait_for_close(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


@router.websocket("/ws")
async def stream(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Push hub events for the token's user until the client goes away."""
    user_id = await run_in_threadpool(_resolve_user, token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = hub.subscribe(user_id)
    tasks = [asyncio.create_task(_pump(websocket, subscription)), asyncio.create_task(_wait_for_close(websocket))]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Notification stream for user {user_id} ended: {error}")
    finally:
        hub.unsubscribe(subscription)
        logger.debug(f"Notification stream closed for user {user_id}")
