"""Conversations and messages."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.models.user import User
from marketplace.schemas.chat import (
    ConversationCreate, ConversationResponse, DirectConversationRequest, MarkReadRequest,
    MessageCreate, MessageEdit, MessageResponse, ParticipantsChange, TitleUpdate,
)
from marketplace.services import chat_service

router = APIRouter()


def _with_unread(conversation, user_id: int, unread: Optional[int] = None) -> ConversationResponse:
    response = ConversationResponse.model_validate(conversation)
    if unread is None:
        me = next((p for p in conversation.participants if p.user_id == user_id), None)
        unread = me.unread_count if me else 0
    response.unread_count = unread
    return response


@router.get("/conversations", response_model=List[ConversationResponse])
def list_conversations(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = chat_service.list_conversations(db, current_user.id, limit, offset)
    return [_with_unread(r["conversation"], current_user.id, r["unread_count"]) for r in rows]


@router.get("/conversations/search", response_model=List[ConversationResponse])
def search_conversations(
    q: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = chat_service.search_conversations(db, current_user.id, q, limit)
    return [_with_unread(r["conversation"], current_user.id, r["unread_count"]) for r in rows]

@router.post("/conversations", response_model=ConversationResponse)
def create_conversation(data: ConversationCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    participant_ids = [current_user.id] + [uid for uid in data.participant_ids if uid != current_user.id]
    conversation = chat_service.create_conversation(db, participant_ids, data.type, data.title, current_user.id)
    return _with_unread(conversation, current_user.id)


@router.post("/conversations/direct", response_model=ConversationResponse)
def direct(data: DirectConversationRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    conversation = chat_service.find_or_create_direct_conversation(db, current_user.id, data.user_id)
    return _with_unread(conversation, current_user.id)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return _with_unread(chat_service.get_conversation(db, conversation_id, current_user.id), current_user.id)


@router.patch("/conversations/{conversation_id}", response_model=ConversationResponse)
def update_title(conversation_id: int, data: TitleUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    conversation = chat_service.update_conversation_title(db, current_user, conversation_id, data.title)
    return _with_unread(conversation, current_user.id)


@router.post("/conversations/{conversation_id}/participants", response_model=ConversationResponse)
def add_participants(
    conversation_id: int,
    data: ParticipantsChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = chat_service.add_participants(db, current_user, conversation_id, data.participant_ids)
    return _with_unread(conversation, current_user.id)


@router.post("/conversations/{conversation_id}/participants/remove", response_model=ConversationResponse)
def remove_participants(
    conversation_id: int,
    data: ParticipantsChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = chat_service.remove_participants(db, current_user, conversation_id, data.participant_ids)
    return _with_unread(conversation, current_user.id)

@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
def list_messages(
    conversation_id: int,
    limit: Optional[int] = Query(None),
    before_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return chat_service.list_messages(db, conversation_id, current_user.id, limit, before_id)


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse)
def send_message(
    conversation_id: int,
    data: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return chat_service.send_message(db, conversation_id, current_user, data.text, data.message_type, data.data)


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: int,
    data: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"success": chat_service.mark_as_read(db, conversation_id, current_user.id, data.last_read_message_id)}


@router.post("/conversations/{conversation_id}/archive")
def archive(
    conversation_id: int,
    archive: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"success": chat_service.archive_conversation(db, conversation_id, current_user.id, archive)}


@router.patch("/messages/{message_id}", response_model=MessageResponse)
def edit_message(message_id: int, data: MessageEdit, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return chat_service.edit_message(db, message_id, current_user.id, data.text)


@router.delete("/messages/{message_id}")
def delete_message(message_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": chat_service.delete_message(db, message_id, current_user.id)}
