from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):
    participant_ids: List[int]
    type: str = "group"
    title: Optional[str] = None


class DirectConversationRequest(BaseModel):
    user_id: int


class MessageCreate(BaseModel):
    text: str
    message_type: str = "text"
    data: Optional[Dict[str, Any]] = None


class MessageEdit(BaseModel):
    text: str


class MarkReadRequest(BaseModel):
    last_read_message_id: Optional[int] = None


class ParticipantsChange(BaseModel):
    participant_ids: List[int]


class TitleUpdate(BaseModel):
    title: str


class ParticipantResponse(BaseModel):
    user_id: int
    unread_count: int
    archived: bool

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    id: int
    type: str
    title: Optional[str] = None
    created_by: Optional[int] = None
    is_active: bool
    last_message_text: Optional[str] = None
    last_message_sender_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    total_messages: int
    participants: List[ParticipantResponse] = Field(default_factory=list)
    unread_count: int = 0

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    text: str
    message_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read_by: List[int] = Field(default_factory=list)
    is_edited: bool
    edited_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
