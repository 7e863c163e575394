"""
Direct and group conversations between marketplace users.

Unread counters live on the participant rows. New messages are pushed to
the other participants through the notification hub as ``new_message``
events; they are not stored as notifications. Group membership and title
changes go out as ``conversation_updated``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.models.chat import Conversation, ConversationParticipant, Message
from marketplace.models.user import User
from marketplace.services.notification_hub import NotificationHub, hub
from marketplace.services.pagination import clamp

logger = logging.getLogger(__name__)

CONVERSATION_TYPES = {"direct", "group"}
MESSAGE_TYPES = {"text", "image", "file", "order", "system"}
PREVIEW_LENGTH = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _participant(conversation: Conversation, user_id: int) -> Optional[ConversationParticipant]:
    return next((p for p in conversation.participants if p.user_id == user_id), None)


def _require_participant(conversation: Conversation, user_id: int) -> ConversationParticipant:
    participant = _participant(conversation, user_id)
    if participant is None:
        raise ForbiddenError("User is not a participant in this conversation")
    return participant


def message_payload(message: Message, sender: Optional[User] = None) -> Dict[str, Any]:
    payload = {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "text": message.text,
        "message_type": message.message_type,
        "data": message.data or {},
        "created_at": message.created_at.isoformat() if message.created_at else None,
        "is_edited": message.is_edited,
    }
    if sender is not None:
        payload["sender_name"] = sender.display_name
    return payload


def create_conversation(
    db: Session,
    participant_ids: Iterable[int],
    type: str = "direct",
    title: Optional[str] = None,
    created_by: Optional[int] = None,
) -> Conversation:
    ids = list(dict.fromkeys(participant_ids))
    if type not in CONVERSATION_TYPES:
        raise UserInputError(f"Invalid conversation type: {type}")
    if len(ids) < 2:
        raise UserInputError("A conversation needs at least two participants")
    if type == "direct" and len(ids) != 2:
        raise UserInputError("A direct conversation has exactly two participants")

    found = db.query(func.count(User.id)).filter(User.id.in_(ids)).scalar()
    if found != len(ids):
        raise NotFoundError("One or more participants not found")

    conversation = Conversation(type=type, title=title, created_by=created_by, is_active=True)
    conversation.participants = [ConversationParticipant(user_id=uid) for uid in ids]
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    logger.info(f"Conversation {conversation.id} ({type}) created with {len(ids)} participants")
    return conversation


def _group_for_creator(db: Session, conversation_id: int, user_id: int) -> Conversation:
    conversation = get_conversation(db, conversation_id, user_id)
    if conversation.type != "group":
        raise UserInputError("Only group conversations can be changed")
    if conversation.created_by != user_id:
        AuditLog.log_access_denied("update", "conversation", conversation.id, user_id, "not the creator")
        raise ForbiddenError("Only the conversation creator can change it")
    return conversation


def _publish_update(conversation: Conversation, actor_id: int, channel: NotificationHub, also_notify: Iterable[int] = ()) -> None:
    member_ids = [p.user_id for p in conversation.participants]
    payload = {"conversation_id": conversation.id, "title": conversation.title, "participant_ids": member_ids}
    for user_id in set(member_ids) | set(also_notify):
        if user_id != actor_id:
            channel.publish(user_id, "conversation_updated", payload)


def add_participants(
    db: Session,
    user: User,
    conversation_id: int,
    participant_ids: Iterable[int],
    channel: NotificationHub = hub,
) -> Conversation:
    conversation = _group_for_creator(db, conversation_id, user.id)
    ids = list(dict.fromkeys(participant_ids))
    if not ids:
        raise UserInputError("No participants given")
    current = {p.user_id for p in conversation.participants}
    for uid in ids:
        if uid in current:
            raise UserInputError(f"User {uid} is already a participant")
    found = db.query(func.count(User.id)).filter(User.id.in_(ids)).scalar()
    if found != len(ids):
        raise NotFoundError("One or more participants not found")

    for uid in ids:
        conversation.participants.append(ConversationParticipant(user_id=uid))
    db.commit()
    db.refresh(conversation)
    logger.info(f"User {user.id} added {ids} to conversation {conversation.id}")
    _publish_update(conversation, user.id, channel)
    return conversation


def remove_participants(
    db: Session,
    user: User,
    conversation_id: int,
    participant_ids: Iterable[int],
    channel: NotificationHub = hub,
) -> Conversation:
    conversation = _group_for_creator(db, conversation_id, user.id)
    ids = list(dict.fromkeys(participant_ids))
    if not ids:
        raise UserInputError("No participants given")
    if conversation.created_by in ids:
        raise UserInputError("Cannot remove the conversation creator")
    leaving = []
    for uid in ids:
        participant = _participant(conversation, uid)
        if participant is None:
            raise UserInputError(f"User {uid} is not a participant")
        leaving.append(participant)
    if len(conversation.participants) - len(leaving) < 2:
        raise UserInputError("A conversation needs at least two participants")

    for participant in leaving:
        conversation.participants.remove(participant)
    db.commit()
    db.refresh(conversation)
    logger.info(f"User {user.id} removed {ids} from conversation {conversation.id}")
    _publish_update(conversation, user.id, channel, also_notify=ids)
    return conversation


def update_conversation_title(
    db: Session,
    user: User,
    conversation_id: int,
    title: str,
    channel: NotificationHub = hub,
) -> Conversation:
    if not title or not title.strip():
        raise UserInputError("Title is required")
    conversation = _group_for_creator(db, conversation_id, user.id)
    conversation.title = title.strip()
    db.commit()
    db.refresh(conversation)
    _publish_update(conversation, user.id, channel)
    return conversation


def find_direct_conversation(db: Session, user_a: int, user_b: int) -> Optional[Conversation]:
    candidates = (
        db.query(Conversation)
        .join(ConversationParticipant)
        .filter(Conversation.type == "direct", ConversationParticipant.user_id == user_a)
        .order_by(Conversation.id)
        .all()
    )
    for conversation in candidates:
        members = {p.user_id for p in conversation.participants}
        if members == {user_a, user_b}:
            return conversation
    return None


def find_or_create_direct_conversation(db: Session, user_a: int, user_b: int) -> Conversation:
    if user_a == user_b:
        raise UserInputError("Cannot start a conversation with yourself")
    existing = find_direct_conversation(db, user_a, user_b)
    if existing is not None:
        if not existing.is_active:
            existing.is_active = True
            db.commit()
        return existing
    return create_conversation(db, [user_a, user_b], "direct", None, user_a)


def get_conversation(db: Session, conversation_id: int, user_id: Optional[int] = None) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise NotFoundError("Conversation not found")
    if user_id is not None:
        _require_participant(conversation, user_id)
    return conversation


def list_conversations(db: Session, user_id: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Dict[str, Any]]:
    limit, offset = clamp(limit, offset)
    rows = (
        db.query(Conversation, ConversationParticipant)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(
            ConversationParticipant.user_id == user_id,
            ConversationParticipant.archived.is_(False),
            Conversation.is_active.is_(True),
        )
        .order_by(
            func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
            Conversation.id.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [{"conversation": conversation, "unread_count": me.unread_count} for conversation, me in rows]


def search_conversations(db: Session, user_id: int, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    The caller's conversations, archived ones included, whose title, last
    message or another participant's company or contact name contains ``query``.
    """
    term = (query or "").strip()
    if not term:
        raise UserInputError("Search query is required")
    limit, _ = clamp(limit, 0)
    pattern = f"%{term}%"

    named = (
        select(ConversationParticipant.conversation_id)
        .join(User, User.id == ConversationParticipant.user_id)
        .where(
            ConversationParticipant.user_id != user_id,
            or_(User.company_name.ilike(pattern), User.contact_name.ilike(pattern)),
        )
    )
    rows = (
        db.query(Conversation, ConversationParticipant)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(
            ConversationParticipant.user_id == user_id,
            Conversation.is_active.is_(True),
            or_(
                Conversation.title.ilike(pattern),
                Conversation.last_message_text.ilike(pattern),
                Conversation.id.in_(named),
            ),
        )
        .order_by(
            func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
            Conversation.id.desc(),
        )
        .limit(limit)
        .all()
    )
    return [{"conversation": conversation, "unread_count": me.unread_count} for conversation, me in rows]


def send_message(
    db: Session,
    conversation_id: int,
    sender: User,
    text: str,
    message_type: str = "text",
    data: Optional[Dict[str, Any]] = None,
    channel: NotificationHub = hub,
) -> Message:
    if not text or not text.strip():
        raise UserInputError("Message text is required")
    if message_type not in MESSAGE_TYPES:
        raise UserInputError(f"Invalid message type: {message_type}")

    conversation = get_conversation(db, conversation_id)
    _require_participant(conversation, sender.id)
    if not conversation.is_active:
        raise UserInputError("Conversation is closed")

    now = _now()
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        text=text.strip(),
        message_type=message_type,
        data=data or {},
        read_by=[sender.id],
    )
    try:
        db.add(message)
        for participant in conversation.participants:
            if participant.user_id == sender.id:
                participant.unread_count = 0
                participant.last_read_at = now
            else:
                participant.unread_count += 1
                # A new message brings an archived conversation back
                participant.archived = False
        conversation.last_message_text = message.text[:PREVIEW_LENGTH]
        conversation.last_message_sender_id = sender.id
        conversation.last_message_at = now
        conversation.total_messages += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(message)

    payload = message_payload(message, sender)
    for participant in conversation.participants:
        if participant.user_id != sender.id:
            channel.publish(participant.user_id, "new_message", payload)
    return message


def list_messages(
    db: Session,
    conversation_id: int,
    user_id: int,
    limit: Optional[int] = None,
    before_id: Optional[int] = None,
) -> List[Message]:
    """Newest page of messages, returned oldest first; ``before_id`` pages backwards."""
    get_conversation(db, conversation_id, user_id)
    limit, _ = clamp(limit, 0)
    q = db.query(Message).filter(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
    if before_id is not None:
        q = q.filter(Message.id < before_id)
    page = q.order_by(Message.id.desc()).limit(limit).all()
    page.reverse()
    return page


def mark_as_read(db: Session, conversation_id: int, user_id: int, last_read_message_id: Optional[int] = None) -> bool:
    conversation = get_conversation(db, conversation_id)
    participant = _require_participant(conversation, user_id)
    participant.unread_count = 0
    participant.last_read_at = _now()

    q = db.query(Message).filter(Message.conversation_id == conversation_id, Message.sender_id != user_id)
    if last_read_message_id is not None:
        q = q.filter(Message.id <= last_read_message_id)
    for message in q.all():
        readers = list(message.read_by or [])
        if user_id not in readers:
            message.read_by = readers + [user_id]
    db.commit()
    return True


def _own_message(db: Session, message_id: int, user_id: int, action: str) -> Message:
    message = db.query(Message).filter(Message.id == message_id, Message.is_deleted.is_(False)).first()
    if not message:
        raise NotFoundError("Message not found")
    if message.sender_id != user_id:
        raise ForbiddenError(f"Not authorized to {action} this message")
    return message


def edit_message(db: Session, message_id: int, user_id: int, text: str) -> Message:
    if not text or not text.strip():
        raise UserInputError("Message text is required")
    message = _own_message(db, message_id, user_id, "edit")
    message.text = text.strip()
    message.is_edited = True
    message.edited_at = _now()
    db.commit()
    db.refresh(message)
    return message


def delete_message(db: Session, message_id: int, user_id: int) -> bool:
    message = _own_message(db, message_id, user_id, "delete")
    message.is_deleted = True
    message.deleted_at = _now()
    db.commit()
    return True


def archive_conversation(db: Session, conversation_id: int, user_id: int, archive: bool = True) -> bool:
    conversation = get_conversation(db, conversation_id)
    participant = _require_participant(conversation, user_id)
    participant.archived = archive
    db.commit()
    return True
