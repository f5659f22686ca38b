import logging
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from access_guard import ensure_participant
from chat_directory import get_chat
from errors import ChatNotFound, EmptyContent, MessageNotFound, NotAParticipant
from models import Chat, Message

logger = logging.getLogger(__name__)


def send_message(db: Session, chat_id: int, sender_id: str, content: str) -> Message:
    # Row lock keeps created_at monotonic for concurrent senders in one chat
    chat = db.query(Chat).filter(Chat.id == chat_id).with_for_update().first()
    if not chat:
        raise ChatNotFound(f"Chat {chat_id} not found")
    ensure_participant(chat, sender_id)

    content = (content or "").strip()
    if not content:
        raise EmptyContent("Message content cannot be empty")

    now = datetime.utcnow()
    if chat.last_message_at and chat.last_message_at > now:
        now = chat.last_message_at

    message = Message(
        chat_id=chat.id,
        sender_id=sender_id,
        content=content,
        created_at=now,
        delivered=False,
        read=False,
    )
    db.add(message)
    chat.last_message_at = now
    db.commit()
    db.refresh(message)

    logger.info(f"Message {message.id} sent by {sender_id} in chat {chat.id}")
    return message


def list_messages(db: Session, chat_id: int, requester_id: str) -> List[Message]:
    get_chat(db, chat_id, requester_id)
    return (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def _message_for_recipient(db: Session, message_id: int, requester_id: str) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise MessageNotFound(f"Message {message_id} not found")
    ensure_participant(message.chat, requester_id)
    if message.sender_id == requester_id:
        raise NotAParticipant("Only the recipient can update the status of a message")
    return message


def mark_delivered(db: Session, message_id: int, requester_id: str) -> Message:
    message = _message_for_recipient(db, message_id, requester_id)
    if not message.delivered:
        message.delivered = True
        db.commit()
        db.refresh(message)
        logger.info(f"Message {message_id} delivered to {requester_id}")
    return message


def mark_read(db: Session, message_id: int, requester_id: str) -> Message:
    message = _message_for_recipient(db, message_id, requester_id)
    if not message.read:
        message.delivered = True
        message.read = True
        db.commit()
        db.refresh(message)
        logger.info(f"Message {message_id} read by {requester_id}")
    return message


def mark_chat_read(db: Session, chat_id: int, requester_id: str) -> int:
    """Mark every message addressed to `requester_id` in the chat as read.

    Returns the number of messages that changed.
    """
    get_chat(db, chat_id, requester_id)
    updated = (
        db.query(Message)
        .filter(
            Message.chat_id == chat_id,
            Message.sender_id != requester_id,
            Message.read.is_(False),
        )
        .update({Message.delivered: True, Message.read: True}, synchronize_session=False)
    )
    db.commit()
    if updated:
        logger.info(f"{updated} messages in chat {chat_id} read by {requester_id}")
    return updated
