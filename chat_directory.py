"""Chat lookup and creation.

A chat exists at most once per unordered pair of users. The pair is stored
sorted in (user_low_id, user_high_id) and covered by a unique constraint, so
two concurrent creators cannot both insert; the loser re-reads the winner's
row.
"""
import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from access_guard import ensure_participant
from errors import ChatNotFound, InvalidParticipant, SelfChat
from models import Chat, Message, User

logger = logging.getLogger(__name__)


def _find_by_pair(db: Session, first_id: str, second_id: str) -> Optional[Chat]:
    low, high = sorted((first_id, second_id))
    return db.query(Chat).filter(Chat.user_low_id == low, Chat.user_high_id == high).first()


def create_chat(db: Session, sender_id: str, receiver_id: str) -> Chat:
    if sender_id == receiver_id:
        raise SelfChat("Cannot start a chat with yourself")

    known = {u.id for u in db.query(User.id).filter(User.id.in_([sender_id, receiver_id]))}
    for user_id in (sender_id, receiver_id):
        if user_id not in known:
            raise InvalidParticipant(f"User {user_id} not found")

    existing = _find_by_pair(db, sender_id, receiver_id)
    if existing:
        return existing

    low, high = sorted((sender_id, receiver_id))
    chat = Chat(
        sender_id=sender_id,
        receiver_id=receiver_id,
        user_low_id=low,
        user_high_id=high,
    )
    db.add(chat)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_by_pair(db, sender_id, receiver_id)
        if existing is None:
            raise
        logger.info(f"Chat for {sender_id}/{receiver_id} created concurrently, reusing {existing.id}")
        return existing

    db.refresh(chat)
    logger.info(f"Created chat {chat.id} between {sender_id} and {receiver_id}")
    return chat


def get_chat(db: Session, chat_id: int, user_id: str) -> Chat:
    chat = db.query(Chat).filter(Chat.id == chat_id).first()
    if not chat:
        raise ChatNotFound(f"Chat {chat_id} not found")
    ensure_participant(chat, user_id)
    return chat


def list_chats_for_user(db: Session, user_id: str) -> List[Chat]:
    return (
        db.query(Chat)
        .options(joinedload(Chat.sender), joinedload(Chat.receiver))
        .filter(or_(Chat.sender_id == user_id, Chat.receiver_id == user_id))
        .order_by(
            func.coalesce(Chat.last_message_at, Chat.created_at).desc(),
            Chat.id.desc(),
        )
        .all()
    )


def summarize_chat(db: Session, chat: Chat, viewer_id: str) -> dict:
    """Build the listing view of a chat as seen by one of its participants."""
    ensure_participant(chat, viewer_id)

    other = chat.other_participant(viewer_id)
    last_message = (
        db.query(Message)
        .filter(Message.chat_id == chat.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .first()
    )
    unread_count = (
        db.query(func.count(Message.id))
        .filter(
            Message.chat_id == chat.id,
            Message.sender_id != viewer_id,
            Message.read.is_(False),
        )
        .scalar()
    )
    return {
        "id": chat.id,
        "sender_id": chat.sender_id,
        "receiver_id": chat.receiver_id,
        "name": chat.display_name_for(viewer_id),
        "recipient_id": other.id,
        "recipient_online": other.online,
        "last_message": last_message.content if last_message else None,
        "last_message_at": chat.last_message_at,
        "unread_count": unread_count or 0,
    }
