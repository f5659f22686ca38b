import logging

from errors import NotAParticipant
from models import Chat

logger = logging.getLogger(__name__)


def is_participant(chat: Chat, user_id: str) -> bool:
    return chat.sender_id == user_id or chat.receiver_id == user_id


def ensure_participant(chat: Chat, user_id: str) -> None:
    if not is_participant(chat, user_id):
        logger.warning(f"User {user_id} denied access to chat {chat.id}")
        raise NotAParticipant(f"User {user_id} is not a participant of chat {chat.id}")
