from datetime import datetime, timedelta

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from config import ONLINE_WINDOW_SECONDS

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    # Subject identifier issued by the identity provider
    id = Column(String(255), primary_key=True)
    display_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    last_seen = Column(DateTime, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def online(self) -> bool:
        if self.last_seen is None:
            return False
        return datetime.utcnow() - self.last_seen <= timedelta(seconds=ONLINE_WINDOW_SECONDS)


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_chats_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    # Unordered pair, stored sorted so the unique constraint covers both directions
    user_low_id = Column(String(255), nullable=False)
    user_high_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_message_at = Column(DateTime, nullable=True, index=True)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
    messages = relationship("Message", back_populates="chat", cascade="all, delete-orphan")

    def other_participant(self, user_id: str) -> User:
        return self.receiver if self.sender_id == user_id else self.sender

    def display_name_for(self, user_id: str) -> str:
        other = self.other_participant(user_id)
        return other.display_name if other else ""


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(String(255), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    delivered = Column(Boolean, default=False, nullable=False)
    read = Column(Boolean, default=False, nullable=False)

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])
