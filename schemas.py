from datetime import datetime
from typing import Optional

from pydantic import BaseModel, root_validator, validator
from pydantic.alias_generators import to_camel

from config import MAX_MESSAGE_LENGTH


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class UserResponse(CamelModel):
    id: str
    display_name: str
    email: Optional[str] = None
    online: bool
    last_seen: Optional[datetime] = None


class ChatCreate(CamelModel):
    sender_id: str
    receiver_id: str

    @validator('sender_id', 'receiver_id')
    def id_must_not_be_blank(cls, v):
        if not v or not v.strip():
            raise ValueError('User id cannot be blank')
        return v.strip()


class ChatCreated(CamelModel):
    chat_id: int


class ChatResponse(CamelModel):
    id: int
    sender_id: str
    receiver_id: str
    name: str
    recipient_id: str
    recipient_online: bool
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0


class MessageCreate(CamelModel):
    content: str

    @validator('content')
    def content_must_fit(cls, v):
        if len(v.strip()) > MAX_MESSAGE_LENGTH:
            raise ValueError(f'Message content is too long (max {MAX_MESSAGE_LENGTH} characters)')
        return v


class MessageCreated(CamelModel):
    message_id: int


class MessageResponse(CamelModel):
    id: int
    chat_id: int
    sender_id: str
    content: str
    created_at: datetime
    delivered: bool
    read: bool


class MessageStatusUpdate(CamelModel):
    delivered: Optional[bool] = None
    read: Optional[bool] = None

    @validator('delivered', 'read')
    def flags_only_move_forward(cls, v):
        if v is False:
            raise ValueError('Status flags can only be set to true')
        return v

    @root_validator(skip_on_failure=True)
    def at_least_one_flag(cls, values):
        if not values.get('delivered') and not values.get('read'):
            raise ValueError('Either delivered or read must be set')
        return values


class MessageStatus(CamelModel):
    message_id: int
    delivered: bool
    read: bool


class ChatSeen(CamelModel):
    updated: int
