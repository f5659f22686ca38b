import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import chat_directory
import message_ledger
from auth import get_current_user
from config import CORS_ORIGINS, LOG_LEVEL
from database import engine, get_db
from errors import ChatServiceError, NotAParticipant
from models import Base, User
from redis_client import RedisClient, get_notifier, redis_client
from schemas import (
    ChatCreate, ChatCreated, ChatResponse, ChatSeen, MessageCreate, MessageCreated,
    MessageResponse, MessageStatus, MessageStatusUpdate, UserResponse
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    await redis_client.connect()
    logger.info("Application started")
    yield
    await redis_client.close()
    logger.info("Application shutdown")


app = FastAPI(
    title="Chat API",
    description="One-to-one chat service backed by PostgreSQL, Keycloak and Redis notifications",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "detail": exc.message},
        headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"kind": "ValidationError", "detail": errors})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"kind": "StorageError", "detail": "Storage failure, nothing was changed"}
    )


@app.get("/", tags=["Info"])
async def root():
    return {
        "message": "Chat Backend API",
        "version": "1.0.0",
        "endpoints": {
            "users": "/users",
            "chats": "/chats",
            "messages": "/chats/{chat_id}/messages",
            "docs": "/docs"
        }
    }


@app.get("/users", response_model=List[UserResponse], tags=["Users"])
def list_users(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return (
        db.query(User)
        .filter(User.id != current_user.id)
        .order_by(User.display_name, User.id)
        .all()
    )


@app.get("/users/me", response_model=UserResponse, tags=["Users"])
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@app.post("/chats", response_model=ChatCreated, tags=["Chats"])
async def create_chat(
    payload: ChatCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if current_user.id not in (payload.sender_id, payload.receiver_id):
        logger.warning(f"User {current_user.id} tried to create a chat for other users")
        raise NotAParticipant("You can only create chats you take part in")
    chat = chat_directory.create_chat(db, payload.sender_id, payload.receiver_id)
    return {"chat_id": chat.id}


@app.get("/chats", response_model=List[ChatResponse], tags=["Chats"])
def list_chats(
    user_id: Optional[str] = Query(None, alias="userId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if user_id is not None and user_id != current_user.id:
        raise NotAParticipant("You can only list your own chats")
    chats = chat_directory.list_chats_for_user(db, current_user.id)
    return [chat_directory.summarize_chat(db, chat, current_user.id) for chat in chats]


@app.get("/chats/{chat_id}", response_model=ChatResponse, tags=["Chats"])
def get_chat(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    chat = chat_directory.get_chat(db, chat_id, current_user.id)
    return chat_directory.summarize_chat(db, chat, current_user.id)


@app.get("/chats/{chat_id}/messages", response_model=List[MessageResponse], tags=["Messages"])
def list_messages(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return message_ledger.list_messages(db, chat_id, current_user.id)


@app.post("/chats/{chat_id}/messages", response_model=MessageCreated, status_code=201, tags=["Messages"])
async def send_message(
    chat_id: int,
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: RedisClient = Depends(get_notifier)
):
    message = message_ledger.send_message(db, chat_id, current_user.id, payload.content)
    recipient = message.chat.other_participant(current_user.id)
    await notifier.notify_message(recipient.id, message)
    return {"message_id": message.id}


@app.patch("/chats/{chat_id}/messages/seen", response_model=ChatSeen, tags=["Messages"])
async def mark_chat_seen(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: RedisClient = Depends(get_notifier)
):
    updated = message_ledger.mark_chat_read(db, chat_id, current_user.id)
    if updated:
        chat = chat_directory.get_chat(db, chat_id, current_user.id)
        other = chat.other_participant(current_user.id)
        await notifier.notify_seen(other.id, chat_id, current_user.id)
    return {"updated": updated}


@app.patch("/messages/{message_id}", response_model=MessageStatus, tags=["Messages"])
async def update_message_status(
    message_id: int,
    payload: MessageStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: RedisClient = Depends(get_notifier)
):
    if payload.read:
        message = message_ledger.mark_read(db, message_id, current_user.id)
        await notifier.notify_seen(message.sender_id, message.chat_id, current_user.id)
    else:
        message = message_ledger.mark_delivered(db, message_id, current_user.id)
    return {"message_id": message.id, "delivered": message.delivered, "read": message.read}


@app.get("/health", tags=["Health"])
async def health_check(db: Session = Depends(get_db), notifier: RedisClient = Depends(get_notifier)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "OK"
    except Exception as e:
        db_status = f"ERROR: {e}"

    try:
        await notifier.ping()
        redis_status = "OK"
    except Exception as e:
        redis_status = f"ERROR: {e}"

    return {
        "status": "OK" if db_status == "OK" and redis_status == "OK" else "ERROR",
        "database": db_status,
        "redis": redis_status,
        "timestamp": datetime.utcnow().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
