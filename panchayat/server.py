# Panchayat Community Portal: API server
# FastAPI + MongoDB + OpenAI-compatible chat completions

import asyncio
import logging
from datetime import timedelta
from typing import Dict, List, Optional
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError
from jose import JWTError, jwt
from passlib.context import CryptContext
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .assistant import ChatAssistant
from .config import (JWT_ALGORITHM, JWT_EXPIRE_HOURS, JWT_SECRET, MONGODB_DB, MONGODB_URL,
                     OPENAI_MODEL, as_utc, new_id, now_utc, now_utc_ms)
from .models import (Chat, ChatCreate, ChatSummary, Language, Message, MessageCreate,
                     MessageExchange, Notice, ProfileUpdate, Role, TokenResponse, UserCreate,
                     UserLogin, UserResponse, UserRole, VoiceFeedback)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if not JWT_SECRET or len(JWT_SECRET) < 32:
    raise RuntimeError(
        "FATAL: JWT_SECRET must be set in the environment and be at least 32 characters. "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
    )

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login", auto_error=False)

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
app = FastAPI(title="Panchayat Community Portal")
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=(self)"
        return response

app.add_middleware(SecurityHeadersMiddleware)
db_client = None
db = None
assistant: Optional[ChatAssistant] = None
executor = ThreadPoolExecutor(max_workers=10)

class KeyedLocks:
    """Per-key asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        self._locks.clear()
        self._users.clear()

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

# One in-flight exchange per conversation, one writer per mirrored collection
_chat_locks = KeyedLocks()
_mirror_locks = KeyedLocks()

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
def prepare_database(database) -> None:
    database.users.create_index([("email", 1)], unique=True)
    database.chats.create_index([("user_id", 1), ("updated_at", -1)])

@asynccontextmanager
async def lifespan(app: FastAPI):
    global db_client, db, assistant
    db_client = MongoClient(MONGODB_URL)
    db = db_client[MONGODB_DB]
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, prepare_database, db)
    logger.info("Database initialized")
    assistant = ChatAssistant()
    logger.info("Chat model: %s", OPENAI_MODEL)
    yield
    if db_client:
        db_client.close()

app.router.lifespan_context = lifespan

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_db():
    return db

async def get_assistant():
    return assistant

# ---------------------------------------------------------------------------
# Auth Helpers
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(hours=JWT_EXPIRE_HOURS)
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

# Revoked token -> its exp claim (epoch seconds)
_token_blacklist: Dict[str, float] = {}

def revoke_token(token: str) -> None:
    now = now_utc().timestamp()
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        exp = None
    if not isinstance(exp, (int, float)):
        exp = now + JWT_EXPIRE_HOURS * 3600
    # Expired tokens fail jwt.decode anyway
    for stale in [t for t, e in _token_blacklist.items() if e <= now]:
        del _token_blacklist[stale]
    _token_blacklist[token] = exp

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if token in _token_blacklist:
        raise HTTPException(status_code=401, detail="Token has been revoked")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user

def user_to_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]), name=user["name"], email=user["email"], role=user["role"],
        language=user.get("language", "en"), created_at=as_utc(user["created_at"]))

def _token_response(user: dict) -> TokenResponse:
    token = create_access_token({"sub": str(user["_id"]), "jti": new_id()})
    return TokenResponse(access_token=token, user=user_to_response(user))

# ---------------------------------------------------------------------------
# Chat Helpers
# ---------------------------------------------------------------------------
def _message_doc(message: Message) -> dict:
    return {"content": message.content, "role": message.role.value, "timestamp": message.timestamp}

def chat_to_response(doc: dict) -> Chat:
    return Chat(
        id=doc["_id"], title=doc["title"], category=doc["category"], language=doc["language"],
        created_at=as_utc(doc["created_at"]), updated_at=as_utc(doc["updated_at"]),
        messages=[Message(content=m["content"], role=m["role"], timestamp=as_utc(m["timestamp"]))
                  for m in doc.get("messages", [])])

def summary_to_response(doc: dict) -> ChatSummary:
    return ChatSummary(
        id=doc["_id"], title=doc["title"], category=doc["category"], language=doc["language"],
        created_at=as_utc(doc["created_at"]), updated_at=as_utc(doc["updated_at"]))

async def load_owned_chat(db, chat_id: str, user: dict, action: str = "access") -> dict:
    loop = asyncio.get_event_loop()
    chat = await loop.run_in_executor(executor, db.chats.find_one, {"_id": chat_id})
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if chat["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this chat")
    return chat

def _default_language(user: dict) -> Language:
    lang = (user.get("language") or "en").split("-")[0].lower()
    return Language.HINDI if lang == Language.HINDI.value else Language.ENGLISH

# ---------------------------------------------------------------------------
# USER ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/api/users/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
async def register(request: Request, user_data: UserCreate, db=Depends(get_db)):
    email = user_data.email.strip().lower()
    loop = asyncio.get_event_loop()
    existing = await loop.run_in_executor(executor, db.users.find_one, {"email": email})
    if existing:
        raise HTTPException(status_code=400, detail="User already exists")
    # Public registration is viewer-only; admins are seeded
    user_doc = {
        "_id": new_id(), "name": user_data.name, "email": email,
        "hashed_password": hash_password(user_data.password),
        "role": UserRole.VIEWER.value, "language": user_data.language or "en",
        "created_at": now_utc(),
    }
    try:
        await loop.run_in_executor(executor, db.users.insert_one, user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered user %s", email)
    return _token_response(user_doc)

@app.post("/api/users/login", response_model=TokenResponse)
@limiter.limit("5/minute")
async def login(request: Request, form: UserLogin, db=Depends(get_db)):
    # A role in the request body is ignored: the stored role is authoritative
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"email": form.email.strip().lower()})
    if not user or not verify_password(form.password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _token_response(user)

@app.get("/api/users/me", response_model=UserResponse)
async def get_me(user=Depends(get_current_user)):
    return user_to_response(user)

@app.put("/api/users/profile", response_model=UserResponse)
async def update_profile(update: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    set_fields = {}
    if update.name:
        set_fields["name"] = update.name
    if update.language:
        set_fields["language"] = update.language
    if not set_fields:
        return user_to_response(user)
    loop = asyncio.get_event_loop()
    updated = await loop.run_in_executor(executor, lambda: db.users.find_one_and_update(
        {"_id": user["_id"]}, {"$set": set_fields}, return_document=ReturnDocument.AFTER))
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return user_to_response(updated)

@app.post("/api/users/logout")
async def logout(token: Optional[str] = Depends(oauth2_scheme)):
    if token:
        revoke_token(token)
    return {"detail": "Logged out successfully"}

# ---------------------------------------------------------------------------
# CHAT ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/api/chat", response_model=Chat, status_code=status.HTTP_201_CREATED)
async def create_chat(data: ChatCreate, user=Depends(get_current_user), db=Depends(get_db)):
    now = now_utc_ms()
    doc = {
        "_id": new_id(), "user_id": str(user["_id"]),
        "title": (data.title or "").strip() or "New Conversation",
        "category": data.category.value,
        "language": (data.language or _default_language(user)).value,
        "messages": [], "created_at": now, "updated_at": now,
    }
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.chats.insert_one, doc)
    return chat_to_response(doc)

@app.get("/api/chat", response_model=List[ChatSummary])
async def list_chats(user=Depends(get_current_user), db=Depends(get_db)):
    def fetch():
        return list(db.chats.find({"user_id": str(user["_id"])}, {"messages": 0})
                    .sort([("updated_at", -1), ("created_at", -1)]))
    loop = asyncio.get_event_loop()
    chats = await loop.run_in_executor(executor, fetch)
    return [summary_to_response(c) for c in chats]

@app.get("/api/chat/{chat_id}", response_model=Chat)
async def get_chat(chat_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return chat_to_response(await load_owned_chat(db, chat_id, user))

@app.post("/api/chat/{chat_id}/message", response_model=MessageExchange)
@limiter.limit("15/minute")
async def send_message(request: Request, chat_id: str, msg: MessageCreate,
                       user=Depends(get_current_user), db=Depends(get_db),
                       assistant=Depends(get_assistant)):
    await load_owned_chat(db, chat_id, user)
    loop = asyncio.get_event_loop()
    async with _chat_locks.hold(chat_id):
        chat = await load_owned_chat(db, chat_id, user)
        user_message = Message(content=msg.content, role=Role.USER)
        await loop.run_in_executor(executor, lambda: db.chats.update_one(
            {"_id": chat_id},
            {"$push": {"messages": _message_doc(user_message)},
             "$set": {"updated_at": user_message.timestamp}}))
        history = chat_to_response(chat).messages + [user_message]
        reply = await assistant.reply(history, chat["language"], chat["category"])
        assistant_message = Message(content=reply, role=Role.ASSISTANT)
        await loop.run_in_executor(executor, lambda: db.chats.update_one(
            {"_id": chat_id},
            {"$push": {"messages": _message_doc(assistant_message)},
             "$set": {"updated_at": assistant_message.timestamp}}))
    return MessageExchange(user_message=user_message, assistant_message=assistant_message)

@app.delete("/api/chat/{chat_id}")
async def delete_chat(chat_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    await load_owned_chat(db, chat_id, user, action="delete")
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, db.chats.delete_one, {"_id": chat_id})
    return {"detail": "Chat deleted"}

# ---------------------------------------------------------------------------
# SYNC MIRROR ENDPOINTS (whole-collection replace, last writer wins)
# ---------------------------------------------------------------------------
async def _read_mirror(db, name: str) -> list:
    loop = asyncio.get_event_loop()
    doc = await loop.run_in_executor(executor, db.mirror.find_one, {"_id": name})
    return doc.get("items", []) if doc else []

async def _replace_mirror(db, name: str, items: list, user: dict) -> dict:
    loop = asyncio.get_event_loop()
    async with _mirror_locks.hold(name):
        await loop.run_in_executor(executor, lambda: db.mirror.update_one(
            {"_id": name},
            {"$set": {"items": items, "updated_at": now_utc(), "updated_by": str(user["_id"])}},
            upsert=True))
    logger.info("Mirror %s replaced by %s (%d items)", name, user["email"], len(items))
    return {"count": len(items)}

@app.get("/api/sync/notices", response_model=List[Notice])
async def pull_notices(user=Depends(get_current_user), db=Depends(get_db)):
    return await _read_mirror(db, "notices")

@app.put("/api/sync/notices")
async def push_notices(notices: List[Notice], user=Depends(get_current_user), db=Depends(get_db)):
    return await _replace_mirror(db, "notices", [n.model_dump(mode="json") for n in notices], user)

@app.get("/api/sync/feedback", response_model=List[VoiceFeedback])
async def pull_feedback(user=Depends(get_current_user), db=Depends(get_db)):
    return await _read_mirror(db, "feedback")

@app.put("/api/sync/feedback")
async def push_feedback(feedback: List[VoiceFeedback], user=Depends(get_current_user), db=Depends(get_db)):
    return await _replace_mirror(db, "feedback", [f.model_dump(mode="json") for f in feedback], user)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "system": "Panchayat Community Portal",
            "timestamp": now_utc()}

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
