from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import new_id, now_utc, now_utc_ms

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NoticeCategory(str, Enum):
    PUBLIC = "public"
    EMERGENCY = "emergency"
    AGRICULTURE = "agriculture"
    HEALTH = "health"
    EDUCATION = "education"
    SCHEMES = "schemes"
    WEATHER = "weather"
    EMPLOYMENT = "employment"

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class FeedbackStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"

class ChatCategory(str, Enum):
    GENERAL = "general"
    AGRICULTURE = "agriculture"
    HEALTH = "health"
    EDUCATION = "education"
    SCHEMES = "schemes"
    WEATHER = "weather"
    EMPLOYMENT = "employment"

class Language(str, Enum):
    ENGLISH = "en"
    HINDI = "hi"

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"

class UserRole(str, Enum):
    ADMIN = "admin"
    VIEWER = "viewer"

# ---------------------------------------------------------------------------
# Notice board (local cache + remote mirror)
# ---------------------------------------------------------------------------
class Notice(BaseModel):
    id: str = Field(default_factory=lambda: f"notice_{new_id()}")
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1, max_length=20000)
    category: NoticeCategory
    priority: Priority
    language: str = "en-US"
    created_at: datetime = Field(default_factory=now_utc)
    valid_until: Optional[datetime] = None
    is_emergency: bool = False
    author: str = "Admin"
    tags: List[str] = Field(default_factory=list)
    qr_code_url: Optional[str] = None
    is_offline_available: bool = False

class VoiceFeedback(BaseModel):
    id: str = Field(default_factory=lambda: f"feedback_{new_id()}")
    notice_id: str = "general"
    audio_url: Optional[str] = None
    transcript: Optional[str] = Field(None, max_length=5000)
    created_at: datetime = Field(default_factory=now_utc)
    user_id: str
    status: FeedbackStatus = FeedbackStatus.PENDING

    @model_validator(mode="after")
    def check_has_content(self):
        if not (self.transcript and self.transcript.strip()) and not self.audio_url:
            raise ValueError("Feedback needs a transcript or an audio recording")
        return self

# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
class Message(BaseModel):
    content: str
    role: Role
    timestamp: datetime = Field(default_factory=now_utc_ms)

class ChatSummary(BaseModel):
    id: str
    title: str
    category: ChatCategory = ChatCategory.GENERAL
    language: Language = Language.ENGLISH
    created_at: datetime
    updated_at: datetime

class Chat(ChatSummary):
    messages: List[Message] = Field(default_factory=list)

class ChatCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    category: ChatCategory = ChatCategory.GENERAL
    language: Optional[Language] = None

class MessageCreate(BaseModel):
    content: str = Field(..., max_length=2000)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Please provide message content")
        return v

class MessageExchange(BaseModel):
    user_message: Message
    assistant_message: Message

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6, max_length=72)
    language: str = Field("en", max_length=10)

class UserLogin(BaseModel):
    email: str
    password: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    language: Optional[str] = Field(None, max_length=10)

class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    language: str
    created_at: datetime

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
