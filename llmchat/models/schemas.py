import uuid
import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TITLE = "New Conversation"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Record(BaseModel):
    """Persisted record. Field names are stored in camelCase, which is the on-disk contract."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: dict):
        return cls.model_validate(data)


class Conversation(Record):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str = DEFAULT_TITLE
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)


class Message(Record):
    id: Optional[str] = None
    conversation_id: str
    content: str
    is_from_user: bool
    timestamp: Optional[datetime.datetime] = None
    model_name: Optional[str] = None


class QueueStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class QueueItem(Record):
    id: str = Field(default_factory=new_id)
    user_id: str
    conversation_id: str
    query: str
    status: QueueStatus = QueueStatus.PENDING
    created_at: datetime.datetime = Field(default_factory=utcnow)
    estimated_process_time: datetime.timedelta = datetime.timedelta(seconds=30)


class User(Record):
    id: str = Field(default_factory=new_id)
    username: str
    password_hash: str
    salt: str
    role: str = "User"
    created_at: datetime.datetime = Field(default_factory=utcnow)


# ── API payloads ─────────────────────────────────────────────────────────────

class SubmitMessageRequest(BaseModel):
    text: str


class ConversationDetail(BaseModel):
    conversation: Conversation
    messages: List[Message]


class QueueItemStatus(BaseModel):
    item: QueueItem
    position: Optional[int] = None


class RegisterRequest(BaseModel):
    username: str
    password: str


class UserPublic(BaseModel):
    id: str
    username: str
    role: str
    created_at: datetime.datetime
