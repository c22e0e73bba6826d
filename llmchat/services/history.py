import re
import logging
import datetime
from typing import List, Optional

from llmchat.errors import NotFound
from llmchat.models.schemas import Conversation, Message, DEFAULT_TITLE, new_id, utcnow
from llmchat.services.locks import ResourceLocks

logger = logging.getLogger(__name__)

INDEX_COLLECTION = "conversations"
TITLE_PREVIEW_LENGTH = 50

_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def _meta_collection(conv_id: str) -> str:
    return f"conversations/{conv_id}/meta"


def _messages_collection(conv_id: str) -> str:
    return f"conversations/{conv_id}/messages"


def _is_valid_id(conv_id: str) -> bool:
    return bool(conv_id) and bool(_ID_RE.fullmatch(conv_id))


def title_preview(text: str, length: int = TITLE_PREVIEW_LENGTH) -> str:
    """Cut the raw text at `length` characters; surrounding whitespace is kept as typed."""
    return text[:length] + "..." if len(text) > length else text


class ConversationStore:
    """Conversation metadata plus one append-only message log per conversation."""

    def __init__(self, store, locks: ResourceLocks):
        self._store = store
        self._locks = locks

    def create_conversation(self, user_id: str) -> Conversation:
        now = utcnow()
        conv = Conversation(user_id=user_id, created_at=now, updated_at=now)
        self._store.put(_meta_collection(conv.id), conv.to_document())
        with self._locks.hold(INDEX_COLLECTION):
            self._store.put(INDEX_COLLECTION, conv.to_document())
        logger.info("Created conversation %s for user %s", conv.id, user_id)
        return conv

    def get_conversation(self, conv_id: str) -> Optional[Conversation]:
        if not _is_valid_id(conv_id):
            return None
        data = self._store.get(_meta_collection(conv_id), conv_id)
        return Conversation.from_document(data) if data else None

    def list_conversations(self, user_id: str) -> List[Conversation]:
        convs = [Conversation.from_document(d) for d in self._store.list(INDEX_COLLECTION)]
        owned = [c for c in convs if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    def update_conversation(self, conv: Conversation) -> Conversation:
        with self._locks.hold(INDEX_COLLECTION):
            if self._store.get(INDEX_COLLECTION, conv.id) is None:
                logger.debug("Ignoring update of unknown conversation %s", conv.id)
                return conv
            self._store.put(_meta_collection(conv.id), conv.to_document())
            self._store.put(INDEX_COLLECTION, conv.to_document())
        return conv

    def delete_conversation(self, conv_id: str) -> bool:
        if not _is_valid_id(conv_id):
            return False
        # Index first: a half-deleted conversation must not show up in listings
        with self._locks.hold(INDEX_COLLECTION):
            removed = self._store.remove(INDEX_COLLECTION, conv_id)
        with self._locks.hold(_messages_collection(conv_id)):
            self._store.drop(_messages_collection(conv_id))
            self._store.drop(_meta_collection(conv_id))
        if removed:
            logger.info("Deleted conversation %s", conv_id)
        return removed

    def append_message(self, conv_id: str, message: Message) -> Message:
        if not _is_valid_id(conv_id):
            raise NotFound(f"Conversation {conv_id} not found")
        collection = _messages_collection(conv_id)
        with self._locks.hold(collection):
            # delete_conversation drops the log under this same lock, so a
            # conversation that still has its meta record here cannot vanish mid-append
            if self._store.get(_meta_collection(conv_id), conv_id) is None:
                raise NotFound(f"Conversation {conv_id} not found")
            log = self._store.list(collection)
            timestamp = message.timestamp or utcnow()
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
            if log:
                # Keep the log non-decreasing in time even if the clock steps back
                last = Message.from_document(log[-1]).timestamp
                if last and timestamp < last:
                    timestamp = last
            message = message.model_copy(update={
                "id": message.id or new_id(),
                "conversation_id": conv_id,
                "timestamp": timestamp,
            })
            self._store.put(collection, message.to_document())
        return message

    def list_messages(self, conv_id: str) -> List[Message]:
        if not _is_valid_id(conv_id):
            return []
        return [Message.from_document(d) for d in self._store.list(_messages_collection(conv_id))]

    def get_message(self, message_id: str) -> Optional[Message]:
        """Look a message up by id across every conversation log."""
        for entry in self._store.list(INDEX_COLLECTION):
            data = self._store.get(_messages_collection(entry["id"]), message_id)
            if data:
                return Message.from_document(data)
        return None

    def retitle_if_default(self, conv: Conversation, candidate_text: str) -> Conversation:
        # Re-read under the index lock so two first messages cannot both retitle
        with self._locks.hold(INDEX_COLLECTION):
            current = self.get_conversation(conv.id) or conv
            if current.title != DEFAULT_TITLE:
                return current
            current.title = title_preview(candidate_text)
            current.updated_at = utcnow()
            return self.update_conversation(current)

    def touch_conversation(self, conv_id: str) -> Optional[Conversation]:
        """Refresh updatedAt so the conversation sorts as most recently active."""
        with self._locks.hold(INDEX_COLLECTION):
            conv = self.get_conversation(conv_id)
            if conv is None:
                return None
            conv.updated_at = utcnow()
            return self.update_conversation(conv)
