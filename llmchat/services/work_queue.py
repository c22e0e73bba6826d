import logging
from typing import List, Optional

from llmchat.errors import InvalidTransition, NotFound
from llmchat.models.schemas import QueueItem, QueueStatus
from llmchat.services.locks import ResourceLocks

logger = logging.getLogger(__name__)

QUEUE_COLLECTION = "queue"

ALLOWED_TRANSITIONS = {
    (QueueStatus.PENDING, QueueStatus.PROCESSING),
    (QueueStatus.PROCESSING, QueueStatus.COMPLETED),
    (QueueStatus.PROCESSING, QueueStatus.FAILED),
}


class WorkQueue:
    """Generation requests and their Pending → Processing → Completed/Failed lifecycle."""

    def __init__(self, store, locks: ResourceLocks):
        self._store = store
        self._locks = locks

    def _items(self) -> List[QueueItem]:
        return [QueueItem.from_document(d) for d in self._store.list(QUEUE_COLLECTION)]

    def _pending(self) -> List[QueueItem]:
        # sorted() is stable, so equal createdAt keeps insertion order
        return sorted(
            (i for i in self._items() if i.status == QueueStatus.PENDING),
            key=lambda i: i.created_at,
        )

    def enqueue(self, user_id: str, conversation_id: str, query: str) -> QueueItem:
        item = QueueItem(user_id=user_id, conversation_id=conversation_id, query=query)
        with self._locks.hold(QUEUE_COLLECTION):
            self._store.put(QUEUE_COLLECTION, item.to_document())
        logger.info("Enqueued item %s for conversation %s", item.id, conversation_id)
        return item

    def get(self, item_id: str) -> Optional[QueueItem]:
        data = self._store.get(QUEUE_COLLECTION, item_id)
        return QueueItem.from_document(data) if data else None

    def next_pending(self) -> Optional[QueueItem]:
        pending = self._pending()
        return pending[0] if pending else None

    def claim_next(self) -> Optional[QueueItem]:
        """Pick the next Pending item and move it to Processing in one step."""
        with self._locks.hold(QUEUE_COLLECTION):
            item = self.next_pending()
            if item is None:
                return None
            return self.set_status(item.id, QueueStatus.PROCESSING)

    def claim(self, item_id: str) -> Optional[QueueItem]:
        """Move one specific item to Processing; None if it is no longer Pending."""
        with self._locks.hold(QUEUE_COLLECTION):
            item = self.get(item_id)
            if item is None:
                raise NotFound(f"Queue item {item_id} not found")
            if item.status != QueueStatus.PENDING:
                return None
            return self.set_status(item_id, QueueStatus.PROCESSING)

    def set_status(self, item_id: str, new_status: QueueStatus) -> QueueItem:
        new_status = QueueStatus(new_status)
        with self._locks.hold(QUEUE_COLLECTION):
            item = self.get(item_id)
            if item is None:
                raise NotFound(f"Queue item {item_id} not found")
            if item.status == new_status:
                return item
            if (item.status, new_status) not in ALLOWED_TRANSITIONS:
                raise InvalidTransition(item_id, item.status.value, new_status.value)
            item.status = new_status
            self._store.put(QUEUE_COLLECTION, item.to_document())
        logger.debug("Queue item %s is now %s", item_id, new_status.value)
        return item

    def fail_abandoned(self) -> List[QueueItem]:
        """Move items a previous run left in Processing to Failed."""
        failed = []
        with self._locks.hold(QUEUE_COLLECTION):
            for item in self._items():
                if item.status == QueueStatus.PROCESSING:
                    failed.append(self.set_status(item.id, QueueStatus.FAILED))
        if failed:
            logger.warning("Marked %d abandoned queue item(s) as Failed", len(failed))
        return failed

    def list_for_user(self, user_id: str) -> List[QueueItem]:
        return sorted(
            (i for i in self._items() if i.user_id == user_id),
            key=lambda i: i.created_at,
        )

    def position_of(self, item_id: str) -> Optional[int]:
        for position, item in enumerate(self._pending(), start=1):
            if item.id == item_id:
                return position
        return None
