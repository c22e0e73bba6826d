"""
Generation worker: turns a submitted message into a queued request and drives
queued requests through the provider to a persisted reply.

Submission (validate, append the user message, retitle, enqueue) is separate
from processing, which background consumer tasks pick up from the queue.
"""
import asyncio
import logging
from typing import List, Optional

from llmchat.errors import NotFound, ProviderError, StorageError, ValidationError
from llmchat.models.schemas import Message, QueueItem, QueueStatus
from llmchat.services.history import ConversationStore
from llmchat.services.work_queue import WorkQueue

logger = logging.getLogger(__name__)


class GenerationWorker:
    def __init__(
        self,
        conversations: ConversationStore,
        queue: WorkQueue,
        provider,
        model: str,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ):
        self.conversations = conversations
        self.queue = queue
        self.provider = provider
        self.model = model
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._wakeup: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    # ── Submission ───────────────────────────────────────────────────────────

    def submit_message(self, user_id: str, conversation_id: str, text: str) -> QueueItem:
        if not text or not text.strip():
            raise ValidationError("Message text must not be empty")

        conv = self.conversations.get_conversation(conversation_id)
        if conv is None or conv.user_id != user_id:
            raise NotFound(f"Conversation {conversation_id} not found")

        self.conversations.append_message(
            conversation_id,
            Message(conversation_id=conversation_id, content=text, is_from_user=True),
        )
        self.conversations.retitle_if_default(conv, text)
        item = self.queue.enqueue(user_id, conversation_id, text)

        if self._wakeup is not None:
            self._wakeup.set()
        return item

    async def submit_and_wait(self, user_id: str, conversation_id: str, text: str) -> QueueItem:
        """Submit and drive the new item right away instead of leaving it to a consumer."""
        item = self.submit_message(user_id, conversation_id, text)
        claimed = await self._claim(self.queue.claim, item.id)
        if claimed is not None:
            return await self.process_item(claimed)

        # A background consumer got there first; wait for its outcome
        while True:
            current = await asyncio.to_thread(self.queue.get, item.id)
            if current is None or current.status.is_terminal:
                return current
            await asyncio.sleep(self.poll_interval)

    # ── Processing ───────────────────────────────────────────────────────────

    async def process_next(self) -> Optional[QueueItem]:
        """Claim the oldest Pending item and drive it to a terminal status."""
        item = await self._claim(self.queue.claim_next)
        if item is None:
            return None
        return await self.process_item(item)

    async def _claim(self, claim, *args) -> Optional[QueueItem]:
        pending = asyncio.ensure_future(asyncio.to_thread(claim, *args))
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            # A claim that lands after cancellation must not leave its item Processing
            item = await pending
            if item is not None:
                self._fail(item)
            raise

    async def process_item(self, item: QueueItem) -> QueueItem:
        """Drive a claimed (Processing) item to Completed or Failed."""
        logger.info("Processing queue item %s (conversation %s)", item.id, item.conversation_id)

        try:
            reply = await asyncio.wait_for(
                self.provider.generate(item.query, self.model),
                timeout=self.timeout,
            )
        except asyncio.CancelledError:
            logger.warning("Queue item %s was cancelled during generation", item.id)
            self._fail(item)
            raise
        except asyncio.TimeoutError:
            logger.warning("Queue item %s timed out after %.1fs", item.id, self.timeout)
            return await asyncio.to_thread(self._fail, item)
        except ProviderError as e:
            logger.warning("Queue item %s failed: %s", item.id, e)
            return await asyncio.to_thread(self._fail, item)
        except Exception:
            logger.exception("Queue item %s failed with an unexpected error", item.id)
            return await asyncio.to_thread(self._fail, item)

        # Store I/O and lock waits happen off the event loop
        save = asyncio.ensure_future(asyncio.to_thread(self._save_reply, item, reply))
        try:
            return await asyncio.shield(save)
        except asyncio.CancelledError:
            # The thread keeps writing; let it settle the item before giving up
            await save
            raise

    def _save_reply(self, item: QueueItem, reply: str) -> QueueItem:
        # Appending the reply is the last write allowed to fail the item
        try:
            if self.conversations.touch_conversation(item.conversation_id) is None:
                raise NotFound(f"Conversation {item.conversation_id} not found")
            self.conversations.append_message(
                item.conversation_id,
                Message(
                    conversation_id=item.conversation_id,
                    content=reply,
                    is_from_user=False,
                    model_name=self.model,
                ),
            )
        except NotFound:
            logger.warning("Conversation %s is gone; dropping the reply to queue item %s",
                           item.conversation_id, item.id)
            return self._fail(item)
        except StorageError as e:
            logger.error("Queue item %s could not be saved: %s", item.id, e)
            return self._fail(item)

        try:
            done = self.queue.set_status(item.id, QueueStatus.COMPLETED)
        except StorageError as e:
            logger.warning("Queue item %s has its reply saved but not its Completed status: %s", item.id, e)
            item.status = QueueStatus.COMPLETED
            return item

        logger.info("Queue item %s completed", item.id)
        return done

    def _fail(self, item: QueueItem) -> QueueItem:
        try:
            return self.queue.set_status(item.id, QueueStatus.FAILED)
        except StorageError as e:
            logger.error("Queue item %s could not be marked Failed: %s", item.id, e)
            item.status = QueueStatus.FAILED
            return item

    # ── Background consumers ─────────────────────────────────────────────────

    async def _consume(self, index: int):
        logger.debug("Consumer %d started", index)
        while True:
            # Clear before claiming so a submission made meanwhile still wakes us
            self._wakeup.clear()
            try:
                item = await self.process_next()
            except StorageError as e:
                logger.error("Consumer %d could not read the queue: %s", index, e)
                item = None
            except Exception:
                logger.exception("Consumer %d hit an unexpected error", index)
                item = None

            if item is None:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    def start(self, concurrency: int = 1):
        if self._tasks:
            return
        # Nothing is running yet, so any Processing item was orphaned by an earlier shutdown
        self.queue.fail_abandoned()
        self._wakeup = asyncio.Event()
        self._tasks = [asyncio.create_task(self._consume(i)) for i in range(concurrency)]
        logger.info("Started %d generation consumer(s) using model %s", concurrency, self.model)

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._wakeup = None
        logger.info("Generation consumers stopped")

    @property
    def running(self) -> bool:
        return bool(self._tasks)
