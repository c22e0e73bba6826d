from typing import List, Optional

from llmchat.errors import NotFound
from llmchat.models.schemas import Conversation, Message, QueueItem
from llmchat.services.history import ConversationStore
from llmchat.services.work_queue import WorkQueue
from llmchat.services.worker import GenerationWorker


class ChatService:
    """
    Operations offered to the web layer. Every call takes an already
    authenticated user id; nothing here checks credentials.
    """

    def __init__(self, conversations: ConversationStore, queue: WorkQueue, worker: GenerationWorker):
        self.conversations = conversations
        self.queue = queue
        self.worker = worker

    def create_conversation(self, user_id: str) -> Conversation:
        return self.conversations.create_conversation(user_id)

    def get_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conv = self.conversations.get_conversation(conversation_id)
        if conv is None or conv.user_id != user_id:
            raise NotFound(f"Conversation {conversation_id} not found")
        return conv

    def list_conversations(self, user_id: str) -> List[Conversation]:
        return self.conversations.list_conversations(user_id)

    def delete_conversation(self, conversation_id: str, user_id: str):
        self.get_conversation(conversation_id, user_id)
        self.conversations.delete_conversation(conversation_id)

    def list_messages(self, conversation_id: str) -> List[Message]:
        return self.conversations.list_messages(conversation_id)

    def submit_message(self, user_id: str, conversation_id: str, text: str) -> QueueItem:
        return self.worker.submit_message(user_id, conversation_id, text)

    async def submit_message_and_wait(self, user_id: str, conversation_id: str, text: str) -> QueueItem:
        return await self.worker.submit_and_wait(user_id, conversation_id, text)

    def get_queue_item(self, item_id: str, user_id: Optional[str] = None) -> QueueItem:
        item = self.queue.get(item_id)
        if item is None or (user_id is not None and item.user_id != user_id):
            raise NotFound(f"Queue item {item_id} not found")
        return item

    def get_queue_position(self, item_id: str) -> Optional[int]:
        return self.queue.position_of(item_id)

    def list_queue(self, user_id: str) -> List[QueueItem]:
        return self.queue.list_for_user(user_id)
