from typing import List
from fastapi import APIRouter, Depends, Header, Request, HTTPException

from llmchat.models.schemas import (
    Conversation, ConversationDetail, Message, QueueItem, QueueItemStatus, SubmitMessageRequest,
)
from llmchat.services.chat import ChatService

router = APIRouter(prefix="/chat", tags=["chat"])


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat


def get_user_id(x_user_id: str = Header(default="")) -> str:
    # Identity arrives already authenticated from the layer in front of us
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


@router.post("/conversations", response_model=Conversation, status_code=201)
def create_conversation(user_id: str = Depends(get_user_id), chat: ChatService = Depends(get_chat_service)):
    return chat.create_conversation(user_id)


@router.get("/conversations", response_model=List[Conversation])
def read_conversations(user_id: str = Depends(get_user_id), chat: ChatService = Depends(get_chat_service)):
    return chat.list_conversations(user_id)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def read_conversation(conversation_id: str, user_id: str = Depends(get_user_id),
                      chat: ChatService = Depends(get_chat_service)):
    conv = chat.get_conversation(conversation_id, user_id)
    return ConversationDetail(conversation=conv, messages=chat.list_messages(conversation_id))


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(conversation_id: str, user_id: str = Depends(get_user_id),
                        chat: ChatService = Depends(get_chat_service)):
    chat.delete_conversation(conversation_id, user_id)


@router.get("/conversations/{conversation_id}/messages", response_model=List[Message])
def read_messages(conversation_id: str, user_id: str = Depends(get_user_id),
                  chat: ChatService = Depends(get_chat_service)):
    chat.get_conversation(conversation_id, user_id)
    return chat.list_messages(conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=QueueItemStatus, status_code=202)
async def submit_message(conversation_id: str, body: SubmitMessageRequest, wait: bool = False,
                         user_id: str = Depends(get_user_id), chat: ChatService = Depends(get_chat_service)):
    if wait:
        item = await chat.submit_message_and_wait(user_id, conversation_id, body.text)
    else:
        item = chat.submit_message(user_id, conversation_id, body.text)
    return QueueItemStatus(item=item, position=chat.get_queue_position(item.id))


@router.get("/queue", response_model=List[QueueItem])
def read_queue(user_id: str = Depends(get_user_id), chat: ChatService = Depends(get_chat_service)):
    return chat.list_queue(user_id)


@router.get("/queue/{item_id}", response_model=QueueItemStatus)
def read_queue_item(item_id: str, user_id: str = Depends(get_user_id), chat: ChatService = Depends(get_chat_service)):
    item = chat.get_queue_item(item_id, user_id)
    return QueueItemStatus(item=item, position=chat.get_queue_position(item_id))
