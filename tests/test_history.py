import datetime
import threading
import pytest

from llmchat.errors import NotFound
from llmchat.models.schemas import Message, DEFAULT_TITLE
from llmchat.services.document_store import JsonFileDocumentStore
from llmchat.services.history import ConversationStore, title_preview
from llmchat.services.locks import ResourceLocks


def test_create_and_get_conversation(conversations):
    """Test creating a conversation and retrieving it by ID."""
    conv = conversations.create_conversation("user-1")

    assert conv.id is not None
    assert conv.title == DEFAULT_TITLE
    assert conv.created_at == conv.updated_at

    fetched = conversations.get_conversation(conv.id)
    assert fetched == conv


def test_get_unknown_conversation(conversations):
    assert conversations.get_conversation("does-not-exist") is None
    assert conversations.get_conversation("../../etc/passwd") is None


def test_list_conversations_by_owner_most_recent_first(conversations):
    first = conversations.create_conversation("user-1")
    second = conversations.create_conversation("user-1")
    conversations.create_conversation("user-2")

    first.updated_at = second.updated_at + datetime.timedelta(minutes=5)
    conversations.update_conversation(first)

    listed = conversations.list_conversations("user-1")
    assert [c.id for c in listed] == [first.id, second.id]
    assert conversations.list_conversations("nobody") == []


def test_update_conversation(conversations):
    """Test overwriting a conversation's metadata."""
    conv = conversations.create_conversation("user-1")
    conv.title = "Renamed"
    conversations.update_conversation(conv)

    assert conversations.get_conversation(conv.id).title == "Renamed"
    assert conversations.list_conversations("user-1")[0].title == "Renamed"


def test_update_unknown_conversation_is_ignored(conversations):
    conv = conversations.create_conversation("user-1")
    conversations.delete_conversation(conv.id)

    conv.title = "Ghost"
    conversations.update_conversation(conv)

    assert conversations.get_conversation(conv.id) is None
    assert conversations.list_conversations("user-1") == []


def test_delete_conversation(conversations):
    """Test deleting a conversation removes it from listings and drops its messages."""
    conv = conversations.create_conversation("user-1")
    conversations.append_message(conv.id, Message(conversation_id=conv.id, content="Hi", is_from_user=True))

    assert conversations.delete_conversation(conv.id) is True
    assert conversations.get_conversation(conv.id) is None
    assert conversations.list_messages(conv.id) == []
    assert conversations.list_conversations("user-1") == []
    assert conversations.delete_conversation(conv.id) is False


def test_messages_come_back_in_append_order(conversations):
    conv = conversations.create_conversation("user-1")
    texts = [f"message {i}" for i in range(10)]
    for i, text in enumerate(texts):
        conversations.append_message(
            conv.id, Message(conversation_id=conv.id, content=text, is_from_user=i % 2 == 0)
        )

    messages = conversations.list_messages(conv.id)
    assert [m.content for m in messages] == texts
    assert all(m.id for m in messages)
    timestamps = [m.timestamp for m in messages]
    assert timestamps == sorted(timestamps)


def test_append_keeps_timestamps_non_decreasing(conversations):
    conv = conversations.create_conversation("user-1")
    future = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
    conversations.append_message(
        conv.id, Message(conversation_id=conv.id, content="from the future", is_from_user=True, timestamp=future)
    )
    later = conversations.append_message(
        conv.id, Message(conversation_id=conv.id, content="now", is_from_user=False)
    )

    assert later.timestamp >= future


def test_append_keeps_given_id(conversations):
    conv = conversations.create_conversation("user-1")
    msg = conversations.append_message(
        conv.id, Message(id="fixed", conversation_id=conv.id, content="x", is_from_user=True)
    )
    assert msg.id == "fixed"
    assert conversations.get_message("fixed") == msg


def test_get_message_searches_all_conversations(conversations):
    a = conversations.create_conversation("user-1")
    b = conversations.create_conversation("user-2")
    conversations.append_message(a.id, Message(conversation_id=a.id, content="in a", is_from_user=True))
    target = conversations.append_message(b.id, Message(conversation_id=b.id, content="in b", is_from_user=True))

    assert conversations.get_message(target.id).content == "in b"
    assert conversations.get_message("missing") is None


class TestRetitle:
    def test_short_text_becomes_title(self, conversations):
        conv = conversations.create_conversation("user-1")
        conversations.retitle_if_default(conv, "What's the weather?")
        assert conversations.get_conversation(conv.id).title == "What's the weather?"

    def test_long_text_is_truncated(self, conversations):
        conv = conversations.create_conversation("user-1")
        text = "x" * 30 + "y" * 50
        conversations.retitle_if_default(conv, text)

        title = conversations.get_conversation(conv.id).title
        assert title == text[:50] + "..."

    def test_fires_only_once(self, conversations):
        conv = conversations.create_conversation("user-1")
        conversations.retitle_if_default(conv, "First question")
        conversations.retitle_if_default(conversations.get_conversation(conv.id), "Second question")

        assert conversations.get_conversation(conv.id).title == "First question"

    def test_refreshes_updated_at(self, conversations):
        conv = conversations.create_conversation("user-1")
        before = conv.updated_at
        conversations.retitle_if_default(conv, "Hello")
        assert conversations.get_conversation(conv.id).updated_at >= before


@pytest.mark.parametrize("text,expected", [
    ("short", "short"),
    ("a" * 50, "a" * 50),
    ("a" * 51, "a" * 50 + "..."),
    ("  padded  ", "  padded  "),
    (" " + "b" * 50, " " + "b" * 49 + "..."),
])
def test_title_preview(text, expected):
    assert title_preview(text) == expected


def test_append_to_deleted_conversation(conversations):
    conv = conversations.create_conversation("user-1")
    conversations.delete_conversation(conv.id)

    with pytest.raises(NotFound):
        conversations.append_message(conv.id, Message(conversation_id=conv.id, content="late", is_from_user=False))
    assert conversations.list_messages(conv.id) == []


def test_append_with_invalid_id(conversations):
    with pytest.raises(NotFound):
        conversations.append_message("../etc", Message(conversation_id="../etc", content="x", is_from_user=True))


def test_concurrent_appends_lose_nothing(tmp_path):
    """Threads appending to one conversation in the file store keep every message and each thread's order."""
    conversations = ConversationStore(JsonFileDocumentStore(str(tmp_path)), ResourceLocks())
    conv = conversations.create_conversation("user-1")
    threads_count, per_thread = 8, 25

    def writer(t):
        for i in range(per_thread):
            conversations.append_message(
                conv.id, Message(conversation_id=conv.id, content=f"m{t}-{i}", is_from_user=True)
            )

    threads = [threading.Thread(target=writer, args=(t,)) for t in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    messages = conversations.list_messages(conv.id)
    assert len(messages) == threads_count * per_thread
    assert len({m.id for m in messages}) == len(messages)
    for t in range(threads_count):
        mine = [m.content for m in messages if m.content.startswith(f"m{t}-")]
        assert mine == [f"m{t}-{i}" for i in range(per_thread)]
    timestamps = [m.timestamp for m in messages]
    assert timestamps == sorted(timestamps)
