import datetime
import threading
import pytest

from llmchat.errors import InvalidTransition, NotFound
from llmchat.models.schemas import QueueItem, QueueStatus
from llmchat.services.document_store import JsonFileDocumentStore
from llmchat.services.locks import ResourceLocks
from llmchat.services.work_queue import QUEUE_COLLECTION, WorkQueue

T0 = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


def _put(store, name, seconds, status=QueueStatus.PENDING, user_id="user-1"):
    """Write an item with a fixed createdAt straight into the queue collection."""
    item = QueueItem(id=name, user_id=user_id, conversation_id="conv", query=name, status=status,
                     created_at=T0 + datetime.timedelta(seconds=seconds))
    store.put(QUEUE_COLLECTION, item.to_document())
    return item


def test_enqueue_creates_pending_item(queue):
    item = queue.enqueue("user-1", "conv-1", "Hello?")

    assert item.status == QueueStatus.PENDING
    assert item.query == "Hello?"
    assert item.estimated_process_time == datetime.timedelta(seconds=30)
    assert queue.get(item.id) == item


def test_next_pending_empty(queue):
    assert queue.next_pending() is None


def test_abc_scenario(store, queue):
    _put(store, "C", 3)
    _put(store, "A", 1)
    _put(store, "B", 2)

    assert queue.next_pending().id == "A"
    assert queue.position_of("A") == 1

    queue.set_status("A", QueueStatus.PROCESSING)
    queue.set_status("A", QueueStatus.COMPLETED)

    assert queue.position_of("B") == 1
    assert queue.position_of("C") == 2
    assert queue.position_of("A") is None


def test_failing_head_promotes_next(store, queue):
    _put(store, "A", 1)
    _put(store, "B", 2)

    queue.set_status("A", QueueStatus.PROCESSING)
    assert queue.position_of("B") == 1
    queue.set_status("A", QueueStatus.FAILED)
    assert queue.position_of("B") == 1


def test_ties_keep_insertion_order(store, queue):
    _put(store, "first", 5)
    _put(store, "second", 5)
    _put(store, "third", 5)

    assert queue.next_pending().id == "first"
    assert [queue.position_of(n) for n in ("first", "second", "third")] == [1, 2, 3]


def test_position_of_unknown_or_not_pending(store, queue):
    _put(store, "busy", 1, status=QueueStatus.PROCESSING)
    _put(store, "done", 2, status=QueueStatus.COMPLETED)

    assert queue.position_of("missing") is None
    assert queue.position_of("busy") is None
    assert queue.position_of("done") is None


@pytest.mark.parametrize("terminal", [QueueStatus.COMPLETED, QueueStatus.FAILED])
@pytest.mark.parametrize("target", [QueueStatus.PENDING, QueueStatus.PROCESSING,
                                    QueueStatus.COMPLETED, QueueStatus.FAILED])
def test_terminal_states_never_reopen(store, queue, terminal, target):
    _put(store, "item", 1, status=terminal)
    if target == terminal:
        assert queue.set_status("item", target).status == terminal
        return
    with pytest.raises(InvalidTransition):
        queue.set_status("item", target)
    assert queue.get("item").status == terminal


@pytest.mark.parametrize("current,target", [
    (QueueStatus.PENDING, QueueStatus.COMPLETED),
    (QueueStatus.PENDING, QueueStatus.FAILED),
    (QueueStatus.PROCESSING, QueueStatus.PENDING),
])
def test_illegal_transitions(store, queue, current, target):
    _put(store, "item", 1, status=current)
    with pytest.raises(InvalidTransition):
        queue.set_status("item", target)


def test_invalid_transition_is_an_assertion_failure(store, queue):
    _put(store, "item", 1, status=QueueStatus.COMPLETED)
    with pytest.raises(AssertionError):
        queue.set_status("item", QueueStatus.PENDING)


def test_set_status_accepts_plain_strings(store, queue):
    _put(store, "item", 1)
    assert queue.set_status("item", "Processing").status == QueueStatus.PROCESSING


def test_set_status_unknown_item(queue):
    with pytest.raises(NotFound):
        queue.set_status("missing", QueueStatus.PROCESSING)


def test_list_for_user_ascending(store, queue):
    _put(store, "late", 10)
    _put(store, "other-user", 5, user_id="user-2")
    _put(store, "early", 1, status=QueueStatus.COMPLETED)

    assert [i.id for i in queue.list_for_user("user-1")] == ["early", "late"]
    assert [i.id for i in queue.list_for_user("user-2")] == ["other-user"]


def test_claim_next_moves_head_to_processing(store, queue):
    _put(store, "A", 1)
    _put(store, "B", 2)

    claimed = queue.claim_next()
    assert claimed.id == "A"
    assert claimed.status == QueueStatus.PROCESSING
    assert queue.claim_next().id == "B"
    assert queue.claim_next() is None


def test_claim_specific_item_only_once(store, queue):
    _put(store, "A", 1)

    assert queue.claim("A").status == QueueStatus.PROCESSING
    assert queue.claim("A") is None
    with pytest.raises(NotFound):
        queue.claim("missing")


def test_concurrent_enqueues_lose_nothing(tmp_path):
    """Threads enqueueing against the file store all land in the queue, each in its own order."""
    locks = ResourceLocks()
    store = JsonFileDocumentStore(str(tmp_path))
    queue = WorkQueue(store, locks)
    threads_count, per_thread = 8, 25

    def producer(t):
        for i in range(per_thread):
            queue.enqueue(f"user-{t}", "conv", f"q{t}-{i}")

    threads = [threading.Thread(target=producer, args=(t,)) for t in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stored = {doc["id"] for doc in store.list(QUEUE_COLLECTION)}
    assert len(stored) == threads_count * per_thread
    for t in range(threads_count):
        assert [i.query for i in queue.list_for_user(f"user-{t}")] == [f"q{t}-{i}" for i in range(per_thread)]
    assert queue.position_of(queue.list_for_user("user-7")[-1].id) is not None
