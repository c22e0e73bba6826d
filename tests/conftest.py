import os
import sys
import asyncio
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from llmchat.database import make_engine, make_session_factory
from llmchat.services.document_store import SqlDocumentStore, JsonFileDocumentStore
from llmchat.services.locks import ResourceLocks
from llmchat.services.history import ConversationStore
from llmchat.services.work_queue import WorkQueue


class FakeProvider:
    """Stands in for the generation server; records every prompt it receives."""

    def __init__(self, reply="Hello from the model", error=None, delay=0.0, models=None):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.models = models or ["granite3.1-moe:1b"]
        self.calls = []

    async def generate(self, prompt, model):
        self.calls.append((prompt, model))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply

    async def is_available(self):
        return self.error is None

    async def list_models(self):
        return list(self.models)


@pytest.fixture(params=["sql", "json"])
def store(request, tmp_path):
    """Each storage test runs against both backends."""
    if request.param == "sql":
        return SqlDocumentStore(make_session_factory(make_engine("sqlite://")))
    return JsonFileDocumentStore(str(tmp_path / "data"))


@pytest.fixture
def locks():
    return ResourceLocks()


@pytest.fixture
def conversations(store, locks):
    return ConversationStore(store, locks)


@pytest.fixture
def queue(store, locks):
    return WorkQueue(store, locks)


@pytest.fixture
def provider():
    return FakeProvider()
