"""Shared fixtures: in-memory structured store, tmp legacy store, scripted model client."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from agentdesk.agents.client import AgentClient, AgentEvent
from agentdesk.api.v1 import conversations, stream
from agentdesk.config import Settings
from agentdesk.db import DatabaseConnection
from agentdesk.models.conversation import ModelDescriptor
from agentdesk.services import ConversationStore, LegacyRecordStore, ProcessConfig, StreamBus
from agentdesk.services.conversation_service import ConversationService
from agentdesk.tasks import TaskContext, TaskRegistry


class FakeAgentClient(AgentClient):
    """
    Scripted model client.

    Every turn pops the next entry of the shared script list. An entry is a
    list of AgentEvent, or a callable taking the prompt id and returning one.
    An AgentEvent of type "wait" blocks until the turn is cancelled.
    """

    def __init__(self, scripts: List[Any], start_error: Optional[Exception] = None):
        super().__init__()
        self.scripts = scripts
        self.start_error = start_error
        self.config: Dict[str, Any] = {}
        self.started = False
        self.prompts: List[str] = []
        self.continuations: List[tuple] = []
        self.history: List[Dict[str, Any]] = []
        self.closed = False

    async def start(self, config: Dict[str, Any]) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.config = config
        self.started = True

    async def send_message_stream(self, query, cancel_event: asyncio.Event, prompt_id: str):
        if isinstance(query, str):
            self.prompts.append(self.apply_history_prefix(query))
        else:
            self.continuations.append((list(query), prompt_id))
        entry = self.scripts.pop(0) if self.scripts else [AgentEvent("content", "ok")]
        events = entry(prompt_id) if callable(entry) else entry
        for event in events:
            if cancel_event.is_set():
                return
            if event.type == "wait":
                await cancel_event.wait()
                return
            if event.type == "raise":
                raise event.data
            yield event

    def add_history(self, parts: List[Dict[str, Any]]) -> None:
        self.history.extend(parts)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path into tmp_path."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        database_path=":memory:",
        legacy_store_path=str(tmp_path / "legacy"),
        process_config_path=str(tmp_path / "process_config.json"),
        log_level="WARNING",
        log_file=None,
    )


@pytest.fixture
def db_conn():
    db = DatabaseConnection(":memory:")
    yield db
    db.close()


@pytest.fixture
def legacy_store(settings):
    return LegacyRecordStore(settings.legacy_store_path)


@pytest.fixture
async def store(db_conn, legacy_store):
    conversation_store = ConversationStore(db_conn, legacy_store)
    yield conversation_store
    await conversation_store.wait_for_migrations()


@pytest.fixture
def bus():
    return StreamBus()


@pytest.fixture
def process_config(settings):
    return ProcessConfig(settings.process_config_path)


@pytest.fixture
def client_scripts() -> List[Any]:
    """Turn scripts consumed by every fake client built in the test."""
    return []


@pytest.fixture
def start_errors() -> List[Exception]:
    """Errors raised by the next fake clients' start(), in order."""
    return []


@pytest.fixture
def built_clients() -> List[FakeAgentClient]:
    return []


@pytest.fixture
def task_context(store, bus, settings, process_config, client_scripts, start_errors, built_clients):
    def factory(conversation):
        error = start_errors.pop(0) if start_errors else None
        client = FakeAgentClient(client_scripts, start_error=error)
        built_clients.append(client)
        return client

    return TaskContext(
        store=store,
        bus=bus,
        settings=settings,
        process_config=process_config,
        client_factory=factory,
    )


@pytest.fixture
async def registry(task_context):
    task_registry = TaskRegistry(task_context)
    yield task_registry
    await task_registry.clear()


@pytest.fixture
def service(store, registry, settings):
    return ConversationService(store, registry, settings)


@pytest.fixture
def model():
    return ModelDescriptor(
        id="provider-1",
        platform="openai",
        name="Test Provider",
        base_url="https://api.example.com/v1",
        api_key="sk-test",
        use_model="gpt-test",
    )


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
async def client(service, bus):
    """Async HTTP client over a test app wired to the fixtures' service."""
    conversations.conversation_service = service
    stream.stream_bus = bus

    # Create a test app without lifespan
    test_app = FastAPI(title="AgentDesk Test")
    test_app.include_router(conversations.router)
    test_app.include_router(stream.router)

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    conversations.conversation_service = None
    stream.stream_bus = None
