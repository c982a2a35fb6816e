"""FastAPI main application."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .db import DatabaseConnection
from .services import ConversationStore, LegacyRecordStore, ProcessConfig, StreamBus
from .services.conversation_service import ConversationService
from .tasks import TaskContext, TaskRegistry
from .utils.logger import init_app_logger
from .api.v1 import conversations, stream


# Initialize logger
logger = init_app_logger(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("=" * 70)
    logger.info("Starting AgentDesk...")
    logger.info("=" * 70)

    logger.info("")
    logger.info("📡 Server Configuration:")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Log File: {settings.log_file}")

    logger.info("")
    logger.info("💾 Storage Configuration:")
    logger.info(f"  Data Dir: {settings.data_dir}")
    logger.info(f"  Database: {settings.database_path}")
    logger.info(f"  Legacy Store: {settings.legacy_store_path}")

    logger.info("")
    logger.info("🤖 Agent Configuration:")
    logger.info(f"  ACP Backends: {', '.join(settings.get_acp_backends().keys()) or 'none'}")
    logger.info(f"  CLI Agent: {' '.join(settings.get_cli_command())}")
    logger.info(f"  History: {settings.history_message_limit} messages / {settings.history_char_limit} chars")

    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    db_conn = DatabaseConnection(settings.database_path)
    store = ConversationStore(db_conn, LegacyRecordStore(settings.legacy_store_path))
    bus = StreamBus()
    registry = TaskRegistry(TaskContext(
        store=store,
        bus=bus,
        settings=settings,
        process_config=ProcessConfig(settings.process_config_path),
    ))

    # Set services in API modules
    conversations.conversation_service = ConversationService(store, registry, settings)
    stream.stream_bus = bus

    logger.info("")
    logger.info("=" * 70)
    logger.info("✅ AgentDesk started successfully!")
    logger.info(f"📍 Access at: http://{settings.host}:{settings.port}")
    logger.info(f"📚 API Docs: http://{settings.host}:{settings.port}/docs")
    logger.info("=" * 70)

    yield

    # Shutdown
    logger.info("Shutting down AgentDesk...")
    await registry.clear()
    await store.wait_for_migrations()
    bus.close_all()
    db_conn.close()
    conversations.conversation_service = None
    stream.stream_bus = None
    logger.info("✅ AgentDesk shut down successfully")


# Create FastAPI application
app = FastAPI(
    title="AgentDesk",
    description="Conversation orchestration for interactive, protocol and CLI coding agents",
    version=__version__,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(conversations.router)
app.include_router(stream.router)


@app.get("/health")
async def health():
    """
    Simple health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": "AgentDesk"
    }


def run():
    import uvicorn

    uvicorn.run(
        "agentdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
