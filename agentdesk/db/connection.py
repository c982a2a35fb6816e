"""Database connection and schema management."""

import duckdb
from typing import Optional
from pathlib import Path
from ..utils.logger import get_app_logger


class DatabaseConnection:
    """DuckDB connection manager for the structured conversation store."""

    def __init__(self, db_path: str = "./data/agentdesk.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
        """
        self.db_path = db_path
        self.logger = get_app_logger()
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connect()
        self._init_schema()

    def _connect(self):
        """Connect to DuckDB database."""
        try:
            self.conn = duckdb.connect(self.db_path)
            self.logger.info(f"Connected to DuckDB at {self.db_path}")
        except Exception as e:
            self.logger.error(f"Failed to connect to DuckDB: {e}")
            raise

    def _init_schema(self):
        """Initialize database schema."""
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id VARCHAR PRIMARY KEY,
                    type VARCHAR NOT NULL,
                    name VARCHAR NOT NULL,
                    workspace VARCHAR,
                    model JSON,
                    extra JSON,
                    status VARCHAR DEFAULT 'finished',
                    created_at TIMESTAMP NOT NULL,
                    modified_at TIMESTAMP NOT NULL
                )
            """)

            # Insertion order of messages, stable across upserts
            self.conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id VARCHAR PRIMARY KEY,
                    seq BIGINT DEFAULT nextval('messages_seq'),
                    conversation_id VARCHAR NOT NULL,
                    msg_id VARCHAR,
                    type VARCHAR NOT NULL,
                    position VARCHAR NOT NULL,
                    content JSON NOT NULL,
                    status VARCHAR,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)")

            self.logger.info("Database schema initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database schema: {e}")
            raise

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self.logger.info("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
