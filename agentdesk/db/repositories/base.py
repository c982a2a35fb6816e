"""Base repository class."""

import json
from typing import Any, Optional

import duckdb
from ...utils.logger import get_app_logger


class BaseRepository:
    """Base class for all repositories."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        """
        Initialize repository with database connection.

        Args:
            conn: DuckDB connection instance
        """
        self.conn = conn
        self.logger = get_app_logger()

    @staticmethod
    def _load_json(value: Any, default: Any = None) -> Any:
        """Decode a JSON column; DuckDB hands JSON back as text."""
        if value is None:
            return default
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return default
        return value

    @staticmethod
    def _dump_json(value: Optional[Any]) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value, ensure_ascii=False)
