"""Configuration management using pydantic-settings."""

import json
import shlex
from typing import Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AGENTDESK_",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=7788, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Storage Configuration
    data_dir: str = Field(default="./data", description="Root directory for persisted state")
    database_path: str = Field(default="./data/agentdesk.db", description="DuckDB file of the structured store")
    legacy_store_path: str = Field(default="./data/legacy", description="Root of the flat record store")
    process_config_path: str = Field(default="./data/process_config.json", description="Stored user configuration")

    # Interactive agent
    history_message_limit: int = Field(default=20, description="Max text messages injected on bootstrap")
    history_char_limit: int = Field(default=4000, description="Max characters of injected history")
    context_file_names: str = Field(default="AGENTS.md", description="Workspace memory files (comma separated)")
    request_timeout: float = Field(default=120.0, description="Model HTTP timeout in seconds")

    # Protocol agents: JSON object mapping backend name -> command line
    acp_backends: str = Field(
        default='{"claude": "claude-code-acp", "gemini": "gemini --experimental-acp"}',
        description="Agent Client Protocol backends"
    )

    # Agent processes
    stream_limit: int = Field(default=64 * 1024 * 1024, description="Max bytes of one output line of an agent process")

    # CLI agent
    cli_binary: str = Field(default="codex", description="Coding assistant CLI binary")
    cli_args: str = Field(default="exec --json --skip-git-repo-check", description="CLI arguments")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[str] = Field(default="./logs/app.log", description="Log file path")

    def get_context_file_names(self) -> List[str]:
        """Get the list of workspace memory file names."""
        return [name.strip() for name in self.context_file_names.split(",") if name.strip()]

    def get_acp_backends(self) -> Dict[str, str]:
        """Get the configured protocol backends."""
        try:
            backends = json.loads(self.acp_backends)
        except json.JSONDecodeError:
            return {}
        return backends if isinstance(backends, dict) else {}

    def get_acp_command(self, backend: str) -> List[str]:
        """
        Get the command line for a protocol backend.

        Raises:
            ValueError: If the backend is not configured
        """
        command = self.get_acp_backends().get(backend)
        if not command:
            raise ValueError(
                f"Unknown ACP backend: {backend}. "
                f"Available: {', '.join(self.get_acp_backends().keys())}"
            )
        return shlex.split(command)

    def get_cli_command(self) -> List[str]:
        """Get the CLI agent command without the prompt."""
        return [self.cli_binary, *shlex.split(self.cli_args)]


# Global settings instance
settings = Settings()
