"""Configuration for mssql-mcp."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_env_files() -> list[Path]:
    """Get list of .env files to load, in priority order.

    Priority (later files override earlier):
    1. ~/.mssql-mcp/.env (if exists)
    2. Current directory .env (if exists)
    """
    env_files = []

    home_env = Path.home() / ".mssql-mcp" / ".env"
    if home_env.exists():
        env_files.append(home_env)

    cwd_env = Path(".env")
    if cwd_env.exists():
        env_files.append(cwd_env)

    return env_files


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Read once per process; the connection manager and the tool registry are
    built from a single instance and never see later changes.
    """

    model_config = SettingsConfigDict(
        env_file=_get_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Database connection
    # ==========================================================================

    server_name: str = Field(
        default="",
        description="SQL Server host (e.g. 'myserver.database.windows.net' or 'localhost')",
    )
    database_name: str = Field(default="", description="Database to connect to")
    auth_type: str = Field(
        default="azure",
        description="Authentication mode: azure | windows | ntlm | sql | sqlserver",
    )

    # SQL Server authentication
    sql_username: str = Field(default="", description="SQL login name")
    sql_password: str = Field(default="", description="SQL login password")

    # Windows / integrated authentication
    windows_domain: str = Field(default="", description="Windows domain for NTLM")
    windows_username: str = Field(default="", description="Windows user for NTLM")
    windows_password: str = Field(default="", description="Windows password for NTLM")

    # Entra ID (federated) authentication
    azure_credential: Literal["interactive", "default"] = Field(
        default="interactive",
        description=(
            "Token source: 'interactive' opens a browser sign-in, "
            "'default' uses DefaultAzureCredential (CLI, managed identity, env)"
        ),
    )
    azure_redirect_uri: str = Field(
        default="http://localhost",
        description="Redirect URI for interactive browser sign-in",
    )
    token_refresh_skew_seconds: int = Field(
        default=120,
        description="Renew the access token this many seconds before it expires",
    )

    # Transport security and driver options
    trust_server_certificate: bool = Field(
        default=False,
        description="Accept self-signed server certificates",
    )
    encrypt: bool | None = Field(
        default=None,
        description="Force encryption on/off (default depends on auth mode and server)",
    )
    connection_timeout: int = Field(default=30, description="Connect timeout in seconds")
    odbc_driver: str = Field(
        default="ODBC Driver 18 for SQL Server",
        description="Name of the installed ODBC driver",
    )
    pool_size: int = Field(default=5, description="SQLAlchemy pool size")
    max_overflow: int = Field(default=10, description="SQLAlchemy pool overflow")

    # ==========================================================================
    # MCP server configuration
    # ==========================================================================

    readonly: bool = Field(
        default=False,
        description="Expose only non-mutating tools (read_data, list_table, describe_table)",
    )
    mcp_transport: str = Field(
        default="stdio",
        description="MCP transport: 'stdio' for local, 'http' for remote",
    )
    mcp_host: str = Field(default="127.0.0.1", description="Host to bind MCP HTTP server")
    mcp_port: int = Field(default=8000, description="Port for MCP HTTP server")
    mcp_path: str = Field(default="/mcp", description="Path for MCP HTTP endpoint")
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("encrypt", mode="before")
    @classmethod
    def _blank_encrypt_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("connection_timeout", "token_refresh_skew_seconds")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be zero or positive")
        return value


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (useful for testing)."""
    global _settings
    _settings = None
