"""Credential resolution for the three supported authentication modes.

Turns the process settings into a :class:`ConnectionDescriptor` (and, for
Entra ID, a :class:`TokenLease`). Nothing here opens a database connection;
the only network call is the identity-provider token request.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Protocol, Union

from azure.identity import DefaultAzureCredential, InteractiveBrowserCredential

from mssql_mcp.config import Settings
from mssql_mcp.errors import AuthenticationFailure, ConfigurationError, MssqlMcpError

logger = logging.getLogger(__name__)

SQL_TOKEN_SCOPE = "https://database.windows.net/.default"
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=30)

# pyodbc pre-connect attribute carrying an Entra ID access token
SQL_COPT_SS_ACCESS_TOKEN = 1256

CLOUD_ENDPOINT_SUFFIXES = (
    ".database.windows.net",
    ".database.azure.com",
    ".database.usgovcloudapi.net",
    ".database.chinacloudapi.cn",
    ".sql.azuresynapse.net",
)


class AuthMode(Enum):
    """Authentication mode, selected once per process."""

    FEDERATED_IDENTITY = "federated_identity"
    INTEGRATED_CREDENTIAL = "integrated_credential"
    USERNAME_PASSWORD = "username_password"

    @classmethod
    def parse(cls, value: str | None) -> AuthMode:
        """Map an AUTH_TYPE value (and its aliases) to a mode."""
        key = (value or "azure").strip().lower()
        try:
            return _AUTH_TYPE_ALIASES[key]
        except KeyError:
            supported = ", ".join(sorted(_AUTH_TYPE_ALIASES))
            raise ConfigurationError(
                f"Unsupported AUTH_TYPE '{value}'. Supported values: {supported}"
            ) from None


_AUTH_TYPE_ALIASES = {
    "azure": AuthMode.FEDERATED_IDENTITY,
    "federated": AuthMode.FEDERATED_IDENTITY,
    "entra": AuthMode.FEDERATED_IDENTITY,
    "windows": AuthMode.INTEGRATED_CREDENTIAL,
    "ntlm": AuthMode.INTEGRATED_CREDENTIAL,
    "integrated": AuthMode.INTEGRATED_CREDENTIAL,
    "sql": AuthMode.USERNAME_PASSWORD,
    "sqlserver": AuthMode.USERNAME_PASSWORD,
}


# ---------------------------------------------------------------------------
# Auth material (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessTokenAuth:
    """Bearer token issued by Entra ID."""

    token: str

    def __repr__(self) -> str:
        return "AccessTokenAuth(token=<redacted>)"


@dataclass(frozen=True)
class IntegratedAuth:
    """Explicit Windows credentials for the NTLM sub-protocol."""

    username: str
    password: str
    domain: str = ""

    @property
    def login(self) -> str:
        return f"{self.domain}\\{self.username}" if self.domain else self.username

    def __repr__(self) -> str:
        return f"IntegratedAuth(login={self.login!r}, password=<redacted>)"


@dataclass(frozen=True)
class SqlLoginAuth:
    """SQL Server login."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"SqlLoginAuth(username={self.username!r}, password=<redacted>)"


AuthMaterial = Union[AccessTokenAuth, IntegratedAuth, SqlLoginAuth, None]

_ALLOWED_MATERIAL: dict[AuthMode, tuple[type, ...]] = {
    AuthMode.FEDERATED_IDENTITY: (AccessTokenAuth,),
    # None means "use the ambient OS identity"
    AuthMode.INTEGRATED_CREDENTIAL: (IntegratedAuth, type(None)),
    AuthMode.USERNAME_PASSWORD: (SqlLoginAuth,),
}


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything needed to open a connection, independent of the driver."""

    server: str
    database: str
    encrypt: bool
    trust_server_certificate: bool
    connect_timeout: int
    auth_mode: AuthMode
    auth_material: AuthMaterial = None
    driver: str = "ODBC Driver 18 for SQL Server"

    def __post_init__(self) -> None:
        allowed = _ALLOWED_MATERIAL[self.auth_mode]
        if not isinstance(self.auth_material, allowed):
            raise ConfigurationError(
                f"{type(self.auth_material).__name__} cannot be used with "
                f"{self.auth_mode.value} authentication"
            )
        material = self.auth_material
        if isinstance(material, AccessTokenAuth) and not material.token:
            raise ConfigurationError("Access token is empty")
        if isinstance(material, (SqlLoginAuth, IntegratedAuth)) and not (
            material.username and material.password
        ):
            raise ConfigurationError(
                f"{self.auth_mode.value} authentication requires both username and password"
            )


@dataclass(frozen=True)
class TokenLease:
    """An access token together with its validity window."""

    token: str
    issued_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime, skew: timedelta) -> bool:
        """True while ``now`` is strictly before ``expires_at - skew``."""
        return now < self.expires_at - skew

    def __repr__(self) -> str:
        return (
            f"TokenLease(issued_at={self.issued_at.isoformat()}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class ResolvedCredential:
    descriptor: ConnectionDescriptor
    lease: TokenLease | None = None


# ---------------------------------------------------------------------------
# Token acquisition
# ---------------------------------------------------------------------------


class AccessTokenLike(Protocol):
    """Shape of ``azure.core.credentials.AccessToken``."""

    token: str
    expires_on: int


TokenProvider = Callable[[], AccessTokenLike]


class AzureTokenProvider:
    """Fetches SQL access tokens from Entra ID.

    The azure-identity credential is created on first use and kept, so later
    refreshes reuse its in-memory cache instead of prompting again.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._credential: Any = None

    def _get_credential(self) -> Any:
        if self._credential is None:
            if self._settings.azure_credential == "default":
                logger.info("Using DefaultAzureCredential for Entra ID tokens")
                self._credential = DefaultAzureCredential()
            else:
                logger.info("Using InteractiveBrowserCredential for Entra ID tokens")
                self._credential = InteractiveBrowserCredential(
                    redirect_uri=self._settings.azure_redirect_uri
                )
        return self._credential

    def __call__(self) -> AccessTokenLike:
        return self._get_credential().get_token(SQL_TOKEN_SCOPE)


def _acquire_lease(token_provider: TokenProvider, now: datetime) -> TokenLease:
    try:
        access_token = token_provider()
    except MssqlMcpError:
        raise
    except Exception as e:
        raise AuthenticationFailure(f"Failed to acquire Entra ID access token: {e}") from e

    token = getattr(access_token, "token", None)
    if not token:
        raise AuthenticationFailure("Identity provider returned an empty access token")

    expires_on = getattr(access_token, "expires_on", None)
    if expires_on:
        expires_at = datetime.fromtimestamp(expires_on, tz=timezone.utc)
    else:
        expires_at = now + DEFAULT_TOKEN_LIFETIME
    return TokenLease(token=token, issued_at=now, expires_at=expires_at)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def is_cloud_endpoint(server: str) -> bool:
    """Check whether a server address is a recognised Azure SQL endpoint."""
    host = server.strip().lower()
    # strip "tcp:" prefix and ",port" suffix
    if host.startswith("tcp:"):
        host = host[4:]
    host = host.split(",", 1)[0]
    return host.endswith(CLOUD_ENDPOINT_SUFFIXES)


def _base_fields(settings: Settings) -> dict[str, Any]:
    missing = [
        name
        for name, value in (
            ("SERVER_NAME", settings.server_name),
            ("DATABASE_NAME", settings.database_name),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    return {
        "server": settings.server_name,
        "database": settings.database_name,
        "trust_server_certificate": settings.trust_server_certificate,
        "connect_timeout": settings.connection_timeout,
        "driver": settings.odbc_driver,
    }


def resolve(
    auth_mode: AuthMode,
    settings: Settings,
    *,
    token_provider: TokenProvider | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ResolvedCredential:
    """Build a connection descriptor for ``auth_mode`` from ``settings``.

    Args:
        auth_mode: Authentication mode for this process.
        settings: Process settings.
        token_provider: Callable returning an access token (federated mode only).
            Defaults to :class:`AzureTokenProvider`.
        clock: Returns the current UTC time; used to stamp the token lease.

    Returns:
        ResolvedCredential with a lease only in federated mode.

    Raises:
        ConfigurationError: Required fields are missing.
        AuthenticationFailure: The identity provider rejected the request.
    """
    base = _base_fields(settings)

    if auth_mode is AuthMode.USERNAME_PASSWORD:
        if not settings.sql_username or not settings.sql_password:
            raise ConfigurationError(
                "SQL_USERNAME and SQL_PASSWORD environment variables are required "
                "for SQL Server authentication"
            )
        descriptor = ConnectionDescriptor(
            **base,
            encrypt=True if settings.encrypt is None else settings.encrypt,
            auth_mode=auth_mode,
            auth_material=SqlLoginAuth(settings.sql_username, settings.sql_password),
        )
        return ResolvedCredential(descriptor)

    if auth_mode is AuthMode.INTEGRATED_CREDENTIAL:
        material = None
        if settings.windows_username and settings.windows_password:
            material = IntegratedAuth(
                username=settings.windows_username,
                password=settings.windows_password,
                domain=settings.windows_domain,
            )
        elif settings.windows_username or settings.windows_password:
            raise ConfigurationError(
                "WINDOWS_USERNAME and WINDOWS_PASSWORD must be set together "
                "(leave both empty to use the current Windows identity)"
            )
        encrypt = settings.encrypt
        if encrypt is None:
            encrypt = is_cloud_endpoint(settings.server_name)
        descriptor = ConnectionDescriptor(
            **base,
            encrypt=encrypt,
            auth_mode=auth_mode,
            auth_material=material,
        )
        return ResolvedCredential(descriptor)

    # Federated identity
    now = (clock or _utcnow)()
    lease = _acquire_lease(token_provider or AzureTokenProvider(settings), now)
    descriptor = ConnectionDescriptor(
        **base,
        encrypt=True if settings.encrypt is None else settings.encrypt,
        auth_mode=auth_mode,
        auth_material=AccessTokenAuth(lease.token),
    )
    return ResolvedCredential(descriptor, lease)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Driver rendering
# ---------------------------------------------------------------------------


def _odbc_value(value: str) -> str:
    """Escape an ODBC connection-string value."""
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def build_odbc_connect_string(descriptor: ConnectionDescriptor) -> str:
    """Render a descriptor as an ODBC connection string.

    The access token (federated mode) is not part of the string; pass
    :func:`access_token_attrs` as ``attrs_before`` instead.
    """
    parts: list[tuple[str, str]] = [
        ("DRIVER", "{" + descriptor.driver + "}"),
        ("SERVER", _odbc_value(descriptor.server)),
        ("DATABASE", _odbc_value(descriptor.database)),
        ("Encrypt", "yes" if descriptor.encrypt else "no"),
        ("TrustServerCertificate", "yes" if descriptor.trust_server_certificate else "no"),
        ("Connection Timeout", str(descriptor.connect_timeout)),
    ]

    material = descriptor.auth_material
    if isinstance(material, SqlLoginAuth):
        parts += [("UID", _odbc_value(material.username)), ("PWD", _odbc_value(material.password))]
    elif isinstance(material, IntegratedAuth):
        # DOMAIN\user login with an explicit password negotiates NTLM
        parts += [
            ("Trusted_Connection", "no"),
            ("UID", _odbc_value(material.login)),
            ("PWD", _odbc_value(material.password)),
        ]
    elif descriptor.auth_mode is AuthMode.INTEGRATED_CREDENTIAL:
        parts.append(("Trusted_Connection", "yes"))

    return ";".join(f"{key}={value}" for key, value in parts) + ";"


def access_token_attrs(token: str) -> dict[int, bytes]:
    """Pack an access token into pyodbc's ``attrs_before`` mapping."""
    raw = token.encode("utf-16-le")
    return {SQL_COPT_SS_ACCESS_TOKEN: struct.pack(f"<I{len(raw)}s", len(raw), raw)}


def describe_descriptor(descriptor: ConnectionDescriptor) -> dict[str, Any]:
    """Non-sensitive summary of a descriptor, safe for logs and status output."""
    material = descriptor.auth_material
    if isinstance(material, SqlLoginAuth):
        principal = material.username
    elif isinstance(material, IntegratedAuth):
        principal = material.login
    elif material is None:
        principal = "<current Windows user>"
    else:
        principal = "<access token>"
    return {
        "server": descriptor.server,
        "database": descriptor.database,
        "auth_mode": descriptor.auth_mode.value,
        "principal": principal,
        "encrypt": descriptor.encrypt,
        "trust_server_certificate": descriptor.trust_server_certificate,
        "connect_timeout": descriptor.connect_timeout,
    }
