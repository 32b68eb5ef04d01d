"""Error taxonomy shared by the resolver, the connection manager and the dispatcher."""


class MssqlMcpError(Exception):
    """Base class for errors reported back to the MCP client."""

    category = "error"


class ConfigurationError(MssqlMcpError):
    """Missing or invalid configuration (credentials, server, auth mode)."""

    category = "configuration_error"


class AuthenticationFailure(MssqlMcpError):
    """Identity provider or credential rejection."""

    category = "authentication_failure"


class ConnectionFailure(MssqlMcpError):
    """Network or driver level failure while opening a connection."""

    category = "connection_failure"


class MissingPredicate(MssqlMcpError):
    """A read/update/delete was requested without a meaningful filter."""

    category = "missing_predicate"


class UnknownOperation(MssqlMcpError):
    """The requested tool is not registered on this server."""

    category = "unknown_operation"


class OperationError(MssqlMcpError):
    """The tool body or the statement it issued failed."""

    category = "operation_error"
