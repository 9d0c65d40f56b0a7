"""
Errors

Exception hierarchy shared across the engine, plugins and storage.
"""


class PulsecheckError(Exception):
    """Base class for all pulsecheck errors."""

    pass


class SchemaError(PulsecheckError):
    """Raised when a versioned payload cannot be migrated or validated."""

    pass


class MigrationChainError(SchemaError):
    """Raised when a migration chain is broken or incomplete."""

    pass


class RegistryError(PulsecheckError):
    """Raised for plugin registry problems."""

    pass


class UnknownStrategyError(RegistryError):
    """Raised when a strategy id is not registered."""

    pass


class UnknownCollectorError(RegistryError):
    """Raised when a collector id is not registered."""

    pass


class ClientConnectionError(PulsecheckError):
    """Raised when a strategy fails to create its transport client."""

    pass


class ProbeTimeoutError(PulsecheckError):
    """Raised when a probe operation exceeds its deadline."""

    def __init__(self, what: str, timeout_ms: int) -> None:
        self.what = what
        self.timeout_ms = timeout_ms
        super().__init__(f"{what} timed out after {timeout_ms}ms")


class ConfigurationError(PulsecheckError):
    """Raised for invalid or missing health check configurations."""

    pass
