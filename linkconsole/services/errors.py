"""Shared service-layer error types.

Centralised here to avoid circular imports between the link client,
the store and the lifecycle engine.
"""

from dataclasses import dataclass

from linkconsole.errors.registry import get_error


@dataclass
class RemoteError(Exception):
    """Failure talking to the remote link service.

    Attributes:
        code: Registry error code (E-3xxx).
        message: Human-readable error message.
        operation: Provider operation that failed (create, qr, ...).
        status_code: HTTP status when the provider answered, else None.
    """

    code: str
    message: str
    operation: str = ""
    status_code: int | None = None

    def __str__(self) -> str:
        """Return formatted error message."""
        return f"[{self.code}] {self.message}"

    @classmethod
    def unreachable(cls, operation: str) -> "RemoteError":
        return cls("E-3001", get_error("E-3001").format(operation=operation), operation)

    @classmethod
    def http(cls, operation: str, status_code: int) -> "RemoteError":
        return cls(
            "E-3002",
            get_error("E-3002").format(operation=operation, status_code=status_code),
            operation,
            status_code,
        )

    @classmethod
    def malformed(cls, operation: str, field: str) -> "RemoteError":
        return cls(
            "E-3003", get_error("E-3003").format(operation=operation, field=field), operation
        )

    @classmethod
    def not_found(cls, operation: str, name: str) -> "RemoteError":
        return cls("E-3004", get_error("E-3004").format(name=name), operation, 404)

    @classmethod
    def timeout(cls, operation: str) -> "RemoteError":
        return cls("E-3005", get_error("E-3005").format(operation=operation), operation)


@dataclass
class StoreError(Exception):
    """Persistence failure in the connection store.

    Attributes:
        code: Registry error code (E-4xxx).
        message: Human-readable error message.
        operation: Store operation that failed (create, update, delete, read).
    """

    code: str
    message: str
    operation: str = ""

    def __str__(self) -> str:
        """Return formatted error message."""
        return f"[{self.code}] {self.message}"

    @classmethod
    def write(cls, operation: str) -> "StoreError":
        return cls("E-4001", get_error("E-4001").format(operation=operation), operation)

    @classmethod
    def read(cls) -> "StoreError":
        return cls("E-4002", get_error("E-4002").format(), "read")
