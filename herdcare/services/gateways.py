"""
Collaborator boundaries for the compliance core.

Key patterns:
- Protocol-based dependency injection for storage and identity
- Generic Result type: collaborators report failures as values, the core
  turns them into StorageError at the call site
- Structured logging shared by every service module
"""

import asyncio
import logging
from collections.abc import Awaitable
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

import structlog

from herdcare.config import LoggingConfig
from herdcare.exceptions import StorageError

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def configure_logging(config: LoggingConfig) -> None:
    """Apply level and renderer from configuration."""
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    logging.basicConfig(format="%(message)s", level=config.level)
    logging.getLogger().setLevel(config.level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
    )


ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)

Row = dict[str, Any]


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Storage round trips fail for ordinary reasons (network, constraint
    violations); the gateway returns them as values so the caller decides.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class EntityKind(str, Enum):
    """Tables exposed by the storage collaborator."""

    ANIMALS = "animals"
    TREATMENT_TYPES = "treatment_types"
    TREATMENT_RECORDS = "treatment_records"
    CALENDAR_OBLIGATIONS = "calendar_obligations"
    NOTIFICATIONS = "notifications"


class StorageGateway(Protocol):
    """
    Generic row store keyed by owner.

    Every filter and every written row carries ``owner_id``; row-level
    tenancy is enforced by the store, but the core must supply the key.
    ``bulk_insert`` is all-or-nothing.
    """

    async def select(self, kind: EntityKind, filters: Row) -> Result[list[Row], Exception]: ...

    async def insert(self, kind: EntityKind, row: Row) -> Result[Row, Exception]: ...

    async def bulk_insert(
        self, kind: EntityKind, rows: list[Row]
    ) -> Result[list[Row], Exception]: ...

    async def update(
        self, kind: EntityKind, row_id: str, patch: Row, filters: Row
    ) -> Result[Row, Exception]: ...

    async def delete(
        self, kind: EntityKind, row_id: str, filters: Row
    ) -> Result[bool, Exception]: ...


class IdentityProvider(Protocol):
    """Exposes the signed-in owner. None means no operation may run."""

    def current_owner_id(self) -> str | None: ...


class StorageCaller:
    """
    Thin wrapper that turns gateway Results into values or StorageError.

    Each call is bounded by the configured timeout. Failures are surfaced
    verbatim: no retry, no compensation for earlier steps of a flow.
    """

    def __init__(self, gateway: StorageGateway, timeout_seconds: float = 10.0) -> None:
        self.gateway = gateway
        self.timeout_seconds = timeout_seconds
        self.logger = logger.bind(component="storage")

    async def _call(
        self, operation: str, kind: EntityKind, pending: Awaitable[Result[Any, Exception]]
    ) -> Any:
        try:
            result = await asyncio.wait_for(pending, timeout=self.timeout_seconds)
        except TimeoutError as e:
            self.logger.error("storage_timeout", operation=operation, kind=kind.value)
            raise StorageError(operation, kind.value, e) from e

        if result.is_err():
            error = result.unwrap_err()
            self.logger.error(
                "storage_call_failed", operation=operation, kind=kind.value, error=str(error)
            )
            raise StorageError(operation, kind.value, error) from error
        return result.unwrap()

    async def select(self, kind: EntityKind, filters: Row) -> list[Row]:
        return await self._call("select", kind, self.gateway.select(kind, filters))

    async def insert(self, kind: EntityKind, row: Row) -> Row:
        return await self._call("insert", kind, self.gateway.insert(kind, row))

    async def bulk_insert(self, kind: EntityKind, rows: list[Row]) -> list[Row]:
        return await self._call("bulk_insert", kind, self.gateway.bulk_insert(kind, rows))

    async def update(self, kind: EntityKind, row_id: str, patch: Row, filters: Row) -> Row:
        return await self._call("update", kind, self.gateway.update(kind, row_id, patch, filters))

    async def delete(self, kind: EntityKind, row_id: str, filters: Row) -> bool:
        return await self._call("delete", kind, self.gateway.delete(kind, row_id, filters))
