"""
Services for herd treatment compliance.

This package contains the service implementations: the treatment catalog,
dose scheduling, scope resolution, the obligation timeline, overdue
notifications, completion handling and the facade that wires them together.
"""

from .completion import ApplicationOutcome, CompletionStateMachine
from .gateways import EntityKind, IdentityProvider, Result, StorageGateway
from .herd_health import HerdHealthService
from .notifications import NotificationStore, get_notification_store

__all__ = [
    "ApplicationOutcome",
    "CompletionStateMachine",
    "EntityKind",
    "HerdHealthService",
    "IdentityProvider",
    "NotificationStore",
    "Result",
    "StorageGateway",
    "get_notification_store",
]
