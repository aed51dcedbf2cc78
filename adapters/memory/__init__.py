from .store import InMemoryStorage, StaticIdentity

__all__ = ["InMemoryStorage", "StaticIdentity"]
