"""Storage implementations."""
from .memory import InMemoryIdentityStore, InMemoryScanQueueStore

__all__ = ["InMemoryIdentityStore", "InMemoryScanQueueStore"]
