"""Storage interfaces package."""
from .identity_store import IdentityStore
from .scan_queue import ScanQueueStore

__all__ = ["IdentityStore", "ScanQueueStore"]
