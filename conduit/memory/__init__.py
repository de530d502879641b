from conduit.memory.base import MemoryPersistence, StoredMessage
from conduit.memory.conversation import MemoryManager
from conduit.memory.storage import InMemoryPersistence, SQLitePersistence

__all__ = [
    "MemoryManager",
    "MemoryPersistence",
    "StoredMessage",
    "InMemoryPersistence",
    "SQLitePersistence",
]
