from conduit.memory.storage.memory import InMemoryPersistence
from conduit.memory.storage.sqlite import SQLitePersistence

__all__ = ["InMemoryPersistence", "SQLitePersistence"]
