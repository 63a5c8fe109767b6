# Storage layer module

from rental_sync.storage.base import StorageInterface
from rental_sync.storage.sqlite import SQLiteStorage

__all__ = ["StorageInterface", "SQLiteStorage"]
