# fundledger/storage/__init__.py
"""
Storage backends for persistent ledger journals.
"""

from abc import ABC, abstractmethod
from typing import List
from pathlib import Path
from fundledger.core.types import AnyEvent


class StorageBackend(ABC):
    """Abstract base for all persistent storage implementations."""

    @abstractmethod
    def append(self, event: AnyEvent) -> None:
        pass

    def append_many(self, events: List[AnyEvent]) -> None:
        """Persist a batch of events; backends with transactions write all or none."""
        for event in events:
            self.append(event)

    @abstractmethod
    def load_events(self) -> List[AnyEvent]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # Everything after sqlite:// is a filesystem path
        raw_path = uri[len("sqlite://"):]
        if not raw_path:
            raise ValueError(f"Missing database path in URI: {uri}")
        return SQLiteStorage(Path(raw_path).expanduser().resolve())
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "SQLiteStorage"]
