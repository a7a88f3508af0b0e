"""Base interface for the delivery state index."""

from abc import ABC, abstractmethod
from collections.abc import Iterator


class StateIndex(ABC):
    """Persisted mapping of delivery key -> last delivered watermark."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True when a record exists for *key*."""
        pass

    @abstractmethod
    def watermark(self, key: str) -> int | None:
        """Return the stored watermark, or None when *key* was never delivered."""
        pass

    @abstractmethod
    def upsert(self, key: str, watermark: int) -> None:
        """Insert or overwrite the record for *key* in a single statement."""
        pass

    @abstractmethod
    def records(self) -> Iterator[tuple[str, int]]:
        """Iterate all ``(key, watermark)`` records ordered by key."""
        pass

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "StateIndex":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
