"""Base repository interface for data access."""
from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Read side shared by every path-keyed repository."""

    @abstractmethod
    def get(self, path: str) -> Optional[T]:
        """Get an item by its path, or None when absent."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count stored items."""
        pass
