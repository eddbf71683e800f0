from abc import ABC, abstractmethod
from typing import Any, List, Optional


class KeyValueStore(ABC):
    """
    Abstract persistence collaborator for rule and learning state.

    The engine treats storage as an opaque JSON key-value store, making it
    easy to swap backends (in-memory for tests, SQLite for the CLI).
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value by key.

        Args:
            key: Storage key

        Returns:
            The parsed JSON value, or None if the key is missing or the
            stored value is not valid JSON
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """
        Store a JSON-serializable value, replacing any previous one.

        Raises:
            TypeError: If the value is not JSON-serializable
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys, sorted"""
        pass
