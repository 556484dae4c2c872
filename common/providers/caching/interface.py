from abc import ABC, abstractmethod
from typing import Any, Optional, List


class CacheInterface(ABC):
    """Interface for cache providers."""

    async def start(self) -> None:
        """Start background maintenance, if the provider has any."""
        return None

    async def stop(self) -> None:
        """Stop background maintenance and release resources."""
        return None

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value from cache.

        Args:
            key: The cache key

        Returns:
            The cached value if exists, None otherwise
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set a value in cache.

        Args:
            key: The cache key
            value: The value to cache
            ttl: Time to live in seconds (provider default when None)

        Returns:
            True if set successfully, False otherwise
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a specific key. Returns False if the key didn't exist."""
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern (e.g., "billing:balance:*").

        Returns:
            Number of keys deleted
        """
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all cached data."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists in cache."""
        pass

    @abstractmethod
    async def get_keys(self, pattern: str) -> List[str]:
        """Get all live keys matching a glob pattern."""
        pass
