"""
Storage layer interface contracts.

The processing router persists normalized entities through this contract
and never sees the backing store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol


class EntityStore(Protocol):
    """Interface for entity persistence keyed by (kind, external id)."""

    async def upsert_entity(
        self, kind: str, external_id: str, fields: Dict[str, Any]
    ) -> bool:
        """
        Create or update an entity.

        Fields given here overwrite stored fields; stored fields that are not
        given are kept.

        Args:
            kind: Entity kind (e.g. "player_stats", "prediction")
            external_id: Id assigned by the upstream source
            fields: Normalized entity fields

        Returns:
            True if the entity was created, False if it was updated

        Raises:
            StorageError: If the write fails
        """
        ...

    async def get_entity(self, kind: str, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve an entity.

        Args:
            kind: Entity kind
            external_id: Upstream id

        Returns:
            Stored fields if found, None otherwise
        """
        ...

    async def ping(self) -> bool:
        """Reachability probe used by health checks."""
        ...


# ============================================================================
# Abstract Base Classes (for implementations)
# ============================================================================


class BaseEntityStore(ABC):
    """Abstract base class for entity store implementations."""

    @abstractmethod
    async def upsert_entity(
        self, kind: str, external_id: str, fields: Dict[str, Any]
    ) -> bool:
        pass

    @abstractmethod
    async def get_entity(self, kind: str, external_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_entities(self, kind: str) -> List[Dict[str, Any]]:
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


# ============================================================================
# Exceptions
# ============================================================================


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class ConnectionError(StorageError):
    """Exception for connection failures."""

    pass
