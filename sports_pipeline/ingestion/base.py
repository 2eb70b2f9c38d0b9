"""
Base classes for fetch adapters.

A fetch adapter performs the actual retrieval for one fetch mechanism
(headless render, crawl service, plain HTTP). The scheduler only sees this
uniform contract and never the mechanics behind it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from sports_pipeline.types import FetchMechanism

logger = logging.getLogger(__name__)


class FetchAdapter(ABC):
    """
    Abstract base class for fetch adapters.

    Subclasses set `mechanism` and implement `fetch`. `ping` and `close`
    have defaults suitable for adapters that hold no connections.
    """

    mechanism: FetchMechanism

    def __init__(self):
        if not hasattr(self, "mechanism"):
            raise NotImplementedError(
                f"{self.__class__.__name__} must define 'mechanism' attribute"
            )

    @abstractmethod
    async def fetch(
        self,
        url: str,
        hints: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Retrieve a raw structured payload.

        Args:
            url: Origin URL of the source
            hints: Extraction hints (e.g. CSS selectors)
            headers: Request headers
            timeout: Upper bound in seconds for the request

        Returns:
            Raw payload (list or dict)

        Raises:
            FetchError: If retrieval fails
        """
        pass

    async def ping(self) -> bool:
        """Cheap reachability probe used by health checks."""
        return True

    async def close(self) -> None:
        """Release held connections."""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({self.mechanism.value})>"


class AdapterRegistry:
    """
    Maps each fetch mechanism to the adapter that serves it.

    Owned by a pipeline instance; there is no process-wide registry.
    """

    def __init__(self, adapters: Optional[Iterable[FetchAdapter]] = None):
        self._adapters: Dict[FetchMechanism, FetchAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(
        self,
        adapter: FetchAdapter,
        mechanism: Optional[FetchMechanism] = None,
    ) -> None:
        """
        Register (or replace) an adapter.

        Args:
            adapter: The adapter
            mechanism: Mechanism to serve, defaults to the adapter's own
        """
        self._adapters[mechanism or adapter.mechanism] = adapter

    def get(self, mechanism: FetchMechanism) -> FetchAdapter:
        """
        Get the adapter for a mechanism.

        Raises:
            FetchError: If no adapter serves the mechanism
        """
        adapter = self._adapters.get(mechanism)
        if adapter is None:
            raise FetchError(f"No fetch adapter registered for mechanism '{mechanism.value}'")
        return adapter

    def all(self) -> List[FetchAdapter]:
        # One adapter instance may serve several mechanisms
        unique: List[FetchAdapter] = []
        for adapter in self._adapters.values():
            if not any(adapter is seen for seen in unique):
                unique.append(adapter)
        return unique

    def mechanisms(self) -> List[FetchMechanism]:
        return list(self._adapters.keys())

    async def ping_all(self) -> bool:
        """True when every registered adapter answers its probe."""
        if not self._adapters:
            return False
        for adapter in self.all():
            if not await adapter.ping():
                return False
        return True

    async def close_all(self) -> None:
        """Close every adapter; a failing close is logged and the rest still close."""
        for adapter in self.all():
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing {type(adapter).__name__}: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._adapters)


class FetchError(Exception):
    """Exception raised when a fetch fails (network, timeout, adapter)."""

    pass


class ConfigError(Exception):
    """Exception raised for invalid source or pipeline configuration."""

    pass


class NotFoundError(ConfigError):
    """Exception raised for operations against an unknown source id."""

    pass
