"""
Source registry.

Holds the declarative configuration of every polled source and notifies
listeners (the collector scheduler) whenever an entry changes.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from sports_pipeline.ingestion.base import ConfigError, NotFoundError
from sports_pipeline.types import SourceConfig

logger = logging.getLogger(__name__)

# listener(source_id, previous, current); current is None after removal
SourceListener = Callable[[str, Optional[SourceConfig], Optional[SourceConfig]], None]


class SourceRegistry:
    """
    In-memory registry of source configurations keyed by source id.

    Configurations are immutable; every change stores a new SourceConfig and
    notifies listeners synchronously.
    """

    def __init__(self, sources: Optional[Iterable[SourceConfig]] = None):
        self._sources: Dict[str, SourceConfig] = {}
        self._listeners: List[SourceListener] = []
        for source in sources or []:
            self.register(source)

    def register(self, config: SourceConfig, replace: bool = True) -> SourceConfig:
        """
        Add a source, replacing any prior entry with the same id.

        Args:
            config: Source configuration
            replace: If False, an existing id is an error

        Returns:
            The stored configuration

        Raises:
            ConfigError: If the id exists and replace is False
        """
        previous = self._sources.get(config.id)
        if previous is not None and not replace:
            raise ConfigError(f"Source '{config.id}' is already registered")

        self._sources[config.id] = config
        if previous is None:
            logger.info(f"Registered source {config.id} ({config.kind.value}, every {config.interval_seconds}s)")
        else:
            logger.info(f"Replaced source {config.id}")

        self._notify(config.id, previous, config)
        return config

    def unregister(self, source_id: str) -> SourceConfig:
        previous = self.get(source_id)
        del self._sources[source_id]
        logger.info(f"Unregistered source {source_id}")
        self._notify(source_id, previous, None)
        return previous

    def get(self, source_id: str) -> SourceConfig:
        """
        Raises:
            NotFoundError: If no source has this id
        """
        config = self._sources.get(source_id)
        if config is None:
            raise NotFoundError(f"Unknown source '{source_id}'")
        return config

    def all(self) -> List[SourceConfig]:
        return list(self._sources.values())

    def enabled(self) -> List[SourceConfig]:
        """Enabled sources, highest priority (lowest number) first."""
        return sorted(
            (s for s in self._sources.values() if s.enabled),
            key=lambda s: s.priority,
        )

    def set_enabled(self, source_id: str, enabled: bool) -> SourceConfig:
        current = self.get(source_id)
        if current.enabled == enabled:
            return current

        updated = current.model_copy(update={"enabled": enabled})
        self._sources[source_id] = updated
        logger.info(f"Source {source_id} {'enabled' if enabled else 'disabled'}")
        self._notify(source_id, current, updated)
        return updated

    def update_interval(self, source_id: str, interval_seconds: float) -> SourceConfig:
        """
        Change a source's polling interval.

        Raises:
            NotFoundError: If no source has this id
            ConfigError: If the interval is not positive
        """
        current = self.get(source_id)
        if interval_seconds <= 0:
            raise ConfigError(f"Interval for '{source_id}' must be positive, got {interval_seconds}")

        updated = current.model_copy(update={"interval_seconds": float(interval_seconds)})
        self._sources[source_id] = updated
        logger.info(f"Source {source_id} interval set to {interval_seconds}s")
        self._notify(source_id, current, updated)
        return updated

    def add_listener(self, listener: SourceListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SourceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(
        self,
        source_id: str,
        previous: Optional[SourceConfig],
        current: Optional[SourceConfig],
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(source_id, previous, current)
            except Exception as e:
                logger.error(f"Source listener failed for {source_id}: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources
