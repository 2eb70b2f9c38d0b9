"""
Processing layer interface contracts.
"""

from typing import Any, Optional, Protocol

from sports_pipeline.events import ProcessedUpdate


class EventSink(Protocol):
    """
    Downstream consumer of processed updates (e.g. a websocket broadcaster).

    The router calls `notify` fire-and-forget: the call is never awaited
    inline, retried, or allowed to fail processing.
    """

    async def notify(self, update: ProcessedUpdate) -> Optional[Any]:
        ...


class ProcessingError(Exception):
    """Base exception for processing failures."""

    pass


class NormalizationError(ProcessingError):
    """Exception raised when a raw entity cannot be mapped."""

    pass
