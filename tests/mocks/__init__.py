"""
Mock implementations for testing.

These mocks stand in for fetch adapters, storage and prediction
collaborators so pipeline components can be tested without network access.
"""

from tests.mocks.adapters import (
    FailingFetchAdapter,
    FakeClock,
    ScriptedFetchAdapter,
)
from tests.mocks.intelligence import StubPredictionService
from tests.mocks.storage import FakeRedis, FlakyEntityStore

__all__ = [
    "ScriptedFetchAdapter",
    "FailingFetchAdapter",
    "FakeClock",
    "StubPredictionService",
    "FlakyEntityStore",
    "FakeRedis",
]
