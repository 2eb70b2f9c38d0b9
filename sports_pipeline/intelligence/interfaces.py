"""
Prediction layer interface contracts.
"""

from typing import Any, Dict, Protocol

from sports_pipeline.types import DataKind, PredictionResult

# Data kinds that get a prediction, and the model that serves them
PREDICTION_MODELS: Dict[DataKind, str] = {
    DataKind.PLAYER_STATS: "player-performance",
    DataKind.INJURIES: "injury-risk",
}


class PredictionService(Protocol):
    """Interface for the model server consulted by the processing router."""

    async def predict(self, model: str, features: Dict[str, Any]) -> PredictionResult:
        """
        Run a model on one entity's features.

        Args:
            model: Model name (e.g. "player-performance", "injury-risk")
            features: Feature dict built from the normalized entity

        Returns:
            PredictionResult with value and confidence

        Raises:
            PredictionError: If the model is unknown or the call fails
        """
        ...

    async def ping(self) -> bool:
        """Reachability probe used by health checks."""
        ...


class PredictionError(Exception):
    """Exception raised when a prediction cannot be produced."""

    pass
