"""
Prediction collaborators for processed entities.
"""

from sports_pipeline.intelligence.interfaces import (
    PREDICTION_MODELS,
    PredictionError,
    PredictionService,
)
from sports_pipeline.intelligence.prediction import (
    HeuristicPredictionService,
    HttpPredictionClient,
    injury_impact,
)

__all__ = [
    "PREDICTION_MODELS",
    "PredictionError",
    "PredictionService",
    "HeuristicPredictionService",
    "HttpPredictionClient",
    "injury_impact",
]
