"""
Prediction service implementations.

HeuristicPredictionService scores entities locally with fixed rules and is
the default when no model server is configured. HttpPredictionClient calls
a model server over HTTP.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from sports_pipeline.intelligence.interfaces import PredictionError
from sports_pipeline.types import PredictionResult

logger = logging.getLogger(__name__)

# Projection change in points per injury status
INJURY_IMPACT: Dict[str, int] = {
    "OUT": -15,
    "DOUBTFUL": -8,
    "QUESTIONABLE": -3,
    "PROBABLE": -1,
    "HEALTHY": 0,
}
UNKNOWN_INJURY_IMPACT = -5


def _status_key(status: Any) -> Optional[str]:
    if not isinstance(status, str) or not status.strip():
        return None
    return status.strip().upper()


def injury_impact(status: Any) -> int:
    """Impact of an injury status; unknown or non-text statuses score -5."""
    key = _status_key(status)
    if key is None:
        return UNKNOWN_INJURY_IMPACT
    return INJURY_IMPACT.get(key, UNKNOWN_INJURY_IMPACT)


def projection_impact(status: Any) -> float:
    """Projection change in percent implied by an injury status."""
    return injury_impact(status) * 1.5


def _risk_level(impact: int) -> str:
    if impact <= -15:
        return "high"
    if impact <= -5:
        return "elevated"
    if impact < 0:
        return "low"
    return "none"


class HeuristicPredictionService:
    """
    Rule-based predictions.

    player-performance: projected fantasy points, reduced by the player's
    injury status when one is reported.
    injury-risk: impact score and risk level from the injury status table.
    """

    MODELS = ("player-performance", "injury-risk")

    async def predict(self, model: str, features: Dict[str, Any]) -> PredictionResult:
        if model == "player-performance":
            return self._player_performance(features)
        if model == "injury-risk":
            return self._injury_risk(features)
        raise PredictionError(f"Unknown model '{model}'")

    def _player_performance(self, features: Dict[str, Any]) -> PredictionResult:
        projections = features.get("projections") or {}
        if not isinstance(projections, dict):
            raise PredictionError(f"Invalid projections value: {projections!r}")
        base = projections.get("fantasyPoints")
        if base is None:
            base = features.get("fantasy_points")

        try:
            base = float(base) if base is not None else None
        except (TypeError, ValueError) as e:
            raise PredictionError(f"Invalid fantasy points value: {base!r}") from e

        if base is None:
            return PredictionResult(
                value={"projected_points": None},
                confidence=0.3,
                model="player-performance",
            )

        status = features.get("injury_status")
        adjustment = projection_impact(status) if status else 0.0
        projected = round(base * (1 + adjustment / 100), 2)

        return PredictionResult(
            value={
                "projected_points": projected,
                "floor": round(projected * 0.7, 2),
                "ceiling": round(projected * 1.3, 2),
            },
            confidence=0.7 if status is None else 0.6,
            model="player-performance",
        )

    def _injury_risk(self, features: Dict[str, Any]) -> PredictionResult:
        status = features.get("status")
        impact = injury_impact(status)
        known = _status_key(status) in INJURY_IMPACT

        # Repeated injuries raise the risk by one step
        history = features.get("history")
        if not isinstance(history, list):
            history = []
        risk = _risk_level(impact - (5 if len(history) >= 2 else 0))

        return PredictionResult(
            value={
                "impact": impact,
                "projection_change_pct": projection_impact(status),
                "risk": risk,
            },
            confidence=0.8 if known else 0.5,
            model="injury-risk",
        )

    async def ping(self) -> bool:
        return True


class HttpPredictionClient:
    """
    Client for a model server.

    POST {base_url}/predict/{model} with {"features": ...}; the server
    answers {"value": ..., "confidence": ...}.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def predict(self, model: str, features: Dict[str, Any]) -> PredictionResult:
        session = self._get_session()
        try:
            async with session.post(
                f"{self.base_url}/predict/{model}",
                json={"features": features},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    raise PredictionError(f"Model server returned {resp.status} for {model}")
                body = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise PredictionError(f"Prediction for {model} timed out") from e
        except aiohttp.ClientError as e:
            raise PredictionError(f"Model server request failed: {e}") from e
        except ValueError as e:
            raise PredictionError(f"Model server returned invalid JSON for {model}") from e

        try:
            return PredictionResult(
                value=body.get("value"),
                confidence=body.get("confidence", 0.7),
                model=model,
            )
        except (AttributeError, ValueError) as e:
            raise PredictionError(f"Malformed prediction for {model}: {e}") from e

    async def ping(self) -> bool:
        try:
            session = self._get_session()
            async with session.get(
                f"{self.base_url}/health",
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status == 200
        except Exception as e:
            logger.warning(f"Model server health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
