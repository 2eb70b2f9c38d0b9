"""
Fetch adapter implementations.

- ApiFetchAdapter: plain HTTP GET returning JSON
- RemoteExtractionAdapter: delegates crawl/render work to an extraction
  service over HTTP
- FixtureFetchAdapter: canned payloads for dry runs and tests
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

import aiohttp

from sports_pipeline.ingestion.base import AdapterRegistry, FetchAdapter, FetchError
from sports_pipeline.types import FetchMechanism

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "SportsPipeline/1.0 (Sports Data Collector)"


class HttpFetchAdapter(FetchAdapter):
    """Base for adapters that hold one aiohttp session for their lifetime."""

    def __init__(self, default_timeout: float = 30.0):
        super().__init__()
        self.default_timeout = default_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _timeout(self, timeout: Optional[float]) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=timeout or self.default_timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class ApiFetchAdapter(HttpFetchAdapter):
    """Fetches JSON from a plain HTTP endpoint."""

    mechanism = FetchMechanism.API

    async def fetch(
        self,
        url: str,
        hints: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        request_headers = headers or {"User-Agent": DEFAULT_USER_AGENT}
        session = self._get_session()

        try:
            async with session.get(
                url, headers=request_headers, timeout=self._timeout(timeout)
            ) as resp:
                if resp.status != 200:
                    raise FetchError(f"API request failed: {resp.status} {resp.reason}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError(f"API request to {url} timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"API request to {url} failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"API response from {url} is not valid JSON") from e


class RemoteExtractionAdapter(HttpFetchAdapter):
    """
    Sends crawl or render jobs to an extraction service.

    The service receives the page URL, the extraction hints (CSS selectors)
    and headers, and answers with the extracted structure, either bare or
    wrapped in a "data" field.
    """

    def __init__(
        self,
        base_url: str,
        mechanism: FetchMechanism = FetchMechanism.CRAWL,
        api_key: Optional[str] = None,
        default_timeout: float = 30.0,
    ):
        """
        Initialize the adapter.

        Args:
            base_url: Extraction service root URL
            mechanism: CRAWL or RENDER, forwarded as the job mode
            api_key: Optional bearer token for the service
            default_timeout: Timeout when the caller gives none
        """
        self.mechanism = mechanism
        super().__init__(default_timeout)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def fetch(
        self,
        url: str,
        hints: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        job = {
            "url": url,
            "mode": self.mechanism.value,
            "selectors": hints or {},
            "headers": headers or {},
        }
        if self.mechanism == FetchMechanism.RENDER and hints:
            # Wait for the first selector before extracting
            job["wait_for_selector"] = next(iter(hints.values()))

        session = self._get_session()
        try:
            async with session.post(
                f"{self.base_url}/extract",
                json=job,
                headers=self._headers(),
                timeout=self._timeout(timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise FetchError(
                        f"Extraction service returned {resp.status} for {url}: {text[:200]}"
                    )
                body = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError(f"Extraction of {url} timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Extraction service request failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"Extraction service returned invalid JSON for {url}") from e

        if isinstance(body, dict) and "data" in body and len(body) <= 2:
            return body["data"]
        return body

    async def ping(self) -> bool:
        try:
            session = self._get_session()
            async with session.get(
                f"{self.base_url}/health",
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status == 200
        except Exception as e:
            logger.warning(f"Extraction service health check failed: {e}")
            return False


# ============================================================================
# Fixture Adapter
# ============================================================================


def _player_stats_fixture() -> Dict[str, Any]:
    return {
        "players": [
            {
                "id": "pm_15",
                "name": "Patrick Mahomes",
                "team": "KC",
                "position": "QB",
                "stats": {
                    "passingYards": 4839,
                    "touchdowns": 41,
                    "interceptions": 12,
                    "completionPct": 66.3,
                },
                "projections": {
                    "week": 15,
                    "passingYards": 295,
                    "touchdowns": 2.3,
                    "fantasyPoints": 22.5,
                },
            },
            {
                "id": "ja_17",
                "name": "Josh Allen",
                "team": "BUF",
                "position": "QB",
                "stats": {
                    "passingYards": 4283,
                    "touchdowns": 35,
                    "interceptions": 14,
                    "completionPct": 65.1,
                },
                "projections": {
                    "week": 15,
                    "passingYards": 285,
                    "touchdowns": 2.1,
                    "fantasyPoints": 21.3,
                },
            },
        ]
    }


def _scores_fixture() -> Dict[str, Any]:
    return {
        "games": [
            {
                "id": "game_kc_buf_2024",
                "homeTeam": "KC",
                "awayTeam": "BUF",
                "gameTime": datetime.utcnow().isoformat(),
                "status": "IN_PROGRESS",
                "homeScore": 21,
                "awayScore": 17,
                "quarter": 3,
                "timeLeft": "8:45",
                "lastPlay": "P.Mahomes pass complete to T.Kelce for 15 yards",
            }
        ]
    }


def _weather_fixture() -> Dict[str, Any]:
    return {
        "weather": [
            {
                "gameId": "game_kc_buf_2024",
                "stadium": "Arrowhead Stadium",
                "temperature": 32,
                "windSpeed": 15,
                "windDirection": "NW",
                "precipitation": 20,
                "conditions": "Light Snow",
            }
        ]
    }


def _injuries_fixture() -> Dict[str, Any]:
    return {
        "injuries": [
            {
                "playerId": "cmc_28",
                "playerName": "Christian McCaffrey",
                "team": "SF",
                "status": "Questionable",
                "type": "Ankle",
                "severity": "Medium",
                "details": "Limited in practice",
                "history": ["2023 - Ankle", "2022 - Hamstring"],
            },
            {
                "playerId": "tk_87",
                "playerName": "Travis Kelce",
                "team": "KC",
                "status": "Probable",
                "type": "Knee",
                "severity": "Low",
                "details": "Full participant in practice",
                "history": ["2023 - Back"],
            },
        ]
    }


def _odds_fixture() -> Dict[str, Any]:
    return {
        "odds": [
            {
                "playerId": "pm_15",
                "gameId": "game_kc_buf_2024",
                "propType": "PASSING_YARDS",
                "propName": "Patrick Mahomes Passing Yards",
                "line": 285.5,
                "overOdds": -110,
                "underOdds": -110,
                "sportsbook": "DraftKings",
                "confidence": 75,
            },
            {
                "playerId": "ja_17",
                "gameId": "game_kc_buf_2024",
                "propType": "PASSING_TDS",
                "propName": "Josh Allen Passing TDs",
                "line": 2.5,
                "overOdds": 105,
                "underOdds": -125,
                "sportsbook": "DraftKings",
                "confidence": 68,
            },
        ]
    }


# (url substrings that must all match, payload builder)
DEFAULT_FIXTURES: List[tuple] = [
    (("espn.com/nfl/stats",), _player_stats_fixture),
    (("nfl.com/scores",), _scores_fixture),
    (("weather.com",), _weather_fixture),
    (("yahoo.com", "injuries"), _injuries_fixture),
    (("draftkings.com",), _odds_fixture),
]


class FixtureFetchAdapter(FetchAdapter):
    """
    Returns canned payloads chosen by URL.

    Unknown URLs yield a placeholder dict with no entity list. Each call
    builds a fresh payload, so callers may mutate what they receive.
    """

    mechanism = FetchMechanism.API

    def __init__(
        self,
        fixtures: Optional[List[tuple]] = None,
        latency_seconds: float = 0.0,
        history_size: int = 100,
    ):
        super().__init__()
        self.fixtures = list(fixtures if fixtures is not None else DEFAULT_FIXTURES)
        self.latency_seconds = latency_seconds
        # Most recent requested URLs
        self.calls: Deque[str] = deque(maxlen=history_size)

    def add_fixture(self, url_fragment: str, builder: Callable[[], Any]) -> None:
        self.fixtures.insert(0, ((url_fragment,), builder))

    async def fetch(
        self,
        url: str,
        hints: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        self.calls.append(url)
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        for fragments, builder in self.fixtures:
            if all(fragment in url for fragment in fragments):
                return builder()

        return {"data": f"Fixture data for {url}"}


def build_default_adapters(
    use_fixtures: bool = False,
    extraction_service_url: Optional[str] = None,
    extraction_api_key: Optional[str] = None,
    default_timeout: float = 30.0,
) -> AdapterRegistry:
    """
    Build the adapter registry for a pipeline.

    Args:
        use_fixtures: Serve every mechanism from FixtureFetchAdapter
        extraction_service_url: Extraction service for crawl/render sources
        extraction_api_key: Bearer token for the extraction service
        default_timeout: Request timeout when a source sets none

    Returns:
        AdapterRegistry with one adapter per available mechanism
    """
    registry = AdapterRegistry()

    if use_fixtures:
        fixture = FixtureFetchAdapter()
        for mechanism in FetchMechanism:
            registry.register(fixture, mechanism)
        logger.info("Using fixture adapters for all fetch mechanisms")
        return registry

    registry.register(ApiFetchAdapter(default_timeout=default_timeout))

    if extraction_service_url:
        for mechanism in (FetchMechanism.CRAWL, FetchMechanism.RENDER):
            registry.register(
                RemoteExtractionAdapter(
                    extraction_service_url,
                    mechanism=mechanism,
                    api_key=extraction_api_key,
                    default_timeout=default_timeout,
                )
            )
    else:
        logger.warning(
            "EXTRACTION_SERVICE_URL not set, crawl and render sources will fail"
        )

    return registry
