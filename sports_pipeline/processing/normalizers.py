"""
Per-kind normalizers.

Each normalizer maps one raw item of a collected payload to a
NormalizedEntity keyed by the id the upstream source assigns. Malformed
items raise NormalizationError; the caller skips them and continues.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sports_pipeline.processing.interfaces import NormalizationError
from sports_pipeline.types import DataKind, NormalizedEntity

logger = logging.getLogger(__name__)

# Payload field that holds each kind's entity list
PAYLOAD_FIELDS: Dict[DataKind, str] = {
    DataKind.PLAYER_STATS: "players",
    DataKind.INJURIES: "injuries",
    DataKind.GAME_UPDATES: "games",
    DataKind.ODDS: "odds",
    DataKind.WEATHER: "weather",
    DataKind.NEWS: "articles",
}


def extract_entities(kind: DataKind, payload: Any) -> List[Any]:
    """
    Get the raw entity list out of a payload.

    Args:
        kind: Data kind of the source
        payload: Raw payload (list, or dict with the kind's list field)

    Returns:
        Raw items; empty when the payload carries none

    Raises:
        NormalizationError: If the list field exists but is not a list
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise NormalizationError(f"Unsupported {kind.value} payload type {type(payload).__name__}")

    field = PAYLOAD_FIELDS[kind]
    items = payload.get(field)
    if items is None and kind == DataKind.NEWS:
        items = payload.get("news")
    if items is None:
        return []
    if not isinstance(items, list):
        raise NormalizationError(f"Field '{field}' of {kind.value} payload is not a list")
    return items


def _require_mapping(kind: DataKind, item: Any) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise NormalizationError(f"{kind.value} item must be an object, got {type(item).__name__}")
    return item


def _first(item: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"'{name}' is not numeric: {value!r}") from e


def _to_list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise NormalizationError(f"'{name}' is not a list: {value!r}")
    return list(value)


def _to_text(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise NormalizationError(f"'{name}' is not a string: {value!r}")
    return value


def normalize_player(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.PLAYER_STATS, item)
    name = item.get("name")
    external_id = item.get("id")
    if not external_id:
        if not name or not item.get("team"):
            raise NormalizationError("player has neither an id nor a name and team")
        external_id = f"{name}_{item['team']}"

    stats = item.get("stats") or {}
    projections = item.get("projections") or {}
    if not isinstance(stats, dict) or not isinstance(projections, dict):
        raise NormalizationError(f"player {external_id} has malformed stats or projections")

    return NormalizedEntity(
        kind=DataKind.PLAYER_STATS,
        external_id=str(external_id),
        fields={
            "name": name,
            "team": item.get("team"),
            "position": item.get("position"),
            "sport": sport,
            "stats": stats,
            "projections": projections,
            "opponent": item.get("opponent"),
            "is_home": item.get("isHome"),
            "injury_status": _to_text(item.get("injuryStatus"), "injuryStatus"),
        },
    )


def normalize_injury(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.INJURIES, item)
    player_id = _first(item, "playerId", "player_id")
    if not player_id:
        raise NormalizationError("injury report without playerId")

    status = _to_text(item.get("status"), "status")
    return NormalizedEntity(
        kind=DataKind.INJURIES,
        external_id=str(player_id),
        fields={
            "player_name": _first(item, "playerName", "player_name"),
            "team": item.get("team"),
            "sport": sport,
            "status": status.upper() if status else status,
            "type": item.get("type"),
            "severity": item.get("severity"),
            "details": item.get("details"),
            "history": _to_list(item.get("history"), "history"),
        },
    )


def normalize_game(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.GAME_UPDATES, item)
    game_id = item.get("id")
    if not game_id:
        raise NormalizationError("game update without id")

    return NormalizedEntity(
        kind=DataKind.GAME_UPDATES,
        external_id=str(game_id),
        fields={
            "sport": sport,
            "home_team": item.get("homeTeam"),
            "away_team": item.get("awayTeam"),
            "game_time": item.get("gameTime"),
            "status": item.get("status"),
            "home_score": item.get("homeScore"),
            "away_score": item.get("awayScore"),
            "quarter": item.get("quarter"),
            "time_left": item.get("timeLeft"),
            "last_play": item.get("lastPlay"),
        },
    )


def normalize_odds(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.ODDS, item)
    prop_type = item.get("propType")
    if not prop_type or not item.get("playerId"):
        raise NormalizationError("odds entry without playerId or propType")

    sportsbook = item.get("sportsbook") or "unknown"
    external_id = f"{item['playerId']}:{item.get('gameId') or 'na'}:{prop_type}:{sportsbook}"

    return NormalizedEntity(
        kind=DataKind.ODDS,
        external_id=external_id,
        fields={
            "sport": sport,
            "player_id": item["playerId"],
            "game_id": item.get("gameId"),
            "prop_type": prop_type,
            "prop_name": item.get("propName"),
            "line": _to_float(item.get("line"), "line"),
            "over_odds": item.get("overOdds"),
            "under_odds": item.get("underOdds"),
            "sportsbook": sportsbook,
            "confidence": item.get("confidence") or 50,
        },
    )


def normalize_weather(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.WEATHER, item)
    external_id = _first(item, "gameId", "stadium")
    if not external_id:
        raise NormalizationError("weather report without gameId or stadium")

    return NormalizedEntity(
        kind=DataKind.WEATHER,
        external_id=str(external_id),
        fields={
            "sport": sport,
            "game_id": item.get("gameId"),
            "stadium": item.get("stadium"),
            "temperature": _to_float(item.get("temperature"), "temperature"),
            "wind_speed": _to_float(item.get("windSpeed"), "windSpeed"),
            "wind_direction": item.get("windDirection"),
            "precipitation": _to_float(item.get("precipitation"), "precipitation"),
            "conditions": item.get("conditions"),
        },
    )


def normalize_article(item: Any, sport: str) -> NormalizedEntity:
    item = _require_mapping(DataKind.NEWS, item)
    external_id = _first(item, "id", "url", "title")
    if not external_id:
        raise NormalizationError("article without id, url or title")

    return NormalizedEntity(
        kind=DataKind.NEWS,
        external_id=str(external_id),
        fields={
            "sport": sport,
            "source": item.get("source"),
            "title": item.get("title"),
            "content": item.get("content"),
            "summary": item.get("summary"),
            "url": item.get("url"),
            "author": item.get("author"),
            "published_at": item.get("publishedAt"),
            "teams": _to_list(item.get("teams"), "teams"),
            "players": _to_list(item.get("players"), "players"),
            "sentiment": item.get("sentiment"),
            "category": item.get("category"),
            "image_url": item.get("imageUrl"),
        },
    )


NORMALIZERS: Dict[DataKind, Callable[[Any, str], NormalizedEntity]] = {
    DataKind.PLAYER_STATS: normalize_player,
    DataKind.INJURIES: normalize_injury,
    DataKind.GAME_UPDATES: normalize_game,
    DataKind.ODDS: normalize_odds,
    DataKind.WEATHER: normalize_weather,
    DataKind.NEWS: normalize_article,
}


def normalize(kind: DataKind, item: Any, sport: str) -> NormalizedEntity:
    """
    Normalize one raw item.

    Raises:
        NormalizationError: If the item is malformed
    """
    return NORMALIZERS[kind](item, sport)
