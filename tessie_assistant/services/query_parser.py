"""
Natural language query parsing for Tessie Assistant.

Free text is matched against an ordered list of intents. The first intent
whose keywords are all satisfied wins and fixes the operation, its
parameters and a constant confidence score.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from tessie_assistant.errors import InvalidInputError
from tessie_assistant.schemas.queries import Operation, ParsedQuery
from tessie_assistant.services.time_frame import extract_time_frame

# Keyword groups (matched as lowercase substrings)
RECENCY_WORDS = ["latest", "last", "recent"]
TRIP_WORDS = ["drive", "trip"]
ANALYSIS_WORDS = ["analyz", "detail", "how long", "battery", "fsd", "duration"]
COMPLETION_WORDS = ["finish", "completed", "just drove"]
PERIOD_WORDS = ["week", "month"]
DISTANCE_WORDS = ["mile", "driv"]
BREAKDOWN_WORDS = ["week by week", "weekly breakdown", "break", "basis"]
HISTORY_WORDS = ["history", "trip"]
LOCATION_WORDS = ["location", "place", "where"]
CURRENT_STATE_WORDS = ["current", "now", "status"]
LIST_WORDS = ["list", "all"]

LOCATION_PHRASE_PATTERN = re.compile(
    r"\b(?:at|to|near|from)\s+(?:the\s+)?([a-z0-9][a-z0-9 '&.-]*?)(?:\s+(?:last|this|in|on|during|since|today|yesterday)\b|[?.!,]|$)"
)


class Intent(str, Enum):
    DRIVE_ANALYSIS = "drive_analysis"
    POST_DRIVE = "post_drive"
    PERIOD_MILEAGE = "period_mileage"
    DRIVING_HISTORY = "driving_history"
    LOCATION = "location"
    CURRENT_STATE = "current_state"
    VEHICLE_LIST = "vehicle_list"


class IntentRule(NamedTuple):
    intent: Intent
    matches: Callable[[str], bool]
    build: Callable[[str, datetime], ParsedQuery]


def _has_any(text: str, words: List[str]) -> bool:
    return any(word in text for word in words)


def _extract_location(lowered: str) -> Optional[str]:
    match = LOCATION_PHRASE_PATTERN.search(lowered)
    if not match:
        return None
    location = match.group(1).strip()
    return location or None


def _build_drive_analysis(lowered: str, now: datetime) -> ParsedQuery:
    if "yesterday" in lowered:
        days_back = 2
    elif "today" in lowered:
        days_back = 1
    else:
        days_back = 7
    return ParsedQuery(
        operation=Operation.ANALYZE_LATEST_DRIVE,
        parameters={"days_back": days_back},
        confidence=0.95
    )


def _build_post_drive(lowered: str, now: datetime) -> ParsedQuery:
    return ParsedQuery(
        operation=Operation.ANALYZE_LATEST_DRIVE,
        parameters={"days_back": 1},
        confidence=0.9
    )


def _build_period_mileage(lowered: str, now: datetime) -> ParsedQuery:
    confidence = 0.95 if _has_any(lowered, BREAKDOWN_WORDS) else 0.9
    return ParsedQuery(
        operation=Operation.GET_WEEKLY_MILEAGE,
        parameters=extract_time_frame(lowered, now).to_parameters(),
        confidence=confidence
    )


def _build_driving_history(lowered: str, now: datetime) -> ParsedQuery:
    parameters = extract_time_frame(lowered, now).to_parameters()
    parameters["limit"] = 50
    return ParsedQuery(
        operation=Operation.GET_DRIVING_HISTORY,
        parameters=parameters,
        confidence=0.8
    )


def _build_location(lowered: str, now: datetime) -> ParsedQuery:
    # Entity extraction is a best-effort regex, hence the low confidence
    parameters: Dict[str, Any] = extract_time_frame(lowered, now).to_parameters()
    location = _extract_location(lowered)
    if location:
        parameters["location"] = location
    return ParsedQuery(
        operation=Operation.GET_MILEAGE_AT_LOCATION,
        parameters=parameters,
        confidence=0.6
    )


def _build_current_state(lowered: str, now: datetime) -> ParsedQuery:
    return ParsedQuery(
        operation=Operation.GET_VEHICLE_CURRENT_STATE,
        parameters={"use_cache": True},
        confidence=0.8
    )


def _build_vehicle_list(lowered: str, now: datetime) -> ParsedQuery:
    return ParsedQuery(operation=Operation.GET_VEHICLES, parameters={}, confidence=0.8)


INTENT_CASCADE: List[IntentRule] = [
    IntentRule(
        Intent.DRIVE_ANALYSIS,
        lambda q: _has_any(q, RECENCY_WORDS) and _has_any(q, TRIP_WORDS) and _has_any(q, ANALYSIS_WORDS),
        _build_drive_analysis,
    ),
    IntentRule(
        Intent.POST_DRIVE,
        lambda q: _has_any(q, COMPLETION_WORDS) and _has_any(q, ANALYSIS_WORDS),
        _build_post_drive,
    ),
    IntentRule(
        Intent.PERIOD_MILEAGE,
        lambda q: _has_any(q, PERIOD_WORDS) and _has_any(q, DISTANCE_WORDS),
        _build_period_mileage,
    ),
    IntentRule(
        Intent.DRIVING_HISTORY,
        lambda q: "driv" in q and _has_any(q, HISTORY_WORDS),
        _build_driving_history,
    ),
    IntentRule(Intent.LOCATION, lambda q: _has_any(q, LOCATION_WORDS), _build_location),
    IntentRule(Intent.CURRENT_STATE, lambda q: _has_any(q, CURRENT_STATE_WORDS), _build_current_state),
    IntentRule(
        Intent.VEHICLE_LIST,
        lambda q: "vehicle" in q and _has_any(q, LIST_WORDS),
        _build_vehicle_list,
    ),
]


def parse_natural_language(text: str, now: Optional[datetime] = None) -> ParsedQuery:
    """
    Map a free-text question to an operation and parameters.

    Args:
        text: The user's question
        now: Reference instant for relative dates, defaults to the current UTC time

    Returns:
        ParsedQuery; operation "unknown" with confidence 0.0 when nothing matches

    Raises:
        InvalidInputError: If text is not a string
    """
    if not isinstance(text, str):
        raise InvalidInputError(f"Query must be a string, got {type(text).__name__}")

    lowered = text.lower()
    for rule in INTENT_CASCADE:
        if rule.matches(lowered):
            return rule.build(lowered, now)

    return ParsedQuery(operation=Operation.UNKNOWN, parameters={}, confidence=0.0)


def detect_query_patterns(text: str) -> List[str]:
    """Tag the broad themes of a query, used to explain low-confidence parses."""
    lowered = text.lower()
    patterns = []
    if "week" in lowered:
        patterns.append("temporal_weekly")
    if "month" in lowered:
        patterns.append("temporal_monthly")
    if _has_any(lowered, DISTANCE_WORDS):
        patterns.append("distance_related")
    if "last" in lowered or "previous" in lowered:
        patterns.append("historical")
    if "break" in lowered or "basis" in lowered:
        patterns.append("breakdown_requested")
    if "current" in lowered or "now" in lowered:
        patterns.append("current_state")
    return patterns
