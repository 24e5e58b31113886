"""
Pipeline service for Tessie Assistant.

This module provides the core functionality for:
1. Running individual vehicle data tools against the Tessie API
2. Turning a natural language question into an optimized tool call
3. Enriching tool results with query metadata
"""
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tessie_assistant.errors import InvalidInputError, TessieAssistantError
from tessie_assistant.schemas.drives import RawDriveSegment
from tessie_assistant.schemas.queries import (
    Operation, OptimizedQuery, ParsedQuery, QueryMetrics, format_timestamp
)
from tessie_assistant.services.config import LOW_CONFIDENCE_THRESHOLD
from tessie_assistant.services.drive_analyzer import analyze_latest_journey
from tessie_assistant.services.drive_merger import merge_drives, parse_segments
from tessie_assistant.services.query_optimizer import (
    MAX_WINDOW_DAYS, parse_date, analyze_query, optimize_for_mcp
)
from tessie_assistant.services.query_parser import detect_query_patterns, parse_natural_language
from tessie_assistant.services.tessie_client import TessieClient

ANALYSIS_DRIVE_LIMIT = 100

QUERY_SUGGESTIONS = [
    'Try asking about weekly mileage: "How many miles did I drive last week?"',
    'Ask about driving history: "Show me my driving history"',
    'Check current status: "What is my car\'s current state?"',
    'Analyze a drive: "Analyze my latest drive"',
    'List vehicles: "Show me all my vehicles"',
]

ToolHandler = Callable[[TessieClient, Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _require(params: Dict[str, Any], key: str) -> Any:
    value = params.get(key)
    if value in (None, ""):
        raise InvalidInputError(f"Missing required parameter: {key}")
    return value


def _round(value: float) -> float:
    return round(value, 2)


def _iso_from_epoch(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def _day_of(segment: RawDriveSegment) -> datetime:
    return datetime.fromtimestamp(segment.started_at, tz=timezone.utc)


async def get_vehicle_current_state(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    """Compact snapshot of the vehicle's last known state."""
    vin = _require(params, "vin")
    state = await client.get_vehicle_state(vin, params.get("use_cache", True))
    return {
        "vehicle": state.get("display_name"),
        "vin": state.get("vin", vin),
        "current_location": {
            "latitude": state.get("latitude"),
            "longitude": state.get("longitude"),
        },
        "odometer": state.get("odometer"),
        "battery_level": state.get("battery_level"),
        "charging_state": state.get("charging_state"),
        "locked": state.get("locked"),
        "climate_on": state.get("climate_on"),
        "inside_temp": state.get("inside_temp"),
        "outside_temp": state.get("outside_temp"),
        "last_updated": state.get("since"),
    }


async def _fetch_drives_chunked(
    client: TessieClient,
    vin: str,
    start_date: str,
    end_date: str,
    limit: int
) -> List[Dict[str, Any]]:
    """
    Fetch a long date range in 30-day windows, newest first, up to limit drives.

    Windows do not overlap: each one ends 1 ms before the previous one starts,
    so a drive starting on a boundary is fetched once.
    """
    range_start = parse_date(start_date)
    window_end = parse_date(end_date)
    drives: List[Dict[str, Any]] = []
    seen_ids = set()

    while window_end >= range_start and len(drives) < limit:
        window_start = max(window_end - timedelta(days=MAX_WINDOW_DAYS), range_start)
        print(f"Fetching drives for {vin} from {window_start.date()} to {window_end.date()}")
        batch = await client.get_drives(
            vin, format_timestamp(window_start), format_timestamp(window_end), limit - len(drives)
        )
        for drive in batch:
            drive_id = drive.get("id")
            if drive_id is not None:
                if drive_id in seen_ids:
                    continue
                seen_ids.add(drive_id)
            drives.append(drive)
        window_end = window_start - timedelta(milliseconds=1)

    return drives[:limit]


async def get_driving_history(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    vin = _require(params, "vin")
    start_date = params.get("start_date")
    end_date = params.get("end_date")
    limit = params.get("limit") or 50

    if params.get("chunked") and start_date and end_date:
        records = await _fetch_drives_chunked(client, vin, start_date, end_date, limit)
    else:
        records = await client.get_drives(vin, start_date, end_date, limit)
    drives = parse_segments(records)

    return {
        "total_drives": len(drives),
        "total_distance_miles": _round(sum(d.odometer_distance for d in drives)),
        "drives": [
            {
                "id": d.id,
                "date": _iso_from_epoch(d.started_at),
                "from": {
                    "address": d.starting_location,
                    "saved_location": d.starting_saved_location,
                    "odometer": d.starting_odometer,
                },
                "to": {
                    "address": d.ending_location,
                    "saved_location": d.ending_saved_location,
                    "odometer": d.ending_odometer,
                },
                "distance_miles": d.odometer_distance,
                "duration_minutes": _round(d.duration_minutes),
                "battery_used": d.starting_battery - d.ending_battery,
                "autopilot_miles": d.autopilot_distance,
            }
            for d in drives
        ],
    }


def _matches_location(address: Optional[str], saved_location: Optional[str], needle: str) -> bool:
    return needle in (address or "").lower() or needle in (saved_location or "").lower()


async def get_mileage_at_location(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    vin = _require(params, "vin")
    location = _require(params, "location")
    needle = location.lower()

    records = await client.get_drives(vin, params.get("start_date"), params.get("end_date"))
    matches = []
    for d in parse_segments(records):
        if _matches_location(d.starting_location, d.starting_saved_location, needle):
            matches.append({
                "date": _iso_from_epoch(d.started_at),
                "odometer_at_arrival": d.starting_odometer,
                "location_matched": d.starting_location,
                "saved_location": d.starting_saved_location,
            })
        elif _matches_location(d.ending_location, d.ending_saved_location, needle):
            matches.append({
                "date": _iso_from_epoch(d.ended_at),
                "odometer_at_arrival": d.ending_odometer,
                "location_matched": d.ending_location,
                "saved_location": d.ending_saved_location,
            })

    return {
        "location_searched": location,
        "matching_drives": len(matches),
        "drives": matches,
    }


def _breakdown(drives: List[RawDriveSegment], key: Callable[[RawDriveSegment], str], label: str) -> List[Dict[str, Any]]:
    stats: "OrderedDict[str, Dict[str, float]]" = OrderedDict()
    for d in sorted(drives, key=lambda s: s.started_at):
        bucket = stats.setdefault(key(d), {"miles": 0.0, "drives": 0, "autopilot_miles": 0.0})
        bucket["miles"] += d.odometer_distance
        bucket["drives"] += 1
        bucket["autopilot_miles"] += d.autopilot_distance or 0

    return [
        {
            label: period,
            "miles": _round(s["miles"]),
            "drives": s["drives"],
            "autopilot_miles": _round(s["autopilot_miles"]),
            "fsd_percentage": _round(s["autopilot_miles"] / s["miles"] * 100) if s["miles"] > 0 else 0,
        }
        for period, s in stats.items()
    ]


def _week_start(segment: RawDriveSegment) -> str:
    day = _day_of(segment)
    return (day - timedelta(days=day.weekday())).date().isoformat()


async def get_weekly_mileage(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    vin = _require(params, "vin")
    start_date = _require(params, "start_date")
    end_date = _require(params, "end_date")

    records = await client.get_drives(vin, start_date, end_date)
    drives = parse_segments(records)
    total_miles = sum(d.odometer_distance for d in drives)
    total_minutes = sum(d.duration_minutes for d in drives)

    return {
        "period": {"start": start_date, "end": end_date},
        "total_miles_driven": _round(total_miles),
        "total_drives": len(drives),
        "total_journeys": len(merge_drives(drives)),
        "total_drive_time_hours": _round(total_minutes / 60),
        "average_miles_per_drive": _round(total_miles / len(drives)) if drives else 0,
        "daily_breakdown": _breakdown(drives, lambda d: _day_of(d).date().isoformat(), "date"),
        "weekly_breakdown": _breakdown(drives, _week_start, "week_starting"),
    }


async def get_vehicles(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    vehicles = await client.get_vehicles()
    return {"vehicles": vehicles, "count": len(vehicles)}


async def analyze_latest_drive(client: TessieClient, params: Dict[str, Any]) -> Dict[str, Any]:
    vin = _require(params, "vin")
    days_back = params.get("days_back") or 7

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days_back)
    period = f"{start.date().isoformat()} to {end.date().isoformat()}"

    records = await client.get_drives(vin, format_timestamp(start), format_timestamp(end), ANALYSIS_DRIVE_LIMIT)
    analysis = analyze_latest_journey(records)
    if analysis is None:
        return {
            "error": "No drives found in the specified time period",
            "period": period,
            "suggestion": "Try increasing days_back or check if the vehicle has been driven recently",
        }

    journey = analysis.merged_drive
    return {
        "analysis_summary": analysis.summary,
        "detailed_analysis": {
            "drive_details": {
                "id": journey.id,
                "original_drives": len(journey.original_drive_ids),
                "start_time": _iso_from_epoch(journey.started_at),
                "end_time": _iso_from_epoch(journey.ended_at),
                "route": f"{journey.starting_location} → {journey.ending_location}",
                "distance_miles": journey.total_distance,
                "total_duration_minutes": journey.total_duration_minutes,
                "driving_duration_minutes": journey.driving_duration_minutes,
                "average_speed_mph": journey.average_speed,
                "max_speed_mph": journey.max_speed,
            },
            "stops": [
                {
                    "location": stop.location,
                    "duration_minutes": stop.duration_minutes,
                    "type": stop.stop_type.value,
                    "started_at": _iso_from_epoch(stop.started_at),
                    "ended_at": _iso_from_epoch(stop.ended_at),
                }
                for stop in journey.stops
            ],
            "battery_analysis": {
                "starting_level": journey.starting_battery,
                "ending_level": journey.ending_battery,
                **analysis.battery_consumption.model_dump(),
            },
            "fsd_analysis": analysis.fsd_analysis.model_dump(),
        },
        "metadata": {
            "analysis_time": end.isoformat(),
            "drives_analyzed": len(records),
            "period_searched": period,
        },
    }


TOOL_HANDLERS: Dict[Operation, ToolHandler] = {
    Operation.GET_VEHICLE_CURRENT_STATE: get_vehicle_current_state,
    Operation.GET_DRIVING_HISTORY: get_driving_history,
    Operation.GET_MILEAGE_AT_LOCATION: get_mileage_at_location,
    Operation.GET_WEEKLY_MILEAGE: get_weekly_mileage,
    Operation.GET_VEHICLES: get_vehicles,
    Operation.ANALYZE_LATEST_DRIVE: analyze_latest_drive,
}


async def execute_operation(client: TessieClient, operation: Operation, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run a single tool.

    Raises:
        InvalidInputError: If the operation is not a known tool or parameters are missing
    """
    try:
        handler = TOOL_HANDLERS[Operation(operation)]
    except (KeyError, ValueError):
        raise InvalidInputError(f"Unsupported operation: {operation}")
    print(f"[execute_operation] Running {handler.__name__} with {params}")
    return await handler(client, params)


def optimize_query(parsed: ParsedQuery) -> Tuple[OptimizedQuery, QueryMetrics]:
    """Cap the parsed parameters and measure the resulting request."""
    optimization = optimize_for_mcp(parsed.operation, parsed.parameters)
    metrics = analyze_query(parsed.operation, optimization.optimized_parameters)
    if optimization.recommendations:
        print(f"[optimize_query] {parsed.operation.value}: {optimization.recommendations}")
    return optimization, metrics


def low_confidence_response(query: str, parsed: ParsedQuery) -> Dict[str, Any]:
    return {
        "error": "Unable to understand the query",
        "suggestions": QUERY_SUGGESTIONS,
        "confidence": parsed.confidence,
        "query_analysis": {
            "original_query": query,
            "detected_patterns": detect_query_patterns(query),
        },
    }


async def resolve_vin(client: TessieClient, operation: Operation, vin: Optional[str]) -> Optional[str]:
    """Use the given VIN, or the account's first vehicle when none was given."""
    if vin or operation == Operation.GET_VEHICLES:
        return vin
    vehicles = await client.get_vehicles()
    if not vehicles:
        return None
    return vehicles[0].get("vin")


def enrich_result(
    result: Dict[str, Any],
    query: str,
    parsed: ParsedQuery,
    optimization: OptimizedQuery,
    metrics: QueryMetrics,
    parameters_used: Dict[str, Any]
) -> Dict[str, Any]:
    return {
        **result,
        "query_metadata": {
            "natural_language_query": query,
            "operation": parsed.operation.value,
            "confidence": parsed.confidence,
            "optimization_applied": optimization.is_optimized,
            "performance_metrics": {
                "estimated_response_size_kb": metrics.estimated_response_size,
                "complexity_score": metrics.complexity,
                "api_calls_required": metrics.api_calls_required,
            },
            "recommendations": optimization.recommendations or None,
            "parameters_used": parameters_used,
        },
    }


async def process_query(
    query: str,
    client: TessieClient,
    vin: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Answer a natural language question end-to-end.

    Args:
        query: Natural language question
        client: Tessie API client
        vin: Vehicle to query; the first vehicle on the account when omitted
        now: Reference instant for relative dates

    Returns:
        Tool result enriched with query_metadata, or an error payload
    """
    print(f"[process_query] Processing query: '{query}'")
    parsed = parse_natural_language(query, now)
    print(f"[process_query] Parsed as {parsed.operation.value} (confidence {parsed.confidence})")

    if parsed.confidence < LOW_CONFIDENCE_THRESHOLD:
        return low_confidence_response(query, parsed)

    optimization, metrics = optimize_query(parsed)

    target_vin = await resolve_vin(client, parsed.operation, vin)
    if parsed.operation != Operation.GET_VEHICLES and not target_vin:
        return {"error": "No vehicles found in your Tessie account"}

    final_params = dict(optimization.optimized_parameters)
    if target_vin and parsed.operation != Operation.GET_VEHICLES:
        final_params["vin"] = target_vin

    try:
        result = await execute_operation(client, parsed.operation, final_params)
    except TessieAssistantError as e:
        print(f"[process_query] Error: {type(e).__name__}: {e.message}")
        return {
            "error": "Failed to execute query",
            "details": e.message,
            "original_query": query,
            "parsed_operation": parsed.operation.value,
            "parameters": final_params,
            "optimization_applied": optimization.is_optimized,
            "recommendations": optimization.recommendations,
        }

    return enrich_result(result, query, parsed, optimization, metrics, final_params)
