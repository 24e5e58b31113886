"""
Unit tests for the tool handlers and the query pipeline.

A fake Tessie client stands in for the API; see conftest.py.
"""
from datetime import datetime, timezone

import pytest

from tessie_assistant.errors import InvalidInputError
from tessie_assistant.schemas.queries import Operation
from tessie_assistant.services.config import LOW_CONFIDENCE_THRESHOLD
from tessie_assistant.services.pipeline import (
    ANALYSIS_DRIVE_LIMIT,
    QUERY_SUGGESTIONS,
    execute_operation,
    process_query,
    resolve_vin,
)
from tessie_assistant.services.query_optimizer import parse_date
from tessie_assistant.services.query_parser import parse_natural_language

VIN = "5YJ3E1EA0KF000001"


def epoch(*args):
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def week_of_drives(make_drive):
    return [
        make_drive(1, epoch(2024, 5, 13, 8, 0), epoch(2024, 5, 13, 8, 30), 10, 90, 85, autopilot_distance=5),
        make_drive(2, epoch(2024, 5, 13, 8, 35), epoch(2024, 5, 13, 9, 0), 20, 85, 80),
        make_drive(3, epoch(2024, 5, 19, 10, 0), epoch(2024, 5, 19, 11, 0), 30, 78, 70),
        make_drive(4, epoch(2024, 5, 20, 10, 0), epoch(2024, 5, 20, 10, 30), 40, 70, 60),
    ]


@pytest.mark.asyncio
async def test_get_vehicles(fake_client):
    result = await execute_operation(fake_client, Operation.GET_VEHICLES, {})

    assert result["count"] == 1
    assert result["vehicles"][0]["vin"] == VIN


@pytest.mark.asyncio
async def test_unknown_operation_is_rejected(fake_client):
    with pytest.raises(InvalidInputError):
        await execute_operation(fake_client, Operation.UNKNOWN, {})


@pytest.mark.asyncio
async def test_missing_vin_is_rejected(fake_client):
    with pytest.raises(InvalidInputError) as exc_info:
        await execute_operation(fake_client, Operation.GET_DRIVING_HISTORY, {})

    assert exc_info.value.message == "Missing required parameter: vin"


@pytest.mark.asyncio
async def test_vehicle_current_state(fake_client):
    fake_client.state = {
        "display_name": "Test Car",
        "battery_level": 72,
        "latitude": 37.0,
        "longitude": -121.5,
        "charging_state": "Disconnected",
    }

    result = await execute_operation(
        fake_client, Operation.GET_VEHICLE_CURRENT_STATE, {"vin": VIN, "use_cache": True}
    )

    assert result["vehicle"] == "Test Car"
    assert result["vin"] == VIN
    assert result["battery_level"] == 72
    assert result["current_location"] == {"latitude": 37.0, "longitude": -121.5}
    assert fake_client.state_requests == [(VIN, True)]


@pytest.mark.asyncio
async def test_driving_history(fake_client, week_of_drives):
    fake_client.drives = week_of_drives

    result = await execute_operation(fake_client, Operation.GET_DRIVING_HISTORY, {"vin": VIN, "limit": 50})

    assert result["total_drives"] == 4
    assert result["total_distance_miles"] == 100
    first = result["drives"][0]
    assert first["id"] == 1
    assert first["date"] == "2024-05-13T08:00:00+00:00"
    assert first["battery_used"] == 5
    assert first["autopilot_miles"] == 5
    assert first["duration_minutes"] == 30


class WindowedTessieClient:
    """Returns only drives that start inside the requested window, newest first."""

    def __init__(self, drives):
        self.drives = drives
        self.drive_requests = []

    async def get_drives(self, vin, start_date=None, end_date=None, limit=50):
        self.drive_requests.append((start_date, end_date, limit))
        start = parse_date(start_date).timestamp()
        end = parse_date(end_date).timestamp()
        in_window = [d for d in self.drives if start <= d["started_at"] <= end]
        in_window.sort(key=lambda d: d["started_at"], reverse=True)
        return in_window[:limit]


@pytest.mark.asyncio
async def test_chunked_history_fetches_newest_window_first(fake_client):
    params = {
        "vin": VIN,
        "limit": 50,
        "chunked": True,
        "start_date": "2024-01-01T00:00:00.000+00:00",
        "end_date": "2024-03-01T00:00:00.000+00:00",
    }

    await execute_operation(fake_client, Operation.GET_DRIVING_HISTORY, params)

    assert [(r["start_date"], r["end_date"]) for r in fake_client.drive_requests] == [
        ("2024-01-31T00:00:00.000+00:00", "2024-03-01T00:00:00.000+00:00"),
        ("2024-01-01T00:00:00.000+00:00", "2024-01-30T23:59:59.999+00:00"),
    ]


@pytest.mark.asyncio
async def test_chunked_history_keeps_most_recent_drives(make_drive):
    # One drive at noon on each of the 90 days from Jan 1 to Mar 30
    drives = [
        make_drive(day, epoch(2024, 1, 1, 12) + day * 86400, epoch(2024, 1, 1, 12) + day * 86400 + 1800, 10, 80, 70)
        for day in range(90)
    ]
    client = WindowedTessieClient(drives)
    params = {
        "vin": VIN,
        "limit": 50,
        "chunked": True,
        "start_date": "2024-01-01T00:00:00.000+00:00",
        "end_date": "2024-03-31T00:00:00.000+00:00",
    }

    result = await execute_operation(client, Operation.GET_DRIVING_HISTORY, params)

    assert result["total_drives"] == 50
    assert sorted(d["id"] for d in result["drives"]) == list(range(40, 90))
    assert client.drive_requests[0][1] == "2024-03-31T00:00:00.000+00:00"


@pytest.mark.asyncio
async def test_chunked_history_counts_boundary_drive_once(make_drive):
    boundary = epoch(2024, 1, 31)
    client = WindowedTessieClient([make_drive(7, boundary, boundary + 1200, 12.5, 80, 75)])
    params = {
        "vin": VIN,
        "limit": 50,
        "chunked": True,
        "start_date": "2024-01-01T00:00:00.000+00:00",
        "end_date": "2024-03-01T00:00:00.000+00:00",
    }

    result = await execute_operation(client, Operation.GET_DRIVING_HISTORY, params)

    assert [d["id"] for d in result["drives"]] == [7]
    assert result["total_drives"] == 1
    assert result["total_distance_miles"] == 12.5
    assert len(client.drive_requests) == 2


@pytest.mark.asyncio
async def test_chunked_history_drops_duplicate_ids(make_drive):
    class OverlappingClient(WindowedTessieClient):
        async def get_drives(self, vin, start_date=None, end_date=None, limit=50):
            self.drive_requests.append((start_date, end_date, limit))
            return list(self.drives)

    client = OverlappingClient([make_drive(3, epoch(2024, 2, 10), epoch(2024, 2, 10, 0, 30), 8, 80, 75)])
    params = {
        "vin": VIN,
        "limit": 50,
        "chunked": True,
        "start_date": "2024-01-01T00:00:00.000+00:00",
        "end_date": "2024-03-01T00:00:00.000+00:00",
    }

    result = await execute_operation(client, Operation.GET_DRIVING_HISTORY, params)

    assert result["total_drives"] == 1


@pytest.mark.asyncio
async def test_weekly_mileage(fake_client, week_of_drives):
    fake_client.drives = week_of_drives
    params = {
        "vin": VIN,
        "start_date": "2024-05-13T00:00:00.000+00:00",
        "end_date": "2024-05-21T00:00:00.000+00:00",
    }

    result = await execute_operation(fake_client, Operation.GET_WEEKLY_MILEAGE, params)

    assert result["total_miles_driven"] == 100
    assert result["total_drives"] == 4
    assert result["total_journeys"] == 3
    assert result["average_miles_per_drive"] == 25
    assert result["total_drive_time_hours"] == pytest.approx(2.42, abs=0.01)
    assert [(w["week_starting"], w["miles"], w["drives"]) for w in result["weekly_breakdown"]] == [
        ("2024-05-13", 60, 3),
        ("2024-05-20", 40, 1),
    ]
    monday = result["daily_breakdown"][0]
    assert monday["date"] == "2024-05-13"
    assert monday["miles"] == 30
    assert monday["fsd_percentage"] == pytest.approx(16.67, abs=0.01)


@pytest.mark.asyncio
async def test_weekly_mileage_requires_dates(fake_client):
    with pytest.raises(InvalidInputError):
        await execute_operation(fake_client, Operation.GET_WEEKLY_MILEAGE, {"vin": VIN})


@pytest.mark.asyncio
async def test_mileage_at_location(fake_client, make_drive):
    fake_client.drives = [
        make_drive(1, 1000, 2000, 30, 80, 40, ending_saved_location="Supercharger Gilroy"),
        make_drive(2, 5000, 6000, 20, 90, 70, starting_location="Gilroy Outlets"),
        make_drive(3, 9000, 9500, 5, 70, 68),
    ]

    result = await execute_operation(
        fake_client, Operation.GET_MILEAGE_AT_LOCATION, {"vin": VIN, "location": "Gilroy"}
    )

    assert result["location_searched"] == "Gilroy"
    assert result["matching_drives"] == 2
    assert result["drives"][0]["saved_location"] == "Supercharger Gilroy"
    assert result["drives"][1]["location_matched"] == "Gilroy Outlets"


@pytest.mark.asyncio
async def test_analyze_latest_drive(fake_client, make_drive):
    fake_client.drives = [
        make_drive(1, 1000, 2000, 30, 80, 75, autopilot_distance=10),
        make_drive(2, 2300, 3000, 20, 75, 65),
    ]

    result = await execute_operation(fake_client, Operation.ANALYZE_LATEST_DRIVE, {"vin": VIN})

    details = result["detailed_analysis"]
    assert details["drive_details"]["id"] == "merged_1_2"
    assert details["drive_details"]["original_drives"] == 2
    assert details["stops"][0]["type"] == "short"
    assert details["battery_analysis"]["percentage_used"] == 15
    assert details["fsd_analysis"]["autopilot_available"] is True
    assert result["analysis_summary"].startswith("Drive from Location 1A to Location 2B:")
    assert result["metadata"]["drives_analyzed"] == 2
    assert fake_client.drive_requests[0]["limit"] == ANALYSIS_DRIVE_LIMIT


@pytest.mark.asyncio
async def test_analyze_latest_drive_without_drives(fake_client):
    result = await execute_operation(fake_client, Operation.ANALYZE_LATEST_DRIVE, {"vin": VIN, "days_back": 3})

    assert result["error"] == "No drives found in the specified time period"
    assert "suggestion" in result


@pytest.mark.asyncio
async def test_resolve_vin(fake_client):
    assert await resolve_vin(fake_client, Operation.GET_WEEKLY_MILEAGE, "EXPLICIT") == "EXPLICIT"
    assert await resolve_vin(fake_client, Operation.GET_WEEKLY_MILEAGE, None) == VIN
    assert await resolve_vin(fake_client, Operation.GET_VEHICLES, None) is None


@pytest.mark.parametrize("suggestion", QUERY_SUGGESTIONS)
def test_suggested_questions_are_understood(suggestion):
    example = suggestion.split('"')[1]

    parsed = parse_natural_language(example)

    assert parsed.operation != Operation.UNKNOWN
    assert parsed.confidence >= LOW_CONFIDENCE_THRESHOLD


@pytest.mark.asyncio
async def test_process_query_low_confidence(fake_client):
    result = await process_query("asdkj random text", fake_client)

    assert result["error"] == "Unable to understand the query"
    assert result["suggestions"] == QUERY_SUGGESTIONS
    assert result["confidence"] == 0.0
    assert result["query_analysis"]["original_query"] == "asdkj random text"
    assert fake_client.drive_requests == []


@pytest.mark.asyncio
async def test_process_query_lists_vehicles(fake_client):
    result = await process_query("Show me all my vehicles", fake_client)

    assert result["count"] == 1
    metadata = result["query_metadata"]
    assert metadata["operation"] == "get_vehicles"
    assert metadata["confidence"] == 0.8
    assert metadata["parameters_used"] == {}
    assert metadata["recommendations"] is None


@pytest.mark.asyncio
async def test_process_query_weekly_mileage(fake_client, week_of_drives, fixed_now):
    fake_client.drives = week_of_drives

    result = await process_query("How many miles did I drive last week?", fake_client, now=fixed_now)

    assert result["total_drives"] == 4
    assert result["query_metadata"]["operation"] == "get_weekly_mileage"
    assert result["query_metadata"]["parameters_used"]["vin"] == VIN
    assert fake_client.drive_requests[0]["start_date"] == "2024-05-08T00:00:00.000+00:00"


@pytest.mark.asyncio
async def test_process_query_without_vehicles(fake_client):
    fake_client.vehicles = []

    result = await process_query("Show my driving history", fake_client)

    assert result == {"error": "No vehicles found in your Tessie account"}


@pytest.mark.asyncio
async def test_process_query_reports_execution_failure(fake_client):
    result = await process_query("Where did I park?", fake_client)

    assert result["error"] == "Failed to execute query"
    assert result["details"] == "Missing required parameter: location"
    assert result["parsed_operation"] == "get_mileage_at_location"
    assert result["parameters"]["vin"] == VIN
