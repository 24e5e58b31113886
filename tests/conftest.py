"""
Test configuration and fixtures for Tessie Assistant.

This module provides common test fixtures for both unit and integration tests.
"""
import os
from datetime import datetime, timezone

import pytest

# Must be set before tessie_assistant.main is imported
os.environ["ENABLE_MCP"] = "1"
os.environ.setdefault("TESSIE_ACCESS_TOKEN", "dummy_token_for_tests")

# Wednesday
FIXED_NOW = datetime(2024, 5, 15, 14, 30, 0, tzinfo=timezone.utc)


def build_drive(
    drive_id,
    started_at,
    ended_at,
    distance,
    start_battery,
    end_battery,
    autopilot_distance=None,
    **overrides
):
    """Build a raw drive record shaped like the Tessie drives endpoint."""
    drive = {
        "id": drive_id,
        "started_at": started_at,
        "ended_at": ended_at,
        "starting_location": f"Location {drive_id}A",
        "ending_location": f"Location {drive_id}B",
        "starting_odometer": 10000 + drive_id * 100,
        "ending_odometer": 10000 + drive_id * 100 + distance,
        "starting_battery": start_battery,
        "ending_battery": end_battery,
        "odometer_distance": distance,
        "autopilot_distance": autopilot_distance,
        "max_speed": 65,
        "energy_used": 15.5,
    }
    drive.update(overrides)
    return drive


class FakeTessieClient:
    """Stands in for TessieClient and records the drive requests it receives."""

    def __init__(self, drives=None, vehicles=None, state=None):
        self.drives = drives or []
        self.vehicles = vehicles if vehicles is not None else [{"vin": "5YJ3E1EA0KF000001", "display_name": "Test Car"}]
        self.state = state or {}
        self.drive_requests = []
        self.state_requests = []

    async def get_vehicles(self):
        return self.vehicles

    async def get_vehicle_state(self, vin, use_cache=True):
        self.state_requests.append((vin, use_cache))
        return self.state

    async def get_drives(self, vin, start_date=None, end_date=None, limit=50):
        self.drive_requests.append({"vin": vin, "start_date": start_date, "end_date": end_date, "limit": limit})
        return self.drives[:limit]

    async def aclose(self):
        pass


@pytest.fixture
def make_drive():
    return build_drive


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def fake_client():
    return FakeTessieClient()
