"""
Schemas for drive data.

This module defines the Pydantic models for raw Tessie drive records and the
merged journeys and analyses built from them.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RawDriveSegment(BaseModel):
    """
    One recorded drive as returned by the Tessie drives endpoint.

    Timestamps are epoch seconds; distances are miles.
    """
    model_config = ConfigDict(extra="ignore")

    id: int
    started_at: int = Field(..., description="Drive start, epoch seconds")
    ended_at: int = Field(..., description="Drive end, epoch seconds")
    starting_location: Optional[str] = None
    ending_location: Optional[str] = None
    starting_saved_location: Optional[str] = None
    ending_saved_location: Optional[str] = None
    starting_odometer: Optional[float] = None
    ending_odometer: Optional[float] = None
    starting_battery: int = Field(..., ge=0, le=100)
    ending_battery: int = Field(..., ge=0, le=100)
    odometer_distance: float = Field(..., ge=0, description="Distance driven in miles")
    autopilot_distance: Optional[float] = Field(
        None,
        description="Miles driven on Autopilot/FSD; None when not reported"
    )
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    energy_used: Optional[float] = Field(None, description="Energy used in kWh")

    @model_validator(mode="after")
    def check_time_order(self):
        if self.ended_at < self.started_at:
            raise ValueError(f"drive {self.id} ends before it starts")
        return self

    @property
    def duration_minutes(self) -> float:
        return (self.ended_at - self.started_at) / 60

    @property
    def start_label(self) -> str:
        return self.starting_saved_location or self.starting_location or ""

    @property
    def end_label(self) -> str:
        return self.ending_saved_location or self.ending_location or ""


class StopType(str, Enum):
    SHORT = "short"
    CHARGING = "charging"
    EXCLUDED = "excluded"


class Stop(BaseModel):
    """A gap between two drives that were merged into one journey."""
    model_config = ConfigDict(frozen=True)

    location: str
    duration_minutes: float
    stop_type: StopType
    started_at: int
    ended_at: int


class MergedJourney(BaseModel):
    """One or more drives collapsed into a single trip."""
    id: str
    original_drive_ids: List[int]
    started_at: int
    ended_at: int
    starting_location: str
    ending_location: str
    starting_battery: int
    ending_battery: int
    total_distance: float
    total_duration_minutes: float
    driving_duration_minutes: float
    stops: List[Stop] = Field(default_factory=list)
    autopilot_distance: float
    autopilot_percentage: float
    autopilot_data_available: bool = Field(
        ...,
        description="True when at least one drive reported an autopilot distance"
    )
    energy_consumed: int = Field(..., description="Starting minus ending battery percentage")
    average_speed: float
    max_speed: float


class BatteryConsumption(BaseModel):
    percentage_used: float
    estimated_kwh_used: float
    efficiency_miles_per_kwh: Optional[float] = None


class FSDAnalysis(BaseModel):
    total_autopilot_miles: float
    fsd_percentage: float
    autopilot_available: bool
    note: Optional[str] = None


class JourneyAnalysis(BaseModel):
    """Report for the most recent journey."""
    merged_drive: MergedJourney
    battery_consumption: BatteryConsumption
    fsd_analysis: FSDAnalysis
    summary: str
