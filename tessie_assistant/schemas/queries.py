"""
Schemas for natural language queries.

This module defines the operation vocabulary and the Pydantic models passed
between the parser, the optimizer and the dispatch layer.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class Operation(str, Enum):
    GET_VEHICLE_CURRENT_STATE = "get_vehicle_current_state"
    GET_DRIVING_HISTORY = "get_driving_history"
    GET_MILEAGE_AT_LOCATION = "get_mileage_at_location"
    GET_WEEKLY_MILEAGE = "get_weekly_mileage"
    GET_VEHICLES = "get_vehicles"
    ANALYZE_LATEST_DRIVE = "analyze_latest_drive"
    UNKNOWN = "unknown"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with millisecond precision, e.g. 2024-05-01T00:00:00.000+00:00."""
    return value.isoformat(timespec="milliseconds")


class TimeFrame(BaseModel):
    """An absolute date range resolved from a relative phrase."""
    start: datetime
    end: datetime

    def to_parameters(self) -> Dict[str, str]:
        return {
            "start_date": format_timestamp(self.start),
            "end_date": format_timestamp(self.end),
        }


class ParsedQuery(BaseModel):
    """Result of matching free text against the intent cascade."""
    operation: Operation
    parameters: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)


class QueryMetrics(BaseModel):
    estimated_response_size: float = Field(..., description="Estimated response size in KB")
    complexity: int
    api_calls_required: int
    suggestions: List[str] = Field(default_factory=list)


class OptimizedQuery(BaseModel):
    is_optimized: bool
    original_complexity: int
    optimized_complexity: int
    recommendations: List[str] = Field(default_factory=list)
    optimized_parameters: Dict[str, Any] = Field(default_factory=dict)
