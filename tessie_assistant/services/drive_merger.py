"""
Drive merging for Tessie Assistant.

Tessie records a new drive every time the car is parked, so a single trip
with a coffee stop or a Supercharger visit shows up as several drives. This
module groups adjacent drives back into journeys:

1. Drives separated by less than MAX_STOP_MINUTES are merged (short stop)
2. Drives where the battery is higher at the next start are merged (charging stop)
3. Anything else starts a new journey
"""
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from tessie_assistant.errors import InvalidInputError
from tessie_assistant.schemas.drives import MergedJourney, RawDriveSegment, Stop, StopType
from tessie_assistant.services.config import MAX_STOP_MINUTES

SegmentInput = Union[RawDriveSegment, Mapping[str, Any]]


def parse_segments(records: Iterable[SegmentInput]) -> List[RawDriveSegment]:
    """
    Validate raw drive records.

    Args:
        records: RawDriveSegment instances or dicts from the Tessie API

    Returns:
        List of RawDriveSegment in input order

    Raises:
        InvalidInputError: If a record is missing timestamps or is inconsistent
    """
    segments = []
    for index, record in enumerate(records):
        if isinstance(record, RawDriveSegment):
            segments.append(record)
            continue
        try:
            segments.append(RawDriveSegment.model_validate(record))
        except ValidationError as e:
            raise InvalidInputError(f"Invalid drive record at position {index}: {e}")
    return segments


def sort_segments(segments: Iterable[RawDriveSegment]) -> List[RawDriveSegment]:
    """Order drives by start time, ties broken by drive id."""
    return sorted(segments, key=lambda s: (s.started_at, s.id))


def gap_minutes(prev: RawDriveSegment, nxt: RawDriveSegment) -> float:
    return (nxt.started_at - prev.ended_at) / 60


def should_merge(
    prev: RawDriveSegment,
    nxt: RawDriveSegment,
    max_stop_minutes: float = MAX_STOP_MINUTES
) -> Optional[StopType]:
    """
    Decide whether two adjacent drives belong to the same journey.

    Returns:
        The type of stop between them, or None if they are separate journeys
    """
    if gap_minutes(prev, nxt) < max_stop_minutes:
        return StopType.SHORT
    # Battery went up while parked, so the car was charging
    if nxt.starting_battery > prev.ending_battery:
        return StopType.CHARGING
    return None


def _round(value: float) -> float:
    return round(value, 2)


def create_merged_journey(
    group: Sequence[RawDriveSegment],
    stop_types: Sequence[StopType]
) -> MergedJourney:
    """
    Build a journey from a run of drives that merge pairwise.

    Args:
        group: Drives in ascending start order
        stop_types: One stop type per adjacent pair in group

    Returns:
        MergedJourney with aggregated distance, time, battery and speed figures
    """
    if not group:
        raise ValueError("Cannot create merged journey from empty group")
    if len(stop_types) != len(group) - 1:
        raise ValueError("Need exactly one stop type per adjacent pair of drives")

    first, last = group[0], group[-1]

    stops = [
        Stop(
            location=current.end_label,
            duration_minutes=_round(gap_minutes(current, nxt)),
            stop_type=stop_type,
            started_at=current.ended_at,
            ended_at=nxt.started_at,
        )
        for current, nxt, stop_type in zip(group, group[1:], stop_types)
    ]

    total_distance = sum(s.odometer_distance for s in group)
    autopilot_distance = sum(s.autopilot_distance or 0 for s in group)
    total_duration = (last.ended_at - first.started_at) / 60
    driving_duration = sum(s.duration_minutes for s in group)
    max_speed = max(s.max_speed or 0 for s in group)

    driving_hours = driving_duration / 60
    average_speed = total_distance / driving_hours if driving_hours > 0 else 0
    autopilot_percentage = autopilot_distance / total_distance * 100 if total_distance > 0 else 0

    return MergedJourney(
        id="merged_" + "_".join(str(s.id) for s in group),
        original_drive_ids=[s.id for s in group],
        started_at=first.started_at,
        ended_at=last.ended_at,
        starting_location=first.start_label,
        ending_location=last.end_label,
        starting_battery=first.starting_battery,
        ending_battery=last.ending_battery,
        total_distance=_round(total_distance),
        total_duration_minutes=_round(total_duration),
        driving_duration_minutes=_round(driving_duration),
        stops=stops,
        autopilot_distance=_round(autopilot_distance),
        autopilot_percentage=_round(autopilot_percentage),
        autopilot_data_available=any(s.autopilot_distance is not None for s in group),
        energy_consumed=first.starting_battery - last.ending_battery,
        average_speed=_round(average_speed),
        max_speed=_round(max_speed),
    )


def merge_drives(
    segments: Iterable[SegmentInput],
    max_stop_minutes: float = MAX_STOP_MINUTES
) -> List[MergedJourney]:
    """
    Merge drives separated by short or charging stops into journeys.

    Args:
        segments: Drives in any order, as models or raw API dicts
        max_stop_minutes: Gap below which drives always merge

    Returns:
        Journeys in ascending start order; empty list for no drives
    """
    ordered = sort_segments(parse_segments(segments))
    if not ordered:
        return []

    journeys = []
    group = [ordered[0]]
    stop_types = []

    for prev, nxt in zip(ordered, ordered[1:]):
        stop_type = should_merge(prev, nxt, max_stop_minutes)
        if stop_type is None:
            journeys.append(create_merged_journey(group, stop_types))
            group, stop_types = [nxt], []
        else:
            group.append(nxt)
            stop_types.append(stop_type)

    journeys.append(create_merged_journey(group, stop_types))
    return journeys
