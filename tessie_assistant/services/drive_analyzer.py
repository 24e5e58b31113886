"""
Latest-drive analysis for Tessie Assistant.

Merges recent drives into journeys and reports battery use, Autopilot/FSD
share and a readable summary for the most recent one.
"""
from typing import Iterable, Optional

from tessie_assistant.schemas.drives import (
    BatteryConsumption, FSDAnalysis, JourneyAnalysis, MergedJourney, StopType
)
from tessie_assistant.services.config import NOMINAL_PACK_KWH
from tessie_assistant.services.drive_merger import SegmentInput, merge_drives

AUTOPILOT_UNAVAILABLE_NOTE = "FSD/Autopilot data was not reported for this drive"


def analyze_battery_consumption(journey: MergedJourney, nominal_pack_kwh: float = NOMINAL_PACK_KWH) -> BatteryConsumption:
    # A negative value means the battery rose during the window; reported as-is.
    percentage_used = round(float(journey.energy_consumed), 2)
    estimated_kwh_used = round(percentage_used / 100 * nominal_pack_kwh, 2)

    efficiency = None
    if estimated_kwh_used > 0:
        efficiency = round(journey.total_distance / estimated_kwh_used, 2)

    return BatteryConsumption(
        percentage_used=percentage_used,
        estimated_kwh_used=estimated_kwh_used,
        efficiency_miles_per_kwh=efficiency,
    )


def analyze_fsd_usage(journey: MergedJourney) -> FSDAnalysis:
    if not journey.autopilot_data_available:
        return FSDAnalysis(
            total_autopilot_miles=0,
            fsd_percentage=0,
            autopilot_available=False,
            note=AUTOPILOT_UNAVAILABLE_NOTE,
        )

    fsd_percentage = 0.0
    if journey.total_distance > 0:
        fsd_percentage = round(journey.autopilot_distance / journey.total_distance * 100, 2)

    return FSDAnalysis(
        total_autopilot_miles=journey.autopilot_distance,
        fsd_percentage=fsd_percentage,
        autopilot_available=True,
    )


def _format_minutes(minutes: float) -> str:
    whole = int(round(minutes))
    return f"{whole // 60}h {whole % 60}m"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _describe_stops(journey: MergedJourney) -> str:
    if not journey.stops:
        return "none"
    counts = []
    for stop_type in (StopType.CHARGING, StopType.SHORT, StopType.EXCLUDED):
        count = sum(1 for s in journey.stops if s.stop_type == stop_type)
        if count:
            counts.append(f"{count} {stop_type.value}")
    stop_time = sum(s.duration_minutes for s in journey.stops)
    return f"{_plural(len(journey.stops), 'stop')} ({', '.join(counts)}), {_format_minutes(stop_time)} stopped"


def generate_drive_summary(journey: MergedJourney, battery: BatteryConsumption, fsd: FSDAnalysis) -> str:
    lines = [
        f"Drive from {journey.starting_location} to {journey.ending_location}:",
        f"• Total time: {_format_minutes(journey.total_duration_minutes)}",
        f"• Driving time: {_format_minutes(journey.driving_duration_minutes)}",
        f"• Stops: {_describe_stops(journey)}",
        f"• Distance: {journey.total_distance} miles",
        f"• Average speed: {journey.average_speed} mph (max: {journey.max_speed} mph)",
        f"• Battery used: {battery.percentage_used}% (≈{battery.estimated_kwh_used} kWh)",
    ]
    if battery.efficiency_miles_per_kwh is not None:
        lines.append(f"• Efficiency: {battery.efficiency_miles_per_kwh} mi/kWh")

    if fsd.autopilot_available:
        lines.append(
            f"• FSD/Autopilot: {fsd.total_autopilot_miles} miles ({fsd.fsd_percentage}% of drive)"
        )
    else:
        lines.append(f"• FSD/Autopilot: {fsd.note}")

    return "\n".join(lines)


def analyze_latest_journey(
    segments: Iterable[SegmentInput],
    nominal_pack_kwh: Optional[float] = None
) -> Optional[JourneyAnalysis]:
    """
    Analyze the most recent journey in a set of drives.

    Args:
        segments: Drives in any order, as models or raw API dicts
        nominal_pack_kwh: Pack capacity used for kWh estimates; defaults to the configured value

    Returns:
        JourneyAnalysis, or None when there are no drives

    Raises:
        InvalidInputError: If a drive record is malformed
    """
    journeys = merge_drives(segments)
    if not journeys:
        return None

    latest = max(journeys, key=lambda j: j.started_at)
    pack_kwh = NOMINAL_PACK_KWH if nominal_pack_kwh is None else nominal_pack_kwh

    battery = analyze_battery_consumption(latest, pack_kwh)
    fsd = analyze_fsd_usage(latest)

    return JourneyAnalysis(
        merged_drive=latest,
        battery_consumption=battery,
        fsd_analysis=fsd,
        summary=generate_drive_summary(latest, battery, fsd),
    )
