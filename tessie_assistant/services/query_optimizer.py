"""
Query cost estimation and parameter capping for Tessie Assistant.

Each operation has a base cost. Surcharges apply when parameters make the
upstream request heavier (large limits, long date ranges, bypassing the
cache). optimize_for_mcp rewrites parameters to stay within those budgets.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, NamedTuple, Optional, Union

from tessie_assistant.errors import InvalidInputError
from tessie_assistant.schemas.queries import Operation, OptimizedQuery, QueryMetrics, format_timestamp

DEFAULT_RANGE_DAYS = 7
MAX_HISTORY_LIMIT = 50
MAX_WINDOW_DAYS = 30
DEFAULT_DAYS_BACK = 7
MAX_DAYS_BACK = 14


class OperationCost(NamedTuple):
    complexity: int
    size_kb: float
    # Size is multiplied by the expected result count when True
    per_result: bool
    api_calls: int


OPERATION_COSTS: Dict[Operation, OperationCost] = {
    Operation.GET_DRIVING_HISTORY: OperationCost(30, 50, True, 1),
    Operation.GET_WEEKLY_MILEAGE: OperationCost(35, 30, True, 1),
    Operation.GET_VEHICLE_CURRENT_STATE: OperationCost(5, 2, False, 1),
    Operation.ANALYZE_LATEST_DRIVE: OperationCost(40, 25, False, 1),
}
DEFAULT_COST = OperationCost(10, 5, False, 1)


def parse_date(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise InvalidInputError(f"Invalid date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_date_range(start_date: Optional[Any], end_date: Optional[Any]) -> int:
    """Whole days spanned by a date range, rounded up; 7 when a bound is missing."""
    if not start_date or not end_date:
        return DEFAULT_RANGE_DAYS
    delta = abs(parse_date(end_date) - parse_date(start_date))
    return math.ceil(delta.total_seconds() / 86400)


def _driving_history_surcharge(params: Dict[str, Any], metrics: QueryMetrics) -> None:
    limit = params.get("limit")
    if limit and limit > 100:
        metrics.suggestions.append("Consider reducing limit to 100 or less for better performance")
        metrics.complexity += 10

    days = calculate_date_range(params.get("start_date"), params.get("end_date"))
    if days > 90:
        metrics.suggestions.append("Large date ranges may cause timeouts. Consider smaller chunks.")
        metrics.complexity += 20
        metrics.api_calls_required = math.ceil(days / 30)


def _weekly_mileage_surcharge(params: Dict[str, Any], metrics: QueryMetrics) -> None:
    days = calculate_date_range(params.get("start_date"), params.get("end_date"))
    if days > 30:
        metrics.suggestions.append("Weekly breakdowns work best for 1-month periods")
        metrics.complexity += 15


def _current_state_surcharge(params: Dict[str, Any], metrics: QueryMetrics) -> None:
    if params.get("use_cache") is False:
        metrics.suggestions.append("Consider using cache to avoid waking the vehicle")
        metrics.complexity += 5


def _latest_drive_surcharge(params: Dict[str, Any], metrics: QueryMetrics) -> None:
    days_back = params.get("days_back")
    if days_back and days_back > 7:
        metrics.suggestions.append("Consider limiting search to 7 days for faster analysis")
        metrics.complexity += 10


SURCHARGES: Dict[Operation, Callable[[Dict[str, Any], QueryMetrics], None]] = {
    Operation.GET_DRIVING_HISTORY: _driving_history_surcharge,
    Operation.GET_WEEKLY_MILEAGE: _weekly_mileage_surcharge,
    Operation.GET_VEHICLE_CURRENT_STATE: _current_state_surcharge,
    Operation.ANALYZE_LATEST_DRIVE: _latest_drive_surcharge,
}


def _as_operation(operation: Union[Operation, str]) -> Optional[Operation]:
    try:
        return Operation(operation)
    except ValueError:
        return None


def analyze_query(
    operation: Union[Operation, str],
    params: Dict[str, Any],
    estimated_result_count: int = 1
) -> QueryMetrics:
    """
    Estimate the cost of running an operation.

    Args:
        operation: Operation name
        params: Operation parameters
        estimated_result_count: Expected number of results, scales list responses

    Returns:
        QueryMetrics with size, complexity, upstream call count and suggestions
    """
    op = _as_operation(operation)
    cost = OPERATION_COSTS.get(op, DEFAULT_COST)

    size = cost.size_kb * estimated_result_count if cost.per_result else cost.size_kb
    metrics = QueryMetrics(
        estimated_response_size=size,
        complexity=cost.complexity,
        api_calls_required=cost.api_calls,
        suggestions=[]
    )

    surcharge = SURCHARGES.get(op)
    if surcharge:
        surcharge(params, metrics)
    return metrics


def _cap_driving_history(params: Dict[str, Any], optimized: Dict[str, Any], recommendations: list) -> None:
    limit = params.get("limit")
    if not limit or limit > MAX_HISTORY_LIMIT:
        optimized["limit"] = MAX_HISTORY_LIMIT
        recommendations.append(f"Reduced limit to {MAX_HISTORY_LIMIT} for optimal MCP performance")

    if calculate_date_range(params.get("start_date"), params.get("end_date")) > MAX_WINDOW_DAYS:
        optimized["chunked"] = True
        recommendations.append("Large date range will be automatically chunked")


def _cap_weekly_mileage(params: Dict[str, Any], optimized: Dict[str, Any], recommendations: list) -> None:
    if calculate_date_range(params.get("start_date"), params.get("end_date")) > MAX_WINDOW_DAYS:
        end_date = parse_date(params["start_date"]) + timedelta(days=MAX_WINDOW_DAYS)
        optimized["end_date"] = format_timestamp(end_date)
        recommendations.append(f"Limited to {MAX_WINDOW_DAYS}-day window for weekly breakdown")


def _cap_current_state(params: Dict[str, Any], optimized: Dict[str, Any], recommendations: list) -> None:
    if params.get("use_cache") is False:
        optimized["use_cache"] = True
        recommendations.append("Enabled cache to prevent vehicle wake-up")


def _cap_latest_drive(params: Dict[str, Any], optimized: Dict[str, Any], recommendations: list) -> None:
    days_back = params.get("days_back")
    if not days_back or days_back > MAX_DAYS_BACK:
        optimized["days_back"] = DEFAULT_DAYS_BACK
        recommendations.append(f"Limited search to {DEFAULT_DAYS_BACK} days for optimal performance")


PARAMETER_CAPS = {
    Operation.GET_DRIVING_HISTORY: _cap_driving_history,
    Operation.GET_WEEKLY_MILEAGE: _cap_weekly_mileage,
    Operation.GET_VEHICLE_CURRENT_STATE: _cap_current_state,
    Operation.ANALYZE_LATEST_DRIVE: _cap_latest_drive,
}


def optimize_for_mcp(operation: Union[Operation, str], params: Dict[str, Any]) -> OptimizedQuery:
    """
    Rewrite parameters so the operation stays within its cost budget.

    Args:
        operation: Operation name
        params: Parameters as parsed or supplied by the caller

    Returns:
        OptimizedQuery with before/after complexity and the rewritten parameters
    """
    original = analyze_query(operation, params)
    optimized_params = dict(params)
    recommendations = []

    cap = PARAMETER_CAPS.get(_as_operation(operation))
    if cap:
        cap(params, optimized_params, recommendations)

    optimized = analyze_query(operation, optimized_params)
    return OptimizedQuery(
        is_optimized=optimized.complexity < original.complexity,
        original_complexity=original.complexity,
        optimized_complexity=optimized.complexity,
        recommendations=original.suggestions + recommendations,
        optimized_parameters=optimized_params
    )
