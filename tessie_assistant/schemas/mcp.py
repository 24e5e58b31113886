"""
MCP envelope schemas for the /mcp endpoint.

A client sends a natural language question in the envelope context and lists
the pipeline stages it wants run; each stage's result comes back in its
step's output.
"""
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel

StepTool = Literal["parse_query", "optimize_query", "execute_operation"]


class Step(BaseModel):
    """
    One pipeline stage.

    parse_query yields a ParsedQuery, optimize_query the capped parameters and
    their metrics, execute_operation the tool result. A step sent with output
    already set is not re-run.
    """
    tool: StepTool
    input: Optional[Union[Dict[str, Any], str]] = None
    output: Optional[Union[Dict[str, Any], str]] = None


class MCPEnvelope(BaseModel):
    """
    Request and response body for /mcp.

    context must carry "query" and may carry "vin" to pick a vehicle.
    """
    trace_id: UUID
    context: Optional[Dict[str, Any]] = None
    steps: List[Step]
