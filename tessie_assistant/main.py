"""
Main application module for Tessie Assistant.

This module defines the FastAPI application, routes, and middleware.
"""
from typing import AsyncIterator, Dict

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from tessie_assistant.errors import TessieAssistantError
from tessie_assistant.schemas.mcp import MCPEnvelope, Step
from tessie_assistant.schemas.queries import Operation, ParsedQuery
from tessie_assistant.schemas.responses import QueryResponse
from tessie_assistant.services.config import LOW_CONFIDENCE_THRESHOLD, is_mcp_enabled
from tessie_assistant.services.pipeline import (
    execute_operation, low_confidence_response, optimize_query, process_query, resolve_vin
)
from tessie_assistant.services.query_parser import parse_natural_language
from tessie_assistant.services.tessie_client import TessieClient, create_client_from_env

# Check if MCP is enabled
ENABLE_MCP = is_mcp_enabled()

# Create FastAPI app
app = FastAPI(
    title="Tessie Assistant",
    description="Natural language access to Tesla driving data from Tessie",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: TessieAssistantError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


async def get_tessie_client() -> AsyncIterator[TessieClient]:
    """Provide a Tessie client for the duration of a request."""
    try:
        client = create_client_from_env()
    except TessieAssistantError as e:
        raise _http_error(e)
    try:
        yield client
    finally:
        await client.aclose()


@app.get("/ping")
@app.head("/ping")
async def ping():
    """Health check endpoint. Supports both GET and HEAD methods."""
    return {"status": "ok"}


@app.post("/query", response_model=QueryResponse)
async def query(
    request: Dict = Body(...),
    client: TessieClient = Depends(get_tessie_client)
):
    """
    Answer a natural language question about the vehicle.

    Args:
        request: Request body with 'query' or 'message', and an optional 'vin'
        client: Tessie API client

    Returns:
        QueryResponse wrapping the tool result or an error payload
    """
    # Accept either 'query' or 'message' field for compatibility
    text = request.get("query") or request.get("message")
    if not text:
        raise HTTPException(status_code=400, detail="Missing 'query' or 'message' field")

    print(f"Query endpoint received: '{text}'")
    try:
        result = await process_query(text, client, vin=request.get("vin"))
    except TessieAssistantError as e:
        print(f"Error in query endpoint: {type(e).__name__}: {e.message}")
        raise _http_error(e)

    metadata = result.get("query_metadata") or {}
    return QueryResponse(
        result=result,
        operation=metadata.get("operation"),
        is_error="error" in result
    )


@app.post("/tools/{operation}")
async def run_tool(
    operation: str,
    params: Dict = Body(default={}),
    client: TessieClient = Depends(get_tessie_client)
):
    """Run a single tool with explicit parameters."""
    try:
        op = Operation(operation)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {operation}")
    try:
        return await execute_operation(client, op, params)
    except TessieAssistantError as e:
        raise _http_error(e)


# MCP Helper functions
async def process_parse_step(step: Step, query: str, envelope: MCPEnvelope, client: TessieClient) -> None:
    step.output = parse_natural_language(query).model_dump(mode="json")


async def get_or_create_step(
    tool: str,
    envelope: MCPEnvelope,
    current_index: int,
    query: str,
    client: TessieClient
) -> Step:
    """
    Get an existing step or create and process a new one.

    Args:
        tool: Tool name of the prerequisite step
        envelope: MCP envelope containing steps
        current_index: Index of the step that needs the prerequisite
        query: Natural language query
        client: Tessie API client

    Returns:
        The prerequisite step with its output filled in
    """
    step = next((s for s in envelope.steps if s.tool == tool), None)

    if not step:
        step = Step(tool=tool)
        envelope.steps.insert(current_index, step)
        await STEP_PROCESSORS[tool](step, query, envelope, client)
    elif step.output is None:
        await STEP_PROCESSORS[tool](step, query, envelope, client)

    return step


async def process_optimize_step(step: Step, query: str, envelope: MCPEnvelope, client: TessieClient) -> None:
    current_index = envelope.steps.index(step)
    parse_step = await get_or_create_step("parse_query", envelope, current_index, query, client)
    parsed = ParsedQuery.model_validate(parse_step.output)

    optimization, metrics = optimize_query(parsed)
    step.output = {
        "optimization": optimization.model_dump(mode="json"),
        "metrics": metrics.model_dump(mode="json"),
    }


async def process_execute_step(step: Step, query: str, envelope: MCPEnvelope, client: TessieClient) -> None:
    current_index = envelope.steps.index(step)
    parse_step = await get_or_create_step("parse_query", envelope, current_index, query, client)
    parsed = ParsedQuery.model_validate(parse_step.output)

    if parsed.confidence < LOW_CONFIDENCE_THRESHOLD:
        step.output = low_confidence_response(query, parsed)
        return

    current_index = envelope.steps.index(step)
    optimize_step = await get_or_create_step("optimize_query", envelope, current_index, query, client)
    try:
        params = dict(optimize_step.output["optimization"]["optimized_parameters"])
    except (KeyError, TypeError):
        raise HTTPException(
            status_code=400,
            detail="optimize_query step output is missing 'optimization.optimized_parameters'"
        )

    vin = await resolve_vin(client, parsed.operation, envelope.context.get("vin"))
    if parsed.operation != Operation.GET_VEHICLES:
        if not vin:
            step.output = {"error": "No vehicles found in your Tessie account"}
            return
        params["vin"] = vin

    step.output = await execute_operation(client, parsed.operation, params)


STEP_PROCESSORS = {
    "parse_query": process_parse_step,
    "optimize_query": process_optimize_step,
    "execute_operation": process_execute_step,
}


async def validate_mcp_envelope(envelope: MCPEnvelope) -> str:
    """Validate MCP envelope and extract query."""
    if not envelope.context or "query" not in envelope.context:
        raise HTTPException(
            status_code=400,
            detail="Context must contain 'query' field"
        )
    return envelope.context["query"]


async def handle_mcp_request(envelope: MCPEnvelope, client: TessieClient) -> MCPEnvelope:
    """
    Process an MCP request envelope and return updated envelope with outputs.

    Steps that already carry output are left alone; prerequisites that are
    missing from the envelope are inserted and run first.
    """
    query_text = await validate_mcp_envelope(envelope)

    for step in list(envelope.steps):
        if step.output is not None:
            continue
        try:
            await STEP_PROCESSORS[step.tool](step, query_text, envelope, client)
        except TessieAssistantError as e:
            raise _http_error(e)

    return envelope


# Conditionally add MCP endpoint if enabled
if ENABLE_MCP:
    @app.post("/mcp")
    async def mcp_endpoint(
        envelope: MCPEnvelope,
        client: TessieClient = Depends(get_tessie_client)
    ):
        """
        Process a request through the Model Context Protocol.

        Args:
            envelope: MCP envelope with trace_id, context, and steps
            client: Tessie API client

        Returns:
            Updated MCP envelope with step outputs
        """
        return await handle_mcp_request(envelope, client)
