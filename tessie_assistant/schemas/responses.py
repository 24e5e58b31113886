"""
API response schemas for Tessie Assistant.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class QueryResponse(BaseModel):
    """Response model for the /query endpoint."""
    result: Dict[str, Any] = Field(..., description="Tool output, or an error payload")
    operation: Optional[str] = Field(
        None,
        description="Operation the query resolved to; omitted when it could not be understood"
    )
    is_error: bool = Field(False, description="True when result is an error payload")
