from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standardized error response schema."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    trace_id: Optional[str] = Field(None, description="Request trace ID for debugging")
    timestamp: float = Field(..., description="Unix timestamp of the error")

    class Config:
        json_schema_extra = {
            "example": {
                "code": "RES_3004",
                "message": "Video is already being processed",
                "details": {"source_id": "6f1c0c52-3d4e-4b8e-9a55-8f1f2b7f0c11"},
                "trace_id": "123e4567-e89b-12d3-a456-426614174000",
                "timestamp": 1678901234.567
            }
        }
