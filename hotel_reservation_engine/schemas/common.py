"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: str
    timestamp: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "ROOM_NOT_AVAILABLE",
                        "message": "Room 12 is not available from 2025-03-01 to 2025-03-04",
                        "details": {"room_id": 12, "check_in": "2025-03-01", "check_out": "2025-03-04"},
                        "suggestions": ["Choose different dates", "Choose a different room"]
                    },
                    "error_id": "5f7d2c1e-8b1a-4a53-9c53-0d3b2f1e9a10",
                    "timestamp": "2025-02-01T10:00:00+00:00"
                }
            ]
        }
    }


class HealthResponse(BaseModel):
    status: str
    service: str
