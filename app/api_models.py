"""
API response models for the Whisper Upload Gateway.

This module defines Pydantic models for response serialization, ensuring
consistent data structures across all endpoints.
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class TranscribeResponse(BaseModel):
    """
    Response model for a successful transcription.

    Attributes:
        transcription: The engine's JSON document, passed through unmodified
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "transcription": {
                    "text": "Hello and welcome.",
                    "segments": [
                        {"start": 0.0, "end": 1.8, "text": "Hello and welcome.", "speaker": "SPEAKER_00"}
                    ]
                }
            }
        }
    )

    transcription: Any = Field(..., description="Engine output document")


class ErrorResponse(BaseModel):
    """
    Standard error response model.

    All API errors return this flat structure.

    Attributes:
        error: Short human-readable error message
        details: Diagnostic text (captured engine output, partial results)
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Failed to execute transcription script.",
                "details": "Process exited with code 1\nCUDA out of memory\nPartial output: {\"segments\": ["
            }
        }
    )

    error: str = Field(..., description="Error message")
    details: Optional[Any] = Field(None, description="Additional error context")


class HealthResponse(BaseModel):
    """
    Response model for health check endpoint.

    Attributes:
        status: "healthy" when a runtime and the engine script are present
        runtime: Interpreter that would run the engine (None if not found)
        worker_script_found: Whether the engine script exists
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "runtime": "python3",
                "worker_script_found": True
            }
        }
    )

    status: Literal["healthy", "degraded"] = Field(..., description="Service health status")
    runtime: Optional[str] = Field(None, description="Resolved interpreter")
    worker_script_found: bool = Field(..., description="Whether the engine script exists")
