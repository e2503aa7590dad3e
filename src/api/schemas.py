"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int = Field(description="Calls currently holding an admission slot.")
    max_calls: int
    total_calls: int = Field(description="Calls admitted since startup.")
    rejected_calls: int = Field(description="Connections refused because the relay was at capacity.")
