"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Service status, database reachability and whether the token reaper is scheduled."""

    status: Literal["ok"] = "ok"
    environment: str
    database: Literal["connected", "disconnected"] | None = None
    token_reaper: Literal["running", "stopped", "disabled"] = Field(
        default="disabled",
        description="State of the in-process expired-token cleanup job",
    )
