"""Pydantic payloads of the HTTP and MCP boundaries."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class WriteResponse(BaseModel):
    """Result of a create or update through the sync API."""

    id: str
    revision: int = Field(..., ge=1, description="Revision assigned by the serving adapter")


class HealthResponse(BaseModel):
    status: str = "ok"
    started: bool
    site: str | None = None


class ProbeList(BaseModel):
    probes: List[str]
