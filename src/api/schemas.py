"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"


class OutboundCallRequest(BaseModel):
    to_number: str = Field(description="E.164 phone number, e.g. +61400000000")
    call_reference: str | None = Field(
        default=None, description="Opaque reference passed to the relay session as a custom parameter."
    )
    properties: dict[str, str] = Field(
        default_factory=dict,
        description="Call data handed to the model at setup, e.g. the reason for calling.",
    )


class OutboundCallResponse(BaseModel):
    call_sid: str
    to_number: str
