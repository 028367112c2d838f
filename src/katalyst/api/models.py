"""Pydantic models shared by the HTTP API: error envelope and auth payloads."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class SignInStartResponse(BaseModel):
    """Returned by the sign-in start endpoint when ``redirect=false``."""

    authorization_url: str
    state: str


class HealthResponse(BaseModel):
    status: str = "ok"
    database: bool = False
