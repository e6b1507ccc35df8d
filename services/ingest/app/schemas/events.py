from typing import Any

from pydantic import BaseModel, Field


class CanonicalEventIn(BaseModel):
    project_id: str = Field(min_length=1, max_length=64)
    event_name: str = Field(min_length=1, max_length=128)
    source_system: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] | None = None
    user_id: str | None = Field(default=None, max_length=64)


class IngestResponse(BaseModel):
    success: bool = True
    standardized_event: str
    was_mapped: bool
    source_system: str
    event_log_id: str
    derived_request_id: str | None = None
    audit_log_id: str | None = None


class StandardizeRequest(BaseModel):
    source_system: str = Field(min_length=1, max_length=64)
    original_event: str = Field(min_length=1, max_length=128)
    project_id: str | None = None


class StandardizeResponse(BaseModel):
    success: bool
    standardized_event: str
    was_mapped: bool
    original_event: str


class DiagnosticEventIn(BaseModel):
    project_id: str = Field(min_length=1, max_length=64)
    event_name: str = Field(default="test_event", min_length=1, max_length=128)
    metadata: dict[str, Any] | None = None
    user_id: str | None = Field(default=None, max_length=64)
