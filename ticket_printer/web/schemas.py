from __future__ import annotations

"""
Pydantic schemas for the Ticket Printer API (v1).

The payload is opaque to the engine: it is either text (sent as-is) or
base64-encoded bytes (ESC/POS command streams). Limits are applied via the
validation context passed at runtime, allowing env-driven constraints.
"""

import base64
import binascii
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator


class JobSubmitRequest(BaseModel):
    """A finished ticket payload and the printer it should go to."""

    content: str = Field(
        description="Ticket payload. Plain text, or base64 when encoding is 'base64'.",
        examples=["TICKET-A", "G0BIZWxsbwo="],
    )
    target: str = Field(
        description="Printer name as known to the host OS print subsystem.",
        examples=["EPSON TM-T81 Receipt", "PRN1"],
    )
    encoding: Literal["text", "base64"] = Field(
        default="text",
        description="How `content` is encoded.",
    )

    @field_validator("target")
    @classmethod
    def _strip_target(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("target is required")
        if any(ord(c) < 32 or ord(c) == 127 for c in v):
            raise ValueError("target cannot contain control characters")
        return v

    @model_validator(mode="after")
    def _check_content(self, info: ValidationInfo) -> "JobSubmitRequest":
        if not self.content:
            raise ValueError("content is required")
        limits: Dict[str, Any] = (info.context or {}).get("limits", {}) if info else {}
        max_bytes = int(limits.get("MAX_CONTENT_BYTES", 0) or 0)
        payload = self.payload()
        if max_bytes and len(payload) > max_bytes:
            raise ValueError(f"content too large (max {max_bytes} bytes)")
        return self

    def payload(self) -> str | bytes:
        if self.encoding == "base64":
            try:
                return base64.b64decode(self.content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("content is not valid base64") from e
        return self.content


class Links(BaseModel):
    self: str
    job: Optional[str] = None


class JobAcceptedResponse(BaseModel):
    id: str
    status: str = "pending"
    links: Links


class AttemptOut(BaseModel):
    strategy: str
    outcome: str
    duration_ms: int
    error: Optional[str] = None


class JobOut(BaseModel):
    id: str
    target: str
    status: str
    submitted_at: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    content_size: int = 0
    attempts: List[AttemptOut] = Field(default_factory=list)
    last_error: Optional[str] = None


__all__ = ["AttemptOut", "JobAcceptedResponse", "JobOut", "JobSubmitRequest", "Links"]
