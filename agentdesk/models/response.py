"""Uniform request/response envelope."""

from typing import Any, Optional
from pydantic import BaseModel, Field


class BridgeResponse(BaseModel):
    """Envelope returned by every request/response operation."""

    success: bool = Field(description="Whether the operation succeeded")
    data: Optional[Any] = Field(None, description="Operation result")
    message: Optional[str] = Field(None, description="Failure reason or informational note")

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "BridgeResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, message: str) -> "BridgeResponse":
        return cls(success=False, message=message)
