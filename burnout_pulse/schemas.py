"""Request bodies accepted by the HTTP and tool surfaces."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

Answer = StrictInt


class CheckinSubmission(BaseModel):
    """Five Likert answers, each an integer from 0 to 4."""

    model_config = ConfigDict(extra="forbid")

    workload: Answer = Field(ge=0, le=4)
    stress: Answer = Field(ge=0, le=4)
    sleep: Answer = Field(ge=0, le=4)
    engagement: Answer = Field(ge=0, le=4)
    recovery: Answer = Field(ge=0, le=4)


class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expires_at: Optional[datetime] = None


__all__ = ["CheckinSubmission", "TokenRequest"]
