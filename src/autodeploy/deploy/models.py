"""Models describing the outcome of a reload cycle."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ReloadResult(BaseModel):
    updated: bool
    deployed: bool
    forced: bool = False
    revision: Optional[str] = None
    checked_at: datetime = Field(default_factory=datetime.utcnow)
