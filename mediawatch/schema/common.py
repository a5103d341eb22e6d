from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    status: Literal["ok", "degraded", "down"] = "ok"
    version: Optional[str] = None
    scheduler: Literal["ok", "down"] = "down"
    validator: Literal["ok", "down"] = "down"
    workers_alive: int = 0
    workers_total: int = 0
    queue: Dict[str, Dict[str, int]] = Field(default_factory=dict)
