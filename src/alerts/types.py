"""Domain types for alert delivery."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field


class AlertCandidate(BaseModel):
    """A breached rule awaiting cooldown check and dispatch."""

    key: str
    title: str
    body: str = ""


class FiredAlert(BaseModel):
    """An alert that passed its cooldown and was delivered."""

    key: str
    server_id: str
    server_name: str
    title: str
    body: str = ""
    timestamp: float = Field(default_factory=time.time)
