"""Structured task log entries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentTeam.models.plan import utcnow


class LogLevel(str, Enum):
    DEBUG = "Debug"
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


class LogEntry(BaseModel):
    """One line of a plan's JSONL log. Serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    source: str
    message: str
    plan_id: str
    chunk_id: Optional[str] = None
    event_type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
