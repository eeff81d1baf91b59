"""
Audit trail Schemas
"""
from pydantic import BaseModel
from typing import Any, Dict
from datetime import datetime


class AuditEntryResponse(BaseModel):
    scope: str
    sequence: int
    level: str
    category: str
    event_type: str
    message_en: str
    message_ar: str
    metadata: Dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry) -> "AuditEntryResponse":
        return cls(
            scope=entry.scope,
            sequence=entry.sequence,
            level=entry.level.value,
            category=entry.category,
            event_type=entry.event_type,
            message_en=entry.message_en,
            message_ar=entry.message_ar,
            metadata=entry.metadata,
            timestamp=entry.timestamp,
        )
