"""
Notification automation Schemas
"""
from pydantic import BaseModel
from typing import List, Optional


class AutomatedMessageResponse(BaseModel):
    channel: str
    target: str
    message_en: str
    message_ar: str
    trigger: str
    entity_id: str
    dedupe_key: str
    subject_en: Optional[str] = None
    subject_ar: Optional[str] = None
    level: Optional[int] = None

    @classmethod
    def from_message(cls, message) -> "AutomatedMessageResponse":
        return cls(
            channel=message.channel.value,
            target=message.target,
            message_en=message.message_en,
            message_ar=message.message_ar,
            trigger=message.trigger,
            entity_id=message.entity_id,
            dedupe_key=message.dedupe_key,
            subject_en=message.subject_en,
            subject_ar=message.subject_ar,
            level=message.level,
        )


class DeliveryResultResponse(BaseModel):
    dedupe_key: str
    channel: str
    trigger: str
    success: bool
    handle_id: Optional[str] = None
    error: Optional[str] = None


class SendResponse(BaseModel):
    success: bool
    queued: int
    skipped_duplicates: int
    results: List[DeliveryResultResponse]


class SweepCompanyReport(BaseModel):
    company_id: str
    status: str
    queued: int
    sent: int
    failed: int
    error: Optional[str] = None


class DeliverResponse(BaseModel):
    sent: int
    retrying: int
    failed: int
