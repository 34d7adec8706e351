"""
Request bodies for the admin and webhook endpoints.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field


class CallScoreRequest(BaseModel):
    budget_clarity: Literal["clear", "vague", "none", "no_budget"]
    competition: Literal["none", "some", "many"]
    engagement: Literal["high", "medium", "low"]
    plan_fit: Literal["strong", "medium", "weak", "poor"]
    created_by: Optional[str] = None


class CommunicationRequest(BaseModel):
    direction: Literal["inbound", "outbound"]
    channel: Literal["email", "sms", "chat", "call", "other"] = "email"
    contact_at: datetime
    source: Literal["highlevel_webhook", "manual", "system"] = "manual"
    notes: Optional[str] = None
    external_message_id: Optional[str] = None


class InviteRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    sent_at: Optional[datetime] = None


class StatusChangeRequest(BaseModel):
    status: Literal["draft", "sent", "declined", "accepted", "closed_lost"]
    reason: Optional[str] = None


class ArchiveRequest(BaseModel):
    reason: str
    notes: Optional[str] = Field(default=None, max_length=2000)
    performed_by: Optional[str] = None


class SnoozeRequest(BaseModel):
    snoozed_until: datetime
    reason: Optional[str] = Field(default=None, max_length=500)
    created_by: Optional[str] = None


class TrackingEventPayload(BaseModel):
    event: Literal["email_opened", "proposal_viewed", "account_created"]
    invite_id: str
    occurred_at: Optional[datetime] = None
