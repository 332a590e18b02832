"""
Match Event Data Models

Payloads for events published by match_service. Subjects are the values of
core.nats_client.EventType; PINs and their hashes never appear here.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class MatchStreamConfig:
    """Stream configuration for match_service"""
    STREAM_NAME = "match-stream"
    SUBJECTS = ["match.>"]
    MAX_MESSAGES = 100000


class MatchCreatedEventData(BaseModel):
    """match.created event data"""
    match_id: str = Field(..., description="Match ID")
    shopper_request_id: str = Field(..., description="Shopper request the match serves")
    trip_id: str = Field(..., description="Trip carrying the items")
    shopper_id: str
    traveler_id: Optional[str] = None
    candidate_items: List[str] = Field(default_factory=list)
    timestamp: datetime


class MatchTransitionedEventData(BaseModel):
    """match.transitioned event data"""
    match_id: str = Field(..., description="Match ID")
    action: str = Field(..., description="Action that caused the transition")
    from_status: str
    to_status: str
    actor_id: str = Field(..., description="User who performed the action")
    shopper_id: str
    traveler_id: Optional[str] = None
    assigned_items: List[str] = Field(default_factory=list)
    timestamp: datetime


class MatchPaidEventData(BaseModel):
    """match.paid event data"""
    match_id: str
    shopper_id: str
    status: str = Field(..., description="Lifecycle status at payment time")
    paid_at: datetime
    timestamp: datetime


class DeliveryPinIssuedEventData(BaseModel):
    """match.delivery.pin_issued event data"""
    match_id: str
    traveler_id: str
    shopper_id: str
    expires_at: datetime
    store_location: Optional[str] = None
    reissued: bool = False
    timestamp: datetime


class DeliveryPinFailedEventData(BaseModel):
    """match.delivery.pin_failed event data"""
    match_id: str
    shopper_id: str
    reason: str = Field(..., description="Error kind of the failed attempt")
    timestamp: datetime


class DeliveryCompletedEventData(BaseModel):
    """match.delivery.completed event data"""
    match_id: str
    shopper_id: str
    traveler_id: Optional[str] = None
    completed_at: datetime
    timestamp: datetime
