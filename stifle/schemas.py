"""
Wire shapes for the event sync protocol.

Shared by the HTTP route (request validation) and the device-side sync
engine (response validation). Field names follow the JSON the device sends
and receives, so aliases map them onto snake_case attributes.

Timestamps are integer milliseconds since the Unix epoch.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


EventType = Literal['lock', 'unlock']


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EventPayload(WireModel):
    """One event as sent by the device."""

    id: str = Field(min_length=1, max_length=64)
    event_type: EventType = Field(alias='eventType')
    timestamp: int
    source: str = Field(min_length=1, max_length=20)


class SyncRequest(WireModel):
    events: List[EventPayload] = Field(default_factory=list)
    last_sync: int = Field(default=0, alias='lastSync')
    client_time: int = Field(alias='clientTime')


class ConfirmedEvent(WireModel):
    client_id: str = Field(alias='clientId')
    server_id: str = Field(alias='serverId')


class ServerEvent(WireModel):
    """An event the server holds that the device did not send this round."""

    id: str
    server_id: str = Field(alias='serverId')
    event_type: EventType = Field(alias='eventType')
    timestamp: int
    source: str


class SyncResponse(WireModel):
    confirmed: List[ConfirmedEvent] = Field(default_factory=list)
    new_events: List[ServerEvent] = Field(default_factory=list, alias='newEvents')
    rejected: List[str] = Field(default_factory=list)
    server_time: int = Field(alias='serverTime')
    has_more: bool = Field(default=False, alias='hasMore')
