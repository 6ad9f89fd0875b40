"""
Lifecycle Events

Closed set of tagged event variants emitted after a lifecycle transaction
commits. Each variant knows its audience and its push content, so the
dispatcher never inspects payload fields by name.

Wire format (camelCase): {"type": "bid:accepted", "jobId": ..., "actorId": ...,
"timestamp": ..., ...variant fields}
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

AVAILABLE_ELECTRICIANS_CHANNEL = "electricians:available"


def user_channel(user_id: UUID) -> str:
    return f"user:{user_id}"


@dataclass(frozen=True)
class BroadcastFilter:
    """Which available electricians a broadcast reaches. ``None`` matches everyone."""
    category: str | None = None
    city: str | None = None

    def matches(self, category: str | None, city: str | None) -> bool:
        if self.category and category and self.category != category:
            return False
        if self.city and city and self.city.casefold() != city.casefold():
            return False
        return True


@dataclass(frozen=True)
class Audience:
    user_ids: tuple[UUID, ...] = ()
    broadcast: BroadcastFilter | None = None

    @property
    def is_broadcast(self) -> bool:
        return self.broadcast is not None


@dataclass(frozen=True)
class PushContent:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class LifecycleEvent(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    type: str
    job_id: UUID
    # None when the system acted (e.g. funding timeout)
    actor_id: UUID | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def audience(self) -> Audience:
        raise NotImplementedError

    def push_content(self) -> PushContent | None:
        raise NotImplementedError

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def _push(self, title: str, body: str) -> PushContent:
        return PushContent(
            title=title,
            body=body,
            data={"type": self.type, "jobId": str(self.job_id)},
        )


class JobNew(LifecycleEvent):
    type: Literal["job:new"] = "job:new"
    title: str
    category: str
    urgency: str
    city: str | None = None
    location_preview: str | None = None
    estimated_budget: Decimal | None = None

    def audience(self) -> Audience:
        return Audience(broadcast=BroadcastFilter(category=self.category, city=self.city))

    def push_content(self) -> PushContent | None:
        # Broadcasts are realtime only
        return None


class BidNew(LifecycleEvent):
    type: Literal["bid:new"] = "bid:new"
    owner_id: UUID
    bid_id: UUID
    bidder_id: UUID
    amount: Decimal

    def audience(self) -> Audience:
        return Audience(user_ids=(self.owner_id,))

    def push_content(self) -> PushContent | None:
        return self._push("New bid", f"You received a bid of {self.amount}")


class BidAccepted(LifecycleEvent):
    type: Literal["bid:accepted"] = "bid:accepted"
    bid_id: UUID
    bidder_id: UUID
    amount: Decimal
    conversation_id: UUID

    def audience(self) -> Audience:
        return Audience(user_ids=(self.bidder_id,))

    def push_content(self) -> PushContent | None:
        return self._push("Bid accepted", "Your bid was accepted. You can now message the customer.")


class BidRejected(LifecycleEvent):
    type: Literal["bid:rejected"] = "bid:rejected"
    bid_id: UUID
    bidder_id: UUID

    def audience(self) -> Audience:
        return Audience(user_ids=(self.bidder_id,))

    def push_content(self) -> PushContent | None:
        return self._push("Bid not selected", "The customer chose another offer.")


class JobCompleted(LifecycleEvent):
    type: Literal["job:completed"] = "job:completed"
    citizen_id: UUID
    electrician_id: UUID

    def audience(self) -> Audience:
        return Audience(user_ids=(self.citizen_id, self.electrician_id))

    def push_content(self) -> PushContent | None:
        return self._push("Job completed", "The job is complete and payment has been released.")


class JobCancelled(LifecycleEvent):
    type: Literal["job:cancelled"] = "job:cancelled"
    reason: str
    recipient_ids: tuple[UUID, ...] = ()

    def audience(self) -> Audience:
        return Audience(user_ids=self.recipient_ids)

    def push_content(self) -> PushContent | None:
        return self._push("Job cancelled", self.reason)


class MessageNew(LifecycleEvent):
    type: Literal["message:new"] = "message:new"
    conversation_id: UUID
    message_id: UUID
    recipient_id: UUID
    preview: str

    def audience(self) -> Audience:
        return Audience(user_ids=(self.recipient_id,))

    def push_content(self) -> PushContent | None:
        return self._push("New message", self.preview)


Event = Annotated[
    Union[JobNew, BidNew, BidAccepted, BidRejected, JobCompleted, JobCancelled, MessageNew],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(payload: dict[str, Any]) -> LifecycleEvent:
    """Rebuild an event from its wire form."""
    return event_adapter.validate_python(payload)
