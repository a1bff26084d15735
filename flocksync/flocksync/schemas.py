from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
)

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


def _to_str(value):
    if value is None or isinstance(value, str):
        return value
    return str(value)


# Ids arrive as numbers from the database and as strings from the client.
Id = Annotated[str, BeforeValidator(_to_str)]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---- Entities ----


class ReactionEntry(CamelModel):
    emoji: str
    user_id: Id = Field(alias="userId")
    user_name: str = Field(default="", alias="userName")


class ReplyRef(CamelModel):
    id: Id
    text: str = ""
    sender: str = ""


class VenueSnapshot(CamelModel):
    name: str
    venue_id: Optional[Id] = Field(default=None, alias="venueId")
    address: Optional[str] = None
    rating: Optional[float] = None
    photo_url: Optional[str] = Field(default=None, alias="photoUrl")


MessageType = Literal["text", "venue_card", "image"]


class Message(CamelModel):
    id: Id
    sender: str
    sender_id: Optional[Id] = Field(default=None, alias="senderId")
    time: str = ""
    text: str = ""
    message_type: MessageType = "text"
    venue_data: Optional[VenueSnapshot] = None
    image_url: Optional[str] = None
    reactions: List[ReactionEntry] = Field(default_factory=list)
    reply_to: Optional[ReplyRef] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")

    @property
    def is_temp(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)


class VenueVote(CamelModel):
    venue_name: str
    venue_id: Optional[Id] = None
    vote_count: int = 0
    voters: List[str] = Field(default_factory=list)


class LocationUpdate(CamelModel):
    user_id: Id = Field(alias="userId")
    lat: float
    lng: float
    name: str = ""
    timestamp: int = 0


class TypingState(CamelModel):
    is_typing: bool = Field(default=False, alias="isTyping")
    typing_user_name: str = Field(default="", alias="typingUserName")


class Member(CamelModel):
    user_id: Id = Field(alias="userId")
    name: str = ""


# ---- Inbound socket events ----


class IncomingMessage(CamelModel):
    id: Id
    sender_id: Id
    sender_name: str = ""
    flock_id: Optional[Id] = Field(default=None, alias="flockId")
    receiver_id: Optional[Id] = None
    conversation_id: Optional[Id] = Field(default=None, alias="conversationId")
    message_text: str = ""
    message_type: MessageType = "text"
    venue_data: Optional[VenueSnapshot] = None
    image_url: Optional[str] = None
    reply_to: Optional[ReplyRef] = None
    reactions: List[ReactionEntry] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            sender=self.sender_name,
            sender_id=self.sender_id,
            time=format_clock(self.created_at),
            text=self.message_text,
            message_type=self.message_type,
            venue_data=self.venue_data,
            image_url=self.image_url,
            reactions=list(self.reactions),
            reply_to=self.reply_to,
            client_id=self.client_id,
        )


class DirectEvent(CamelModel):
    """Common addressing for events scoped to a flock room or a DM pair.

    ``user_id`` is the acting user. For DMs ``to_user_id`` names the other
    participant from the actor's point of view.
    """

    user_id: Optional[Id] = Field(default=None, alias="userId")
    to_user_id: Optional[Id] = Field(default=None, alias="toUserId")
    flock_id: Optional[Id] = Field(default=None, alias="flockId")


class TypingEvent(DirectEvent):
    name: str = ""


class ReactionEvent(DirectEvent):
    message_id: Id = Field(alias="messageId")
    emoji: str
    user_name: str = Field(default="", alias="userName")


class VotesEvent(DirectEvent):
    votes: List[VenueVote] = Field(default_factory=list)
    venue_name: Optional[str] = None


class LocationEvent(DirectEvent):
    lat: float
    lng: float
    name: str = ""
    timestamp: int = 0

    def to_update(self) -> LocationUpdate:
        return LocationUpdate(
            user_id=self.user_id or "",
            lat=self.lat,
            lng=self.lng,
            name=self.name,
            timestamp=self.timestamp,
        )


class StoppedSharingEvent(DirectEvent):
    pass


class VenuePinnedEvent(DirectEvent):
    venue_name: str
    venue_id: Optional[Id] = None


class VenueSelectedEvent(CamelModel):
    flock_id: Id = Field(alias="flockId")
    venue_name: str
    venue_address: Optional[str] = None
    venue_id: Optional[Id] = None


class MemberEvent(CamelModel):
    user_id: Id = Field(alias="userId")
    name: str = ""
    flock_id: Id = Field(alias="flockId")


class RoomMembersEvent(CamelModel):
    flock_id: Id = Field(alias="flockId")
    members: List[Member] = Field(default_factory=list)


InviteResponse = Literal["accepted", "declined"]


class InviteEvent(CamelModel):
    flock_id: Id = Field(alias="flockId")
    flock_name: str = Field(default="", alias="flockName")
    from_user_id: Id = Field(alias="fromUserId")
    from_name: str = Field(default="", alias="fromName")
    to_user_id: Optional[Id] = Field(default=None, alias="toUserId")
    response: Optional[InviteResponse] = None


class FriendRequestEvent(CamelModel):
    request_id: Optional[Id] = Field(default=None, alias="requestId")
    from_user_id: Id = Field(alias="fromUserId")
    from_name: str = Field(default="", alias="fromName")
    to_user_id: Optional[Id] = Field(default=None, alias="toUserId")
    response: Optional[InviteResponse] = None


CrowdLevel = Literal["low", "moderate", "busy", "packed"]


class CrowdUpdateEvent(CamelModel):
    venue_id: Id
    level: CrowdLevel
    updated_by: Optional[Id] = None
    timestamp: int = 0


M = TypeVar("M", bound=BaseModel)


def parse_payload(model: Type[M], payload) -> M | None:
    """Validate ``payload`` into ``model``; log and return ``None`` on failure."""
    if not isinstance(payload, dict):
        logger.warning("Dropping %s payload of type %s", model.__name__, type(payload).__name__)
        return None
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        logger.warning("Dropping invalid %s payload: %s", model.__name__, exc.errors())
        return None


def format_clock(moment: datetime | None = None) -> str:
    if moment is None:
        moment = datetime.now()
    elif moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime("%I:%M %p").lstrip("0")
