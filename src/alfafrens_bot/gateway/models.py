"""Wire models for the AlfaFrens channel API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Reaction(BaseModel):
    """An emoji reaction tally on a message. Informational only."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    emoji: str
    count: int = 0


class ChannelMessage(BaseModel):
    """One chat event as delivered by the remote system.

    Instances are immutable; the pipeline never edits a fetched message.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    sender_id: str = Field(default="", alias="senderId")
    sender_handle: str = Field(default="", alias="senderUsername")
    body: str = Field(default="", alias="content")
    created_at: datetime = Field(alias="timestamp")
    in_reply_to: str | None = Field(default=None, alias="replyTo")
    reactions: tuple[Reaction, ...] = ()

    @field_validator("in_reply_to", mode="before")
    @classmethod
    def _reply_id(cls, value: Any) -> Any:
        # replies may be expanded to {"id", "senderUsername", "content"}
        if isinstance(value, dict):
            return value.get("id")
        return value or None

    @field_validator("reactions", mode="before")
    @classmethod
    def _no_reactions(cls, value: Any) -> Any:
        return value or ()

    @property
    def created_at_ms(self) -> int:
        """Creation time as epoch milliseconds."""
        return int(self.created_at.timestamp() * 1000)

    @property
    def is_root(self) -> bool:
        return not self.in_reply_to

    def __str__(self) -> str:
        return f"<{self.sender_handle or self.sender_id}> {self.body}"


class SendResult(BaseModel):
    """Response from the post-message endpoint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(alias="messageId")
    timestamp: datetime
    status: str = "success"
