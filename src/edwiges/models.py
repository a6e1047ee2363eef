"""
Domain value types built from gateway and REST payloads.

Only the fields the client itself reads are declared; everything else the
platform sends is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """A platform user (or bot account)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    username: str
    discriminator: str | None = None
    global_name: str | None = None
    avatar: str | None = None
    bot: bool = False

    @property
    def tag(self) -> str:
        if self.discriminator and self.discriminator != "0":
            return f"{self.username}#{self.discriminator}"
        return self.username


class Guild(BaseModel):
    """A guild as delivered by GUILD_CREATE / GUILD_DELETE."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: str | None = None
    unavailable: bool = False
    member_count: int | None = None


class Message(BaseModel):
    """A channel message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    channel_id: str
    guild_id: str | None = None
    author: User
    content: str = ""
    timestamp: str | None = None
