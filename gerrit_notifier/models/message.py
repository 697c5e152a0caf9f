"""Slack notification message models."""

from pydantic import BaseModel, Field


class MessageField(BaseModel):
    """A title/value pair rendered in the attachment's field grid."""
    title: str = Field(..., description="Field label")
    value: str = Field("", description="Field value")
    short: bool = Field(False, description="Render side by side with another short field")


class Message(BaseModel):
    """Single-attachment Slack message.

    Handlers fill what they know; the global wrapper defaults the rest.
    """
    fallback: str = Field("", description="Plain-text summary for notifications")
    pretext: str = Field("", description="Context line above the attachment")
    title: str = ""
    title_link: str = ""
    text: str = ""
    color: str = ""
    footer: str = ""
    fields: list[MessageField] = Field(default_factory=list)
    ts: int = Field(0, description="Unix timestamp shown on the attachment")
    channel: str = Field("", description="Target Slack channel")

    def to_payload(self) -> dict:
        """Webhook JSON body."""
        attachment = self.model_dump(exclude={"channel"})
        return {
            "channel": self.channel,
            "attachments": [attachment],
        }
