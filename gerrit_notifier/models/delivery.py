"""Pending webhook delivery model."""

from ulid import ULID
from pydantic import BaseModel, ConfigDict, Field
from gerrit_notifier.models.message import Message


def generate_delivery_id() -> str:
    """Generate a sortable delivery ID (ULID format)."""
    return str(ULID())


class PendingDelivery(BaseModel):
    """A rendered message bound for one webhook URL."""
    model_config = ConfigDict(frozen=True)

    delivery_id: str = Field(default_factory=generate_delivery_id, description="Delivery ID for log correlation")
    message: Message = Field(..., description="Rendered message")
    webhook_url: str = Field("", description="Destination; empty means notifications are disabled")
    source_type: str = Field("", description="Event type that produced the message")

    def log_fields(self) -> dict:
        return {
            "delivery_id": self.delivery_id,
            "channel": self.message.channel,
            "source": self.source_type,
        }
