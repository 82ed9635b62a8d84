"""AlfaFrens channel API client."""

from .client import ChannelGateway, GatewayError
from .models import ChannelMessage, Reaction, SendResult

__all__ = [
    "ChannelGateway",
    "ChannelMessage",
    "GatewayError",
    "Reaction",
    "SendResult",
]
