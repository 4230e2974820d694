from coachbot.schemas.inbound import InboundMedia, InboundMessage, inbound_from_update
from coachbot.schemas.telegram import TelegramMessage, TelegramUpdate

__all__ = [
    "InboundMedia",
    "InboundMessage",
    "inbound_from_update",
    "TelegramMessage",
    "TelegramUpdate",
]
