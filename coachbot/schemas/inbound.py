from typing import Literal, Optional

from pydantic import BaseModel, ValidationError

from coachbot.schemas.telegram import TelegramUpdate


class InboundMedia(BaseModel):
    kind: Literal["voice", "audio"]
    file_ref: str
    mime_type: Optional[str] = None
    duration: Optional[int] = None


class InboundMessage(BaseModel):
    """Job payload for one accepted chat update."""

    update_id: int
    chat_id: int
    user_id: int
    username: Optional[str] = None
    text: Optional[str] = None
    media: Optional[InboundMedia] = None


def inbound_from_update(raw: dict) -> Optional[InboundMessage]:
    """Normalize a raw webhook body; None when it is not a processable message.

    A processable message has a sender and either non-empty text or a
    voice/audio attachment.
    """
    try:
        update = TelegramUpdate.model_validate(raw)
    except ValidationError:
        return None

    message = update.message
    if message is None or message.from_user is None:
        return None

    media = None
    if message.voice is not None:
        media = InboundMedia(
            kind="voice",
            file_ref=message.voice.file_id,
            mime_type=message.voice.mime_type,
            duration=message.voice.duration,
        )
    elif message.audio is not None:
        media = InboundMedia(
            kind="audio",
            file_ref=message.audio.file_id,
            mime_type=message.audio.mime_type,
            duration=message.audio.duration,
        )

    text = message.text if message.text and message.text.strip() else None
    if text is None and media is None:
        return None

    return InboundMessage(
        update_id=update.update_id,
        chat_id=message.chat.id,
        user_id=message.from_user.id,
        username=message.from_user.username,
        text=text,
        media=media,
    )
