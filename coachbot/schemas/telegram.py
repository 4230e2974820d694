from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None  # private, group, supergroup, channel


class TelegramAudio(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    duration: Optional[int] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramVoice(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    duration: Optional[int] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramMessage(BaseModel):
    message_id: Optional[int] = None
    date: Optional[int] = None
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None
    audio: Optional[TelegramAudio] = None
    voice: Optional[TelegramVoice] = None

    model_config = ConfigDict(populate_by_name=True)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
