from coachbot.schemas.inbound import InboundMessage, inbound_from_update


def _update(update_id=1, **message):
    body = {"chat": {"id": 100, "type": "private"}, "from": {"id": 7, "username": "alice"}}
    body.update(message)
    return {"update_id": update_id, "message": body}


class TestInboundFromUpdate:
    def test_text_message(self):
        message = inbound_from_update(_update(text="Привет"))
        assert message == InboundMessage(update_id=1, chat_id=100, user_id=7, username="alice", text="Привет")

    def test_voice_message(self):
        message = inbound_from_update(
            _update(voice={"file_id": "abc", "duration": 4, "mime_type": "audio/ogg"})
        )
        assert message.text is None
        assert message.media.kind == "voice"
        assert message.media.file_ref == "abc"

    def test_audio_message(self):
        message = inbound_from_update(_update(audio={"file_id": "track", "mime_type": "audio/mpeg"}))
        assert message.media.kind == "audio"

    def test_rejects_message_without_text_or_media(self):
        assert inbound_from_update(_update(text="   ")) is None
        assert inbound_from_update(_update()) is None

    def test_rejects_message_without_sender(self):
        update = _update(text="hi")
        del update["message"]["from"]
        assert inbound_from_update(update) is None

    def test_rejects_non_message_update(self):
        assert inbound_from_update({"update_id": 5, "edited_message": {}}) is None
        assert inbound_from_update({"message": {"text": "no update id"}}) is None

    def test_payload_excludes_empty_fields(self):
        message = inbound_from_update(_update(text="hi"))
        payload = message.model_dump(mode="json", exclude_none=True)
        assert "media" not in payload
        assert InboundMessage.model_validate(payload) == message
