import pytest

from coachbot.services.intent_service import Intent, classify_intent, parse_command, selected_mode_key


class TestParseCommand:
    def test_strips_bot_mention(self):
        assert parse_command("/mode@coach_bot cbt_patterns") == ("/mode", "cbt_patterns")

    def test_plain_text(self):
        assert parse_command("  hello ") == (None, "hello")


class TestClassifyIntent:
    @pytest.mark.parametrize(
        "text,intent",
        [
            ("/start", Intent.START),
            ("/help", Intent.HELP),
            ("/cancel", Intent.CANCEL),
            ("Отмена", Intent.CANCEL),
            ("/feedback", Intent.START_FEEDBACK),
            ("оставить отзыв", Intent.START_FEEDBACK),
            ("/recommend", Intent.START_MODE_RECOMMENDATION),
            ("Подобрать режим", Intent.START_MODE_RECOMMENDATION),
            ("/modes", Intent.MODE_INFO),
            ("/mode", Intent.MODE_MENU),
            ("сменить режим", Intent.MODE_MENU),
            ("/mode cbt_patterns", Intent.MODE_SELECT),
            ("КПТ-паттерны", Intent.MODE_SELECT),
            ("Reality Check", Intent.MODE_SELECT),
            ("/mode astrology", Intent.MODE_UNKNOWN),
            ("Сегодня опять всё отложил", Intent.GENERIC),
            ("", Intent.GENERIC),
            (None, Intent.GENERIC),
        ],
    )
    def test_classification(self, text, intent):
        assert classify_intent(text) == intent

    def test_first_matching_rule_wins(self):
        # "/cancel" carries arguments but is still a cancel
        assert classify_intent("/cancel please") == Intent.CANCEL

    def test_selected_mode_key(self):
        assert selected_mode_key("/mode self_sabotage") == "self_sabotage"
        assert selected_mode_key("Самосаботаж") == "self_sabotage"
        assert selected_mode_key("/mode nope") is None
