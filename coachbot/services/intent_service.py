"""Table-driven intent classification for inbound chat text.

Rules are evaluated in order; the first matcher that accepts the text wins.
"""

from enum import Enum
from typing import Callable, Optional

from coachbot.services.coach_modes import find_mode, normalize_text


class Intent(str, Enum):
    CANCEL = "cancel"
    START = "start"
    HELP = "help"
    START_FEEDBACK = "start_feedback"
    START_MODE_RECOMMENDATION = "start_mode_recommendation"
    MODE_INFO = "mode_info"
    MODE_MENU = "mode_menu"
    MODE_SELECT = "mode_select"
    MODE_UNKNOWN = "mode_unknown"
    GENERIC = "generic"


CANCEL_PHRASES = {"отмена", "отменить", "стоп", "cancel"}
FEEDBACK_PHRASES = {"оставить отзыв", "отзыв", "feedback"}
RECOMMENDATION_PHRASES = {"подобрать режим", "какой режим выбрать", "посоветуй режим"}
MODE_INFO_PHRASES = {"режимы", "что за режимы", "описание режимов"}
MODE_MENU_PHRASES = {"режим", "сменить режим", "выбрать режим"}


def parse_command(text: str) -> tuple[Optional[str], str]:
    """Split "/cmd@bot args" into ("/cmd", "args"); (None, text) for plain text."""
    stripped = (text or "").strip()
    if not stripped.startswith("/"):
        return None, stripped
    head, _, rest = stripped.partition(" ")
    command = head.split("@", 1)[0].lower()
    return command, rest.strip()


def _command(*names: str) -> Callable[[str], bool]:
    def matcher(text: str) -> bool:
        command, _ = parse_command(text)
        return command in names

    return matcher


def _bare_command(name: str) -> Callable[[str], bool]:
    def matcher(text: str) -> bool:
        command, args = parse_command(text)
        return command == name and not args

    return matcher


def _phrase(phrases: set[str]) -> Callable[[str], bool]:
    def matcher(text: str) -> bool:
        return normalize_text(text) in phrases

    return matcher


def _any(*matchers: Callable[[str], bool]) -> Callable[[str], bool]:
    def matcher(text: str) -> bool:
        return any(m(text) for m in matchers)

    return matcher


def _is_mode_select(text: str) -> bool:
    command, args = parse_command(text)
    if command == "/mode":
        return bool(args) and find_mode(args) is not None
    return command is None and find_mode(text) is not None


def _is_mode_unknown(text: str) -> bool:
    command, args = parse_command(text)
    return command == "/mode" and bool(args)


INTENT_RULES: list[tuple[Intent, Callable[[str], bool]]] = [
    (Intent.CANCEL, _any(_command("/cancel"), _phrase(CANCEL_PHRASES))),
    (Intent.START, _command("/start")),
    (Intent.HELP, _command("/help")),
    (Intent.START_FEEDBACK, _any(_command("/feedback"), _phrase(FEEDBACK_PHRASES))),
    (Intent.START_MODE_RECOMMENDATION, _any(_command("/recommend"), _phrase(RECOMMENDATION_PHRASES))),
    (Intent.MODE_INFO, _any(_command("/modes"), _phrase(MODE_INFO_PHRASES))),
    (Intent.MODE_MENU, _any(_bare_command("/mode"), _phrase(MODE_MENU_PHRASES))),
    (Intent.MODE_SELECT, _is_mode_select),
    (Intent.MODE_UNKNOWN, _is_mode_unknown),
]


def classify_intent(text: Optional[str]) -> Intent:
    """Classify text into exactly one intent; GENERIC when no rule matches."""
    if not text or not text.strip():
        return Intent.GENERIC
    for intent, matcher in INTENT_RULES:
        if matcher(text):
            return intent
    return Intent.GENERIC


def selected_mode_key(text: str) -> Optional[str]:
    """Mode key named by a MODE_SELECT message."""
    command, args = parse_command(text)
    mode = find_mode(args if command == "/mode" else text)
    return mode.key if mode else None
