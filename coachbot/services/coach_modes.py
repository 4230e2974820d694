from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from coachbot.logging_config import get_logger

logger = get_logger("coach_modes")

_MODES_PATH = Path(__file__).resolve().parents[1] / "data" / "coach_modes.yaml"

KEYBOARD_ROW_SIZE = 2


@dataclass(frozen=True)
class CoachMode:
    key: str
    label: str
    label_ru: str
    description_ru: str
    analyzer_prompt: str
    reporter_prompt: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class ModeRecommendation:
    mode: CoachMode
    score: int
    scores: dict[str, int]


def normalize_text(text: str) -> str:
    return " ".join((text or "").casefold().replace("ё", "е").split())


@lru_cache(maxsize=1)
def _load_modes() -> tuple[str, dict[str, CoachMode]]:
    with _MODES_PATH.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    modes: dict[str, CoachMode] = {}
    for key, raw in (data.get("modes") or {}).items():
        modes[key] = CoachMode(
            key=key,
            label=raw["label"],
            label_ru=raw["label_ru"],
            description_ru=raw["description_ru"],
            analyzer_prompt=raw["analyzer_prompt"],
            reporter_prompt=raw["reporter_prompt"],
            keywords=tuple(normalize_text(k) for k in raw.get("keywords") or []),
        )
    baseline = data.get("baseline") or next(iter(modes))
    if baseline not in modes:
        raise ValueError(f"baseline coach mode {baseline!r} is not defined")
    return baseline, modes


def baseline_mode_key() -> str:
    return _load_modes()[0]


def list_modes() -> list[CoachMode]:
    return list(_load_modes()[1].values())


def list_mode_keys() -> list[str]:
    return list(_load_modes()[1].keys())


def get_mode(key: Optional[str]) -> CoachMode:
    """Mode by key; unknown or empty keys resolve to the baseline mode."""
    baseline, modes = _load_modes()
    if key and key in modes:
        return modes[key]
    if key:
        logger.warning(f"Unknown coach mode {key!r}, using baseline")
    return modes[baseline]


def find_mode(text: str) -> Optional[CoachMode]:
    """Match a mode by key, English label or Russian label (keyboard buttons)."""
    normalized = normalize_text(text)
    if not normalized:
        return None
    for mode in list_modes():
        if normalized in (mode.key, normalize_text(mode.label), normalize_text(mode.label_ru)):
            return mode
    return None


def recommend_mode(text: str) -> ModeRecommendation:
    """Keyword recommendation: most keyword hits wins; ties and zero go to baseline."""
    baseline, modes = _load_modes()
    normalized = normalize_text(text)
    scores = {key: sum(1 for keyword in mode.keywords if keyword in normalized) for key, mode in modes.items()}

    best_score = max(scores.values(), default=0)
    leaders = [key for key, score in scores.items() if score == best_score]
    if best_score == 0 or len(leaders) > 1:
        return ModeRecommendation(mode=modes[baseline], score=best_score, scores=scores)
    return ModeRecommendation(mode=modes[leaders[0]], score=best_score, scores=scores)


def build_mode_keyboard() -> dict:
    """Reply keyboard with one button per mode (Russian labels)."""
    buttons = [{"text": mode.label_ru} for mode in list_modes()]
    rows = [buttons[i : i + KEYBOARD_ROW_SIZE] for i in range(0, len(buttons), KEYBOARD_ROW_SIZE)]
    return {"keyboard": rows, "resize_keyboard": True, "one_time_keyboard": True}


def render_mode_menu(current_key: str) -> str:
    current = get_mode(current_key)
    lines = [f"Текущий режим: {current.label_ru} ({current.key})", "", "Выбери режим кнопкой ниже или командой /mode <режим>:"]
    lines.extend(f"• {mode.label_ru} — /mode {mode.key}" for mode in list_modes())
    return "\n".join(lines)


def render_mode_descriptions() -> str:
    blocks = [f"{mode.label_ru} ({mode.key})\n{mode.description_ru}" for mode in list_modes()]
    return "Режимы коуча:\n\n" + "\n\n".join(blocks)


def render_mode_switched(mode: CoachMode) -> str:
    return f"Режим переключён: {mode.label_ru}.\n{mode.description_ru}"


def render_unknown_mode() -> str:
    return "Неизвестный режим. Используй /mode <режим>.\nДоступно: " + ", ".join(list_mode_keys())


def render_recommendation(recommendation: ModeRecommendation) -> str:
    mode = recommendation.mode
    return (
        f"Рекомендую режим: {mode.label_ru}.\n{mode.description_ru}\n\n"
        f"Включить его: /mode {mode.key}"
    )
