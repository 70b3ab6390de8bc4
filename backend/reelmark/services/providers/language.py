"""
English-transcript heuristic.

A cheap proxy, not a language detector: reported language tags first, then
the share of Latin letters in a sample of the transcript text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from reelmark.core.config import Settings

_CJK = re.compile(r"[\u3400-\u9fff]")
_LATIN = re.compile(r"[A-Za-z]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class LanguageThresholds:
    sample_segments: int = 120
    cjk_max_latin_ratio: float = 0.2
    min_latin_ratio: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> "LanguageThresholds":
        return cls(
            sample_segments=settings.language_sample_segments,
            cjk_max_latin_ratio=settings.language_cjk_max_latin_ratio,
            min_latin_ratio=settings.language_min_latin_ratio,
        )


def reported_languages(items: Iterable[Any]) -> List[str]:
    langs = []
    for item in items:
        if not isinstance(item, dict):
            continue
        lang = item.get("lang") if isinstance(item.get("lang"), str) else item.get("language")
        if isinstance(lang, str) and lang.strip():
            langs.append(lang.strip().lower())
    return langs


def sample_text(items: List[Any], limit: int) -> str:
    parts = []
    for item in items[:limit]:
        if not isinstance(item, dict):
            continue
        text = item.get("text") if isinstance(item.get("text"), str) else item.get("content")
        if isinstance(text, str):
            parts.append(text)
    return _WHITESPACE.sub(" ", " ".join(parts)).strip()


def latin_ratio(text: str) -> Optional[float]:
    non_space = _WHITESPACE.sub("", text)
    if not non_space:
        return None
    return len(_LATIN.findall(text)) / len(non_space)


def looks_english(items: List[Any], thresholds: LanguageThresholds = LanguageThresholds()) -> bool:
    """True unless the transcript items look clearly non-English."""
    langs = reported_languages(items)
    if langs and not any(lang == "en" or lang.startswith("en-") for lang in langs):
        return False

    text = sample_text(items, thresholds.sample_segments)
    ratio = latin_ratio(text)
    if ratio is None:
        return True

    if _CJK.search(text) and ratio < thresholds.cjk_max_latin_ratio:
        return False
    if not langs and ratio < thresholds.min_latin_ratio:
        return False
    return True
