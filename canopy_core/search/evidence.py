from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from canopy_core.search.types import DetailedAnalysis, DocumentCandidate

PROXIMITY_WINDOW_CHARS = 50
MIN_COLOR_MENTIONS = 2


@dataclass(frozen=True)
class _TextView:
    title: str
    description: str
    summary: str
    searchable_text: str
    tags: tuple[str, ...]

    @classmethod
    def of(cls, candidate: DocumentCandidate) -> _TextView:
        return cls(
            title=(candidate.title or "").lower(),
            description=(candidate.description or "").lower(),
            summary=(candidate.ai_summary or "").lower(),
            searchable_text=(candidate.searchable_text or "").lower(),
            tags=tuple(tag.lower() for tag in candidate.tags or ()),
        )

    def has_metadata(self) -> bool:
        return bool(
            self.description or self.summary or self.tags or self.searchable_text
        )

    def combined(self) -> str:
        return " ".join(
            (
                self.description,
                self.title,
                " ".join(self.tags),
                self.summary,
                self.searchable_text,
            )
        )


def _related(value: str, token: str) -> bool:
    return token in value or value in token


def _clothing_match(
    analysis: DetailedAnalysis,
    colors: Sequence[str],
    objects: Sequence[str],
) -> bool:
    for item in analysis.clothing:
        item_color = item.color.lower()
        item_shade = item.shade.lower()
        item_type = item.type.lower()
        for color in colors:
            if color not in item_color and color not in item_shade:
                continue
            if not objects:
                return True
            if any(_related(item_type, obj) for obj in objects):
                return True
    return False


def _color_region_match(
    analysis: DetailedAnalysis,
    colors: Sequence[str],
    objects: Sequence[str],
) -> bool:
    for item in analysis.colors:
        item_color = item.color.lower()
        item_shade = item.shade.lower()
        location = item.location.lower()
        for color in colors:
            if color not in item_color and color not in item_shade:
                continue
            if not objects:
                return True
            if any(obj in location for obj in objects):
                return True
    return False


def _tag_match(tags: Sequence[str], colors: Sequence[str], objects: Sequence[str]) -> bool:
    for color in colors:
        for obj in objects:
            combined = f"{color} {obj}"
            reversed_combined = f"{obj} {color}"
            if any(combined in tag or reversed_combined in tag for tag in tags):
                return True
        if any(color in tag for tag in tags):
            return True
    return False


def _proximity_match(
    view: _TextView,
    colors: Sequence[str],
    objects: Sequence[str],
) -> bool:
    window = PROXIMITY_WINDOW_CHARS
    for color in colors:
        for obj in objects:
            c = re.escape(color)
            o = re.escape(obj)
            pattern = re.compile(
                f"{c}.{{0,{window}}}{o}|{o}.{{0,{window}}}{c}",
                re.IGNORECASE,
            )
            if pattern.search(view.searchable_text) or pattern.search(view.description):
                return True
    return False


def matches_color(
    candidate: DocumentCandidate,
    colors: Sequence[str],
    objects: Sequence[str],
) -> bool:
    """Return True when the candidate's metadata substantiates a requested color.

    Evidence is checked strongest first: analyzer clothing entries, analyzer
    color regions, tags, color/object proximity in free text, and finally a
    color word mentioned at least twice. A candidate without any descriptive
    metadata cannot substantiate a color and never matches.
    """
    if not colors:
        return True

    view = _TextView.of(candidate)
    if not view.has_metadata():
        return False

    analysis = candidate.detailed_analysis
    if analysis is not None:
        if _clothing_match(analysis, colors, objects):
            return True
        if _color_region_match(analysis, colors, objects):
            return True

    if _tag_match(view.tags, colors, objects):
        return True

    if objects and _proximity_match(view, colors, objects):
        return True

    all_text = view.combined()
    return any(all_text.count(color) >= MIN_COLOR_MENTIONS for color in colors)


def matches_content(candidate: DocumentCandidate, objects: Sequence[str]) -> bool:
    if not objects:
        return True

    analysis = candidate.detailed_analysis
    if analysis is not None:
        for item in analysis.clothing:
            item_type = item.type.lower()
            if any(_related(item_type, obj) for obj in objects):
                return True
        for item in analysis.objects:
            name = item.name.lower()
            if any(_related(name, obj) for obj in objects):
                return True

    all_text = _TextView.of(candidate).combined()
    return any(obj in all_text for obj in objects)
