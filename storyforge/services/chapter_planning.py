"""Ask the model for a chapter-by-chapter plan of a book."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flask import current_app

from ..system_prompts import get_prompt_max_new_tokens, get_system_instruction
from .generation import USER_ROLE, ChatMessage, GenerationOptions, GenerationService, require_generation_service
from .prompt_config import apply_template, extract_generation_options, load_prompt_entry, load_prompt_template
from .proposal_extraction import iter_json_candidates

PROMPT_KEY = "chapter_plan"
SYSTEM_PROMPT_KEY = "chapter_planner"

MIN_CHAPTERS = 1
MAX_CHAPTERS = 150

DEFAULT_PLANNING_OPTIONS = GenerationOptions(temperature=0.7, top_p=0.9, top_k=30)

_ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)


class ChapterPlanningError(RuntimeError):
    """Raised when a chapter plan cannot be requested or understood."""


@dataclass
class PlannedChapter:
    chapter_number: int
    title: str
    synopsis: str
    style_notes: Optional[str] = None
    additional_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter_number": self.chapter_number,
            "title": self.title,
            "synopsis": self.synopsis,
            "style_notes": self.style_notes,
            "additional_notes": self.additional_notes,
        }


def plan_chapters(
    num_chapters: int,
    *,
    synopsis: Optional[str] = None,
    style_note: Optional[str] = None,
    additional_notes: Optional[str] = None,
    planning_notes: Optional[str] = None,
    target_length: Optional[int] = None,
    generator: Optional[GenerationService] = None,
) -> List[PlannedChapter]:
    if not isinstance(num_chapters, int) or isinstance(num_chapters, bool):
        raise ChapterPlanningError("Number of chapters must be a whole number.")
    if not MIN_CHAPTERS <= num_chapters <= MAX_CHAPTERS:
        raise ChapterPlanningError(f"Invalid number of chapters (must be {MIN_CHAPTERS}-{MAX_CHAPTERS}).")

    template = load_prompt_template(PROMPT_KEY)
    entry = load_prompt_entry(PROMPT_KEY)

    length_note = ""
    if isinstance(target_length, int) and target_length > 0:
        length_note = f" The entire book is intended to be approximately {target_length:,} words long."

    extra_sections = ""
    if additional_notes and additional_notes.strip():
        extra_sections += f"\nAdditional Notes:\n{additional_notes.strip()}\n"
    if planning_notes and planning_notes.strip():
        extra_sections += f"\nSpecific Instructions for Chapter Planning:\n{planning_notes.strip()}\n"

    prompt = apply_template(
        template,
        num_chapters=num_chapters,
        length_note=length_note,
        synopsis=(synopsis or "").strip() or "Not provided.",
        style_note=(style_note or "").strip() or "Not specified.",
        extra_sections=extra_sections,
    )
    base = DEFAULT_PLANNING_OPTIONS.with_overrides(max_output_tokens=get_prompt_max_new_tokens(SYSTEM_PROMPT_KEY))
    options = extract_generation_options(entry.get("parameters"), base=base)

    service = generator or require_generation_service()
    current_app.logger.info("Requesting a plan of %s chapters.", num_chapters)
    raw_text = service.generate(
        get_system_instruction(SYSTEM_PROMPT_KEY),
        [ChatMessage(role=USER_ROLE, text=prompt)],
        options,
    )

    chapters = parse_chapter_plan(raw_text)
    if len(chapters) != num_chapters:
        current_app.logger.warning(
            "Chapter planner returned %s chapters instead of %s.", len(chapters), num_chapters
        )
    return chapters


def parse_chapter_plan(raw_text: Optional[str]) -> List[PlannedChapter]:
    """Turn the planner's reply into numbered chapters.

    Accepts a bare JSON array, an array inside a code fence or surrounded by
    prose, and an object wrapping the array under ``chapters``.
    """

    text = (raw_text or "").strip()
    if not text:
        raise ChapterPlanningError("Content generation failed or was blocked. The response was empty.")

    items = _find_chapter_list(text)
    if items is None:
        current_app.logger.warning("Failed to parse chapter plan. Raw text: %r", text)
        raise ChapterPlanningError("Failed to parse chapter data from AI response. Invalid format received.")

    chapters: List[PlannedChapter] = []
    for item in items:
        if not isinstance(item, dict):
            current_app.logger.warning("Skipping malformed chapter entry: %r", item)
            continue
        number = len(chapters) + 1
        chapters.append(
            PlannedChapter(
                chapter_number=number,
                title=_clean(item.get("title")) or f"Chapter {number}",
                synopsis=_clean(item.get("synopsis")) or "",
                style_notes=_clean(item.get("style_notes")),
                additional_notes=_clean(item.get("additional_notes")),
            )
        )

    if not chapters:
        raise ChapterPlanningError("AI did not generate any valid chapter outlines.")
    return chapters


def _find_chapter_list(text: str) -> Optional[List[Any]]:
    candidates: List[Any] = []
    try:
        candidates.append(json.loads(text))
    except json.JSONDecodeError:
        pass
    candidates.extend(iter_json_candidates(text))
    match = _ARRAY_PATTERN.search(text)
    if match:
        try:
            candidates.append(json.loads(match.group(0)))
        except json.JSONDecodeError:
            pass

    for candidate in candidates:
        if isinstance(candidate, list):
            return candidate
        if isinstance(candidate, dict) and isinstance(candidate.get("chapters"), list):
            return candidate["chapters"]
    return None


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None
