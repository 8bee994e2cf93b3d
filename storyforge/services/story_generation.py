from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app

from ..system_prompts import get_prompt_max_new_tokens, get_system_instruction
from .generation import (
    MODEL_ROLE,
    USER_ROLE,
    ChatMessage,
    GenerationOptions,
    GenerationService,
    require_generation_service,
)
from .prompt_config import apply_template, extract_generation_options, load_prompt_entry, load_prompt_template

SYSTEM_PROMPT_KEY = "story_writer"

MODE_REFINEMENT = "refinement"
MODE_BOOK_PART = "book_part"
MODE_STORY_PART = "story_part"
MODE_CONTINUATION = "continuation"
MODE_INITIAL = "initial"

WEB_SEARCH_TOOL = "web_search"

DEFAULT_STORY_OPTIONS = GenerationOptions(temperature=0.9, top_p=0.95, top_k=40)


class StoryGenerationError(RuntimeError):
    """Raised when a story part request is incomplete or cannot be generated."""


@dataclass
class StoryContext:
    title: str = ""
    structure_type: str = "short_story"
    synopsis: Optional[str] = None
    style_note: Optional[str] = None
    additional_notes: Optional[str] = None

    @property
    def is_book(self) -> bool:
        return self.structure_type == "book"


@dataclass
class ChapterContext:
    number: int
    title: Optional[str] = None
    synopsis: Optional[str] = None
    style_notes: Optional[str] = None
    additional_notes: Optional[str] = None

    def label(self) -> str:
        return f'Chapter {self.number} ("{self.title}")' if self.title else f"Chapter {self.number}"


@dataclass
class StoryPartRequest:
    length: int
    synopsis: Optional[str] = None
    style_note: Optional[str] = None
    part_instructions: Optional[str] = None
    previous_part_content: Optional[str] = None
    refinement_feedback: Optional[str] = None
    parent_content: Optional[str] = None
    story: Optional[StoryContext] = None
    chapter: Optional[ChapterContext] = None
    story_target_length: Optional[int] = None
    current_story_length: Optional[int] = None
    use_web_search: bool = False

    @property
    def is_refinement(self) -> bool:
        return self.parent_content is not None


@dataclass
class StoryPartPrompt:
    mode: str
    prompt_text: str
    base_prompt: str
    style_note: Optional[str]
    history: List[ChatMessage] = field(default_factory=list)

    @property
    def messages(self) -> List[ChatMessage]:
        return [*self.history, ChatMessage(role=USER_ROLE, text=self.prompt_text)]


@dataclass
class StoryPartResult:
    text: str
    mode: str
    prompt: str
    style_note: Optional[str]


def generate_story_part(
    request: StoryPartRequest,
    generator: Optional[GenerationService] = None,
) -> StoryPartResult:
    """Write the next story segment, or a refined version of an earlier one.

    Generation errors from the backend propagate unchanged so the caller can
    tell a safety block from a configuration or transport failure.
    """

    prompt = build_story_prompt(request)
    entry = load_prompt_entry(f"generate_{prompt.mode}")
    base = DEFAULT_STORY_OPTIONS.with_overrides(max_output_tokens=get_prompt_max_new_tokens(SYSTEM_PROMPT_KEY))
    options = extract_generation_options(entry.get("parameters"), base=base)
    if request.use_web_search:
        options = options.with_overrides(tools=(WEB_SEARCH_TOOL,))

    service = generator or require_generation_service()
    current_app.logger.info(
        "Generating %s story part (%s words, web search %s).",
        prompt.mode,
        request.length,
        "on" if request.use_web_search else "off",
    )
    text = (service.generate(get_system_instruction(SYSTEM_PROMPT_KEY), prompt.messages, options) or "").strip()
    if not text:
        raise StoryGenerationError("The story generator returned an empty response.")

    return StoryPartResult(text=text, mode=prompt.mode, prompt=prompt.base_prompt, style_note=prompt.style_note)


def build_story_prompt(request: StoryPartRequest) -> StoryPartPrompt:
    """Validate ``request`` and render the prompt for whichever mode it implies."""

    if not isinstance(request.length, int) or request.length <= 0:
        raise StoryGenerationError("Valid length is required.")

    story = request.story
    chapter = request.chapter
    style_note = _first_text(
        chapter.style_notes if chapter else None,
        story.style_note if story else None,
        request.style_note,
    )

    if request.is_refinement:
        return _refinement_prompt(request, style_note)

    if story is not None:
        if story.is_book and chapter is None:
            raise StoryGenerationError("Select a chapter to write a new part of a book.")
        if not _text(request.part_instructions):
            raise StoryGenerationError("Describe what should happen in this part.")
        if not _first_text(request.style_note, story.style_note):
            raise StoryGenerationError("A style note is required, either on the story or for this part.")
        if story.is_book:
            return _book_part_prompt(request, story, chapter, style_note)
        return _story_part_prompt(request, story)

    if not _text(request.synopsis):
        raise StoryGenerationError("A synopsis is required to start a story.")
    if not _text(request.style_note):
        raise StoryGenerationError("A style note is required to start a story.")
    if _text(request.previous_part_content):
        return _continuation_prompt(request, style_note)
    return _initial_prompt(request, style_note)


def _refinement_prompt(request: StoryPartRequest, style_note: Optional[str]) -> StoryPartPrompt:
    feedback = _text(request.refinement_feedback)
    if not feedback:
        raise StoryGenerationError("Feedback is required to refine a story segment.")
    previous = _text(request.parent_content)
    if not previous:
        raise StoryGenerationError("The segment being refined has no content.")
    if request.story is None and not style_note:
        raise StoryGenerationError("A style note is required to refine a standalone segment.")

    context = [f"Maintain the established style (Effective Style Note: {style_note or 'Not specified'})."]
    chapter = request.chapter
    if chapter is not None:
        context.append(f"This segment is part of {chapter.label()}.")
        context.extend(_chapter_notes(chapter))
    elif request.story is not None:
        context.extend(_story_notes(request.story, prefix="Overall Story"))

    prompt_text = apply_template(
        load_prompt_template(f"generate_{MODE_REFINEMENT}"),
        context=" ".join(context),
        length=request.length,
        feedback=feedback,
    )
    return StoryPartPrompt(
        mode=MODE_REFINEMENT,
        prompt_text=prompt_text,
        base_prompt=feedback,
        style_note=style_note,
        history=[ChatMessage(role=MODEL_ROLE, text=previous)],
    )


def _book_part_prompt(
    request: StoryPartRequest,
    story: StoryContext,
    chapter: ChapterContext,
    style_note: Optional[str],
) -> StoryPartPrompt:
    previous = _text(request.previous_part_content)

    context = ""
    if not previous:
        notes = [f"You are writing {chapter.label()}."]
        notes.extend(_chapter_notes(chapter))
        notes.extend(_story_notes(story, prefix="Overall Story"))
        context = " ".join(notes) + "\n\n"

    prompt_text = apply_template(
        load_prompt_template(f"generate_{MODE_BOOK_PART}"),
        context=context,
        progress=_progress(request),
        style_note=style_note or "",
        length=request.length,
        instructions=_text(request.part_instructions),
        chapter_number=chapter.number,
    )
    return StoryPartPrompt(
        mode=MODE_BOOK_PART,
        prompt_text=prompt_text,
        base_prompt=_text(request.part_instructions),
        style_note=style_note,
        history=_previous_part(previous),
    )


def _story_part_prompt(request: StoryPartRequest, story: StoryContext) -> StoryPartPrompt:
    previous = _text(request.previous_part_content)
    style_note = _first_text(story.style_note, request.style_note)

    context = ""
    if not previous and _text(story.synopsis):
        notes = [f"You are writing a story. Overall Synopsis: {_text(story.synopsis)}."]
        if _text(story.style_note):
            notes.append(f"Overall Style Note: {_text(story.style_note)}.")
        if _text(story.additional_notes):
            notes.append(f"Overall Additional Notes: {_text(story.additional_notes)}.")
        context = " ".join(notes) + "\n\n"

    prompt_text = apply_template(
        load_prompt_template(f"generate_{MODE_STORY_PART}"),
        context=context,
        progress=_progress(request),
        style_note=style_note or "",
        length=request.length,
        instructions=_text(request.part_instructions),
    )
    return StoryPartPrompt(
        mode=MODE_STORY_PART,
        prompt_text=prompt_text,
        base_prompt=_text(request.part_instructions),
        style_note=style_note,
        history=_previous_part(previous),
    )


def _continuation_prompt(request: StoryPartRequest, style_note: Optional[str]) -> StoryPartPrompt:
    instructions = _text(request.part_instructions)
    prompt_text = apply_template(
        load_prompt_template(f"generate_{MODE_CONTINUATION}"),
        length=request.length,
        style_note=style_note or "",
        synopsis=_text(request.synopsis),
        instructions=instructions or "Continue the narrative naturally from the previous part.",
    )
    return StoryPartPrompt(
        mode=MODE_CONTINUATION,
        prompt_text=prompt_text,
        base_prompt=instructions or "Continue narrative",
        style_note=style_note,
        history=_previous_part(_text(request.previous_part_content)),
    )


def _initial_prompt(request: StoryPartRequest, style_note: Optional[str]) -> StoryPartPrompt:
    synopsis = _text(request.synopsis)
    prompt_text = apply_template(
        load_prompt_template(f"generate_{MODE_INITIAL}"),
        length=request.length,
        style_note=style_note or "",
        synopsis=synopsis,
    )
    return StoryPartPrompt(
        mode=MODE_INITIAL,
        prompt_text=prompt_text,
        base_prompt=synopsis,
        style_note=style_note,
    )


def _chapter_notes(chapter: ChapterContext) -> List[str]:
    notes = []
    if _text(chapter.synopsis):
        notes.append(f"Chapter Synopsis: {_text(chapter.synopsis)}.")
    if _text(chapter.style_notes):
        notes.append(f"Chapter Style Notes: {_text(chapter.style_notes)}.")
    if _text(chapter.additional_notes):
        notes.append(f"Chapter Additional Notes: {_text(chapter.additional_notes)}.")
    return notes


def _story_notes(story: StoryContext, *, prefix: str) -> List[str]:
    notes = []
    if _text(story.synopsis):
        notes.append(f"{prefix} Synopsis: {_text(story.synopsis)}.")
    if _text(story.style_note):
        notes.append(f"{prefix} Style Note: {_text(story.style_note)}.")
    if _text(story.additional_notes):
        notes.append(f"{prefix} Additional Notes: {_text(story.additional_notes)}.")
    return notes


def _progress(request: StoryPartRequest) -> str:
    target = request.story_target_length
    if not isinstance(target, int) or target <= 0:
        return ""
    current = request.current_story_length if isinstance(request.current_story_length, int) else 0
    return f"You are about {round(current / target * 100)}% of the way through the story. "


def _previous_part(previous: str) -> List[ChatMessage]:
    return [ChatMessage(role=MODEL_ROLE, text=previous)] if previous else []


def _text(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def _first_text(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if _text(value):
            return _text(value)
    return None
