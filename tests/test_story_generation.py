import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge import create_app
from storyforge.config import TestConfig
from storyforge.services.generation import MODEL_ROLE, USER_ROLE
from storyforge.services.prompt_config import PROMPT_CACHE_KEY, PromptConfigError
from storyforge.services.story_generation import (
    MODE_BOOK_PART,
    MODE_CONTINUATION,
    MODE_INITIAL,
    MODE_REFINEMENT,
    MODE_STORY_PART,
    ChapterContext,
    StoryContext,
    StoryGenerationError,
    StoryPartRequest,
    build_story_prompt,
    generate_story_part,
)


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


class DummyGenerator:
    def __init__(self, response="  Once upon a time.  "):
        self.response = response
        self.calls = []

    def generate(self, system_instruction, messages, options):
        self.calls.append({"system": system_instruction, "messages": list(messages), "options": options})
        return self.response


def test_initial_part_uses_synopsis_and_style(app):
    generator = DummyGenerator()

    result = generate_story_part(
        StoryPartRequest(length=300, synopsis="A lighthouse keeper.", style_note="Gothic."),
        generator=generator,
    )

    assert result.text == "Once upon a time."
    assert result.mode == MODE_INITIAL
    assert result.prompt == "A lighthouse keeper."
    call = generator.calls[0]
    assert len(call["messages"]) == 1
    assert "approximately 300 words" in call["messages"][0].text
    assert "Style Note: Gothic." in call["messages"][0].text
    assert call["options"].max_output_tokens == 4096
    assert call["options"].tools == ()


def test_continuation_replays_previous_part_as_model_turn(app):
    prompt = build_story_prompt(
        StoryPartRequest(
            length=200,
            synopsis="A heist.",
            style_note="Noir.",
            previous_part_content="The vault door swung open.",
        )
    )

    assert prompt.mode == MODE_CONTINUATION
    assert prompt.base_prompt == "Continue narrative"
    assert [message.role for message in prompt.messages] == [MODEL_ROLE, USER_ROLE]
    assert prompt.messages[0].text == "The vault door swung open."
    assert "Continue the narrative naturally" in prompt.prompt_text


def test_story_part_includes_progress_and_story_context(app):
    prompt = build_story_prompt(
        StoryPartRequest(
            length=500,
            part_instructions="Introduce the rival.",
            story=StoryContext(title="Tides", synopsis="Sailors race.", style_note="Brisk."),
            story_target_length=10000,
            current_story_length=2500,
        )
    )

    assert prompt.mode == MODE_STORY_PART
    assert prompt.prompt_text.startswith("You are writing a story. Overall Synopsis: Sailors race.")
    assert "You are about 25% of the way through the story." in prompt.prompt_text
    assert "Style Note: Brisk." in prompt.prompt_text
    assert prompt.history == []


def test_book_part_requires_chapter(app):
    request = StoryPartRequest(
        length=500,
        part_instructions="Open the chapter.",
        style_note="Lyrical.",
        story=StoryContext(title="Saga", structure_type="book"),
    )

    with pytest.raises(StoryGenerationError, match="Select a chapter"):
        build_story_prompt(request)

    request.chapter = ChapterContext(number=3, title="Storm", style_notes="Tense.")
    prompt = build_story_prompt(request)

    assert prompt.mode == MODE_BOOK_PART
    assert prompt.style_note == "Tense."
    assert 'You are writing Chapter 3 ("Storm").' in prompt.prompt_text
    assert "within Chapter 3" in prompt.prompt_text


def test_refinement_sends_feedback_against_parent(app):
    generator = DummyGenerator("Refined text.")

    result = generate_story_part(
        StoryPartRequest(
            length=250,
            style_note="Sparse.",
            parent_content="Original segment.",
            refinement_feedback="More dialogue.",
            use_web_search=True,
        ),
        generator=generator,
    )

    assert result.mode == MODE_REFINEMENT
    assert result.prompt == "More dialogue."
    call = generator.calls[0]
    assert call["messages"][0].role == MODEL_ROLE
    assert call["messages"][0].text == "Original segment."
    assert "Effective Style Note: Sparse." in call["messages"][1].text
    assert call["options"].tools == ("web_search",)


@pytest.mark.parametrize(
    "request_kwargs, message",
    [
        ({"length": 0, "synopsis": "x", "style_note": "y"}, "Valid length"),
        ({"length": 100, "style_note": "y"}, "synopsis is required"),
        ({"length": 100, "synopsis": "x"}, "style note is required"),
        ({"length": 100, "parent_content": "Old.", "style_note": "y"}, "Feedback is required"),
        ({"length": 100, "story": StoryContext(title="T", style_note="y")}, "what should happen"),
        ({"length": 100, "part_instructions": "Go.", "story": StoryContext(title="T")}, "style note is required"),
    ],
)
def test_invalid_requests_are_rejected(app, request_kwargs, message):
    with pytest.raises(StoryGenerationError, match=message):
        build_story_prompt(StoryPartRequest(**request_kwargs))


def test_empty_generation_is_an_error(app):
    with pytest.raises(StoryGenerationError):
        generate_story_part(
            StoryPartRequest(length=100, synopsis="x", style_note="y"),
            generator=DummyGenerator("   "),
        )


def test_blank_template_is_a_configuration_error(app):
    app.config[PROMPT_CACHE_KEY] = {"generate_initial": {"prompt_template": "   "}}

    with pytest.raises(PromptConfigError, match="generate_initial"):
        build_story_prompt(StoryPartRequest(length=100, synopsis="x", style_note="y"))
