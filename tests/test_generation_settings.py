import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge import create_app
from storyforge.config import TestConfig
from storyforge.services.generation import (
    GenerationAuthError,
    GenerationOptions,
    GenerationSafetyError,
    GenerationServiceError,
    GenerationSettings,
    GenerationTransportError,
    describe_generation_failure,
)
from storyforge.services.prompt_config import (
    PromptConfigError,
    apply_template,
    extract_generation_options,
    load_prompt_entry,
    load_prompt_template,
)


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


def test_settings_read_backend_credentials():
    settings = GenerationSettings.from_config(
        {"OPENAI_API_KEY": " sk-abc ", "OPENAI_MODEL": "", "GENERATION_MAX_TOKENS": "nope"}
    )

    assert settings.openai_api_key == "sk-abc"
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.local_model_path is None
    assert settings.default_max_tokens == 2048


@pytest.mark.parametrize(
    "error, status",
    [
        (GenerationSafetyError("x"), 200),
        (GenerationAuthError("x"), 500),
        (GenerationTransportError("x"), 502),
        (GenerationServiceError("Model returned no text."), 500),
    ],
)
def test_describe_generation_failure(error, status):
    message, code = describe_generation_failure(error)

    assert code == status
    assert message


def test_unexpected_errors_keep_their_message():
    assert describe_generation_failure(GenerationServiceError("Quota exhausted."))[0] == "Quota exhausted."


def test_extract_generation_options_maps_known_keys():
    base = GenerationOptions(temperature=0.1, response_format="json")

    options = extract_generation_options({"temperature": 0.8, "max_new_tokens": 512, "seed": 3}, base=base)

    assert options == GenerationOptions(temperature=0.8, max_output_tokens=512, response_format="json")
    assert extract_generation_options(None, base=base) is base


def test_apply_template_leaves_unknown_braces():
    template = 'Write {length} words. Example: {"title": "x"}'

    assert apply_template(template, length=200) == 'Write 200 words. Example: {"title": "x"}'


def test_apply_template_does_not_expand_placeholders_inside_values():
    filled = apply_template("{style_note} / {synopsis}", style_note="{synopsis}", synopsis="S")

    assert filled == "{synopsis} / S"


def test_prompt_entries_load_from_json(app):
    assert "{synopsis}" in load_prompt_template("generate_initial")
    assert load_prompt_entry("revision")["parameters"]["response_format"] == "json"
    with pytest.raises(PromptConfigError):
        load_prompt_template("revision")


def test_missing_prompt_file_is_reported(app, tmp_path):
    app.config["PROMPT_CONFIG_PATH"] = str(tmp_path / "missing.json")
    app.config.pop("_PROMPT_CONFIG_CACHE", None)

    with pytest.raises(PromptConfigError):
        load_prompt_entry("revision")
