from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app

from .generation import GenerationOptions

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class PromptConfigError(RuntimeError):
    """Raised when the prompt configuration file is missing or malformed."""


def load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise PromptConfigError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise PromptConfigError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def load_prompt_template(key: str) -> str:
    template = load_prompt_entry(key).get("prompt_template")
    if not isinstance(template, str) or not template.strip():
        raise PromptConfigError(f"Prompt configuration entry '{key}' is missing the template text.")
    return template


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise PromptConfigError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise PromptConfigError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise PromptConfigError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise PromptConfigError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "temperature": "temperature",
    "top_p": "top_p",
    "top_k": "top_k",
    "max_output_tokens": "max_output_tokens",
    "max_new_tokens": "max_output_tokens",
    "response_format": "response_format",
}


def extract_generation_options(
    parameters: Optional[Dict[str, Any]],
    base: Optional[GenerationOptions] = None,
) -> GenerationOptions:
    """Filter a raw parameters dictionary down to supported generation options."""

    options = base or GenerationOptions()
    if not isinstance(parameters, dict):
        return options

    overrides: Dict[str, Any] = {}
    for key, option_name in _GENERATION_PARAMETER_KEYS.items():
        if key in parameters and parameters[key] is not None:
            overrides[option_name] = parameters[key]
    return options.with_overrides(**overrides)


def apply_template(template: str, **values: object) -> str:
    """Fill ``{name}`` placeholders, leaving any other braces untouched."""

    def _fill(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        raw = values[name]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER.sub(_fill, template)
