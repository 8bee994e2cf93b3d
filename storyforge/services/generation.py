"""Generation service contract and backend resolution.

Every workflow talks to the language model through ``generate`` on one of
the backends in :mod:`storyforge.api_handler` or
:mod:`storyforge.text_generator`. The backend is chosen from the Flask
configuration and cached on the application.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

from flask import current_app

SERVICE_CACHE_KEY = "_GENERATION_SERVICE_INSTANCE"

MODEL_ROLE = "model"
USER_ROLE = "user"


class GenerationServiceError(RuntimeError):
    """Raised when the generation backend cannot produce text."""


class GenerationSafetyError(GenerationServiceError):
    """The backend refused the request or blocked its output on safety grounds."""


class GenerationAuthError(GenerationServiceError):
    """The backend rejected our credentials or is not configured."""


class GenerationTransportError(GenerationServiceError):
    """The backend could not be reached or failed while answering."""


@dataclass(frozen=True)
class ChatMessage:
    role: str
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}


@dataclass(frozen=True)
class GenerationOptions:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None
    response_format: str = "text"
    tools: Tuple[str, ...] = field(default_factory=tuple)

    def with_overrides(self, **changes: Any) -> "GenerationOptions":
        """Return a copy with every non-``None`` value in ``changes`` applied."""

        applied = {key: value for key, value in changes.items() if value is not None}
        if "tools" in applied:
            applied["tools"] = tuple(applied["tools"])
        return replace(self, **applied)


class GenerationService(Protocol):
    def generate(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        options: GenerationOptions,
    ) -> str:
        ...


@dataclass(frozen=True)
class GenerationSettings:
    """Backend credentials and defaults read from the Flask config."""

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    local_model_path: Optional[str] = None
    default_max_tokens: int = 2048

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GenerationSettings":
        api_key = (config.get("OPENAI_API_KEY") or "").strip() or None
        model = (config.get("OPENAI_MODEL") or "").strip() or cls.openai_model
        model_path = (config.get("TEXT_GENERATOR_MODEL_PATH") or "").strip() or None
        try:
            max_tokens = int(config.get("GENERATION_MAX_TOKENS") or cls.default_max_tokens)
        except (TypeError, ValueError):
            max_tokens = cls.default_max_tokens
        return cls(
            openai_api_key=api_key,
            openai_model=model,
            local_model_path=model_path,
            default_max_tokens=max_tokens,
        )


def get_generation_service() -> Optional[GenerationService]:  # pragma: no cover - integration point
    """Return the configured backend, or ``None`` when nothing is configured."""

    app = current_app
    if SERVICE_CACHE_KEY in app.config:
        return app.config[SERVICE_CACHE_KEY]

    settings = GenerationSettings.from_config(app.config)
    service: Optional[GenerationService] = None

    if settings.openai_api_key:
        from ..api_handler import OpenAIUnifiedGenerator

        app.logger.info("Using the OpenAI API backend with model %s.", settings.openai_model)
        service = OpenAIUnifiedGenerator(
            settings.openai_model,
            settings.openai_api_key,
            default_max_tokens=settings.default_max_tokens,
        )
    elif settings.local_model_path:
        try:
            from ..text_generator import TextGenerator

            app.logger.info("Initialising text generator with model path: %s", settings.local_model_path)
            service = TextGenerator(
                model_path=settings.local_model_path,
                max_new_tokens=settings.default_max_tokens,
            )
        except Exception as exc:
            app.logger.warning(
                "Failed to initialise text generator at '%s': %s", settings.local_model_path, exc
            )
    else:
        app.logger.info("No generation backend configured (set OPENAI_API_KEY or TEXT_GENERATOR_MODEL_PATH).")

    if service is not None:
        app.logger.info("Generation backend ready (%s).", service.get_compute_device())

    app.config[SERVICE_CACHE_KEY] = service
    return service


def require_generation_service() -> GenerationService:
    service = get_generation_service()
    if service is None:
        raise GenerationAuthError("No text generation backend is configured.")
    return service


def describe_generation_failure(exc: BaseException) -> Tuple[str, int]:
    """Map a generation failure to a user-facing message and HTTP status."""

    if isinstance(exc, GenerationSafetyError):
        return "The proposed response was blocked due to safety settings.", 200
    if isinstance(exc, GenerationAuthError):
        return (
            "There is an issue with the server configuration. Please contact support.",
            500,
        )
    if isinstance(exc, GenerationTransportError):
        return (
            "The writing assistant could not be reached. Please try again in a moment.",
            502,
        )
    message = str(exc).strip() or "An unexpected error occurred while processing your request."
    return message, 500
