# api_handler.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

import openai

from .services.generation import (
    MODEL_ROLE,
    ChatMessage,
    GenerationAuthError,
    GenerationOptions,
    GenerationSafetyError,
    GenerationServiceError,
    GenerationTransportError,
)

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "web_search"


class OpenAIUnifiedGenerator:
    """
    Unified wrapper that auto-selects between Responses, Chat Completions,
    and legacy Completions APIs depending on the model name and the tools
    a call asks for.

    - GPT-5 / o3 / o4 / 4.1(x), or any call using web search → Responses API
    - GPT-4 / 4o / 3.5 (chatty models) → Chat Completions API
    - Very old text-* models → Legacy Completions API

    SDK failures are translated to the generation error taxonomy so callers
    never see ``openai`` exception types.
    """

    def __init__(self, model_name: str, api_key: str, default_max_tokens: int = 2048) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        self.default_max_tokens = int(default_max_tokens or 2048)

        client_cls = getattr(openai, "OpenAI", None)
        if client_cls is None:
            raise GenerationAuthError("OpenAI client not available. Update the 'openai' package.")
        self._client = client_cls(api_key=self.api_key)

    # ---------------- heuristics ----------------
    def _uses_responses_api(self, options: GenerationOptions) -> bool:
        if WEB_SEARCH_TOOL in options.tools:
            return True
        name = self.model_name.lower()
        return name.startswith((
            "gpt-5", "o3", "o4", "gpt-4.1", "gpt-4.1-mini", "gpt-4o-reasoning"
        ))

    def _uses_legacy_completions(self) -> bool:
        name = self.model_name.lower()
        legacy_prefixes = ("text-", "code-", "ada", "babbage", "curie", "davinci")
        return name.startswith(legacy_prefixes)

    # ---------------- public API ----------------
    def generate(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        options: GenerationOptions,
    ) -> str:
        if not messages:
            raise ValueError("messages must contain at least one entry.")
        max_tokens = int(options.max_output_tokens or self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_output_tokens must be positive.")

        try:
            if self._uses_responses_api(options):
                return self._call_responses(system_instruction, messages, max_tokens, options)
            if self._uses_legacy_completions():
                return self._call_legacy(system_instruction, messages, max_tokens, options)
            return self._call_chat(system_instruction, messages, max_tokens, options)
        except GenerationServiceError:
            raise
        except Exception as exc:
            raise _translate_error(exc) from exc

    def get_compute_device(self) -> str:
        return "OpenAI API"

    def signature(self) -> Tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- internal callers ----------------
    def _call_responses(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        options: GenerationOptions,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.model_name,
            "input": [
                {"role": _openai_role(message.role), "content": message.text}
                for message in messages
            ],
            "max_output_tokens": max_tokens,
        }
        if system_instruction:
            payload["instructions"] = system_instruction
        if options.temperature is not None:
            payload["temperature"] = float(options.temperature)
        if options.top_p is not None:
            payload["top_p"] = float(options.top_p)
        if WEB_SEARCH_TOOL in options.tools:
            payload["tools"] = [{"type": WEB_SEARCH_TOOL}]
        if options.response_format == "json":
            payload["text"] = {"format": {"type": "json_object"}}

        resp = self._client.responses.create(**payload)
        text = (getattr(resp, "output_text", None) or "").strip()
        if text:
            return text

        status = getattr(resp, "status", None)
        reason = getattr(getattr(resp, "incomplete_details", None), "reason", None)
        if status == "incomplete" and reason == "content_filter":
            raise GenerationSafetyError("The response was blocked by the content filter.")
        snippet = _shorten_debug(str(resp))
        raise GenerationServiceError(f"Model returned no text content. Raw response (truncated): {snippet}")

    def _call_chat(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        options: GenerationOptions,
    ) -> str:
        chat_messages: List[Dict[str, str]] = []
        if system_instruction:
            chat_messages.append({"role": "system", "content": system_instruction})
        chat_messages.extend(
            {"role": _openai_role(message.role), "content": message.text} for message in messages
        )

        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": chat_messages,
            "max_tokens": max_tokens,
            "n": 1,
        }
        if options.temperature is not None:
            kwargs["temperature"] = float(options.temperature)
        if options.top_p is not None:
            kwargs["top_p"] = float(options.top_p)
        if options.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        resp = self._client.chat.completions.create(**kwargs)
        choices = getattr(resp, "choices", []) or []
        if choices and getattr(choices[0], "finish_reason", None) == "content_filter":
            raise GenerationSafetyError("The response was blocked by the content filter.")
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        snippet = _shorten_debug(str(resp))
        raise GenerationServiceError(f"Chat completion returned no text. Raw response (truncated): {snippet}")

    def _call_legacy(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        options: GenerationOptions,
    ) -> str:
        lines = [system_instruction] if system_instruction else []
        lines.extend(f"{message.role.capitalize()}: {message.text}" for message in messages)
        lines.append("Model:")
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "prompt": "\n\n".join(lines),
            "max_tokens": max_tokens,
            "n": 1,
        }
        if options.temperature is not None:
            kwargs["temperature"] = float(options.temperature)
        if options.top_p is not None:
            kwargs["top_p"] = float(options.top_p)

        resp = self._client.completions.create(**kwargs)
        choices = getattr(resp, "choices", []) or []
        text = str(getattr(choices[0], "text", "") or "").strip() if choices else ""
        if text:
            return text
        snippet = _shorten_debug(str(resp))
        raise GenerationServiceError(f"Legacy completion returned no text. Raw response (truncated): {snippet}")

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or getattr(first, "text", "") or "")


def _openai_role(role: str) -> str:
    return "assistant" if role == MODEL_ROLE else "user"


def _translate_error(exc: Exception) -> GenerationServiceError:
    """Map an ``openai`` SDK exception onto the generation error taxonomy."""

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        LOGGER.error("OpenAI rejected the configured credentials: %s", exc)
        return GenerationAuthError(str(exc))
    if isinstance(exc, openai.BadRequestError) and _is_content_policy(exc):
        return GenerationSafetyError(str(exc))
    if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        LOGGER.warning("OpenAI request failed in transit: %s", exc)
        return GenerationTransportError(str(exc))
    LOGGER.warning("OpenAI request failed: %s", exc)
    return GenerationServiceError(str(exc) or exc.__class__.__name__)


def _is_content_policy(exc: Exception) -> bool:
    code = str(getattr(exc, "code", "") or "").lower()
    if code in {"content_policy_violation", "content_filter"}:
        return True
    return "safety" in str(exc).lower()


def _shorten_debug(s: str, limit: int = 1200) -> str:
    s = s.replace("\n", " ")
    return (s[:limit] + "…") if len(s) > limit else s
