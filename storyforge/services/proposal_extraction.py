"""Recover a structured edit proposal from raw model output.

Models wrap their JSON in prose or code fences often enough that parsing
the response as-is is not an option. Two strategies are tried in order:

1. the body of a fenced code block (optionally tagged ``json``);
2. the substring between the first ``{`` and the last ``}``.

The first candidate that parses to a JSON object is used.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterator, List, Optional

from .proposals import Clarification, RawProposal

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)


class ProposalExtractionError(ValueError):
    """Raised when no usable proposal can be recovered from model output."""

    def __init__(self, reason: str, raw_text: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw_text = raw_text


def _fenced_block(raw_text: str) -> Optional[str]:
    match = _FENCE_PATTERN.search(raw_text)
    if not match:
        return None
    return match.group(1).strip() or None


def _brace_span(raw_text: str) -> Optional[str]:
    first = raw_text.find("{")
    last = raw_text.rfind("}")
    if first == -1 or last <= first:
        return None
    return raw_text[first : last + 1].strip()


_STRATEGIES: List[Callable[[str], Optional[str]]] = [_fenced_block, _brace_span]


def iter_json_candidates(raw_text: str) -> Iterator[Any]:
    """Yield every value the extraction strategies manage to parse, in order."""

    for strategy in _STRATEGIES:
        candidate = strategy(raw_text)
        if candidate is None:
            continue
        try:
            yield json.loads(candidate)
        except json.JSONDecodeError:
            continue


def extract_proposal(raw_text: Optional[str]) -> RawProposal:
    text = raw_text or ""
    if not text.strip():
        raise ProposalExtractionError("The model returned an empty response.", text)

    payload = next((value for value in iter_json_candidates(text) if isinstance(value, dict)), None)
    if payload is None:
        raise ProposalExtractionError("Could not extract a JSON object from the response.", text)

    kind = payload.get("type", payload.get("kind"))
    explanation = payload.get("explanation")
    if not isinstance(kind, str) or not kind.strip():
        raise ProposalExtractionError("Parsed JSON is missing the required 'type' field.", text)
    if not isinstance(explanation, str):
        raise ProposalExtractionError("Parsed JSON is missing the required 'explanation' field.", text)

    return RawProposal.from_payload(payload)


def clarification_for_unparseable(raw_text: Optional[str]) -> Clarification:
    return Clarification(
        explanation=(
            "I couldn't structure the response correctly. "
            f"Here's the raw suggestion: {raw_text or ''}"
        )
    )
