"""Reconcile a raw model proposal with the document it is supposed to edit.

``normalize_proposal`` is the single gate between model output and the edit
applier. It is total: every input yields either a well-formed edit or a
``Clarification`` explaining what was wrong with it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

from .paragraphs import Paragraph
from .proposals import (
    Clarification,
    DeleteEdit,
    EditKind,
    EditProposal,
    InsertEdit,
    NoChange,
    RawProposal,
    ReplaceAllEdit,
    ReplaceEdit,
)

LOGGER = logging.getLogger(__name__)


def normalize_proposal(
    raw: RawProposal,
    document_text: str,
    paragraphs: Sequence[Paragraph],
) -> EditProposal:
    explanation = raw.explanation if isinstance(raw.explanation, str) else str(raw.explanation or "")
    try:
        kind = EditKind(raw.kind)
    except ValueError:
        return _clarify(f"AI proposed an unsupported edit type '{raw.kind}'.", explanation)

    if kind is EditKind.REPLACE_ALL:
        if not isinstance(raw.text, str):
            return _clarify("AI proposed rewriting the whole text but sent no replacement text.", explanation)
        return ReplaceAllEdit(explanation=explanation, text=raw.text)

    if kind is EditKind.CLARIFICATION:
        return Clarification(explanation=explanation)
    if kind is EditKind.NONE:
        return NoChange(explanation=explanation)

    if isinstance(raw.target_paragraphs, list) and raw.target_paragraphs:
        return _normalize_paragraph_target(kind, raw, explanation, paragraphs)

    return _normalize_offsets(kind, raw, explanation, len(document_text or ""))


def _normalize_paragraph_target(
    kind: EditKind,
    raw: RawProposal,
    explanation: str,
    paragraphs: Sequence[Paragraph],
) -> EditProposal:
    requested = raw.target_paragraphs
    valid: List[int] = []
    dropped = False
    for value in requested:
        index = _as_int(value)
        if index is None or not 0 <= index < len(paragraphs):
            dropped = True
        elif index not in valid:
            valid.append(index)

    if not valid:
        return _clarify(
            "AI tried to edit paragraph indices that don't exist or were invalid "
            f"({_render(requested)}).",
            explanation,
        )

    start = min(paragraphs[index].start_index for index in valid)
    end = max(paragraphs[index].end_index for index in valid)

    if dropped:
        LOGGER.warning(
            "Some paragraph targets were invalid: %s; using %s.", _render(requested), sorted(valid)
        )
        explanation = f"(Note: Some requested paragraph indices were invalid and ignored.) {explanation}"

    if kind is EditKind.DELETE:
        return DeleteEdit(explanation=explanation, start_index=start, end_index=end)

    if not isinstance(raw.text, str):
        return _clarify(
            f"Proposal targeted paragraph(s) {_render(sorted(valid))} but was missing the "
            f"{'replacement' if kind is EditKind.REPLACE else 'insertion'} text.",
            explanation,
        )
    if kind is EditKind.INSERT:
        return InsertEdit(explanation=explanation, start_index=start, text=raw.text)
    return ReplaceEdit(explanation=explanation, start_index=start, end_index=end, text=raw.text)


def _normalize_offsets(
    kind: EditKind,
    raw: RawProposal,
    explanation: str,
    document_length: int,
) -> EditProposal:
    needs_text = kind in (EditKind.REPLACE, EditKind.INSERT)
    needs_end = kind in (EditKind.REPLACE, EditKind.DELETE)

    if needs_text and not isinstance(raw.text, str):
        return _clarify(f"AI proposed a {kind.value} edit but failed to provide the text.", explanation)

    start = _as_int(raw.start_index)
    if start is None:
        return _clarify(
            f"AI proposed a {kind.value} edit but failed to provide a valid start index.",
            explanation,
        )

    end: Optional[int] = None
    if needs_end:
        end = _as_int(raw.end_index)
        if end is None:
            return _clarify(
                f"AI proposed a {kind.value} edit but failed to provide a valid end index.",
                explanation,
            )
        if start > end:
            return _clarify(
                f"AI proposed a {kind.value} edit with invalid indices "
                f"(start index {start} > end index {end}).",
                explanation,
            )

    bound = end if end is not None else start
    if start < 0 or bound > document_length:
        return _clarify(
            f"AI proposed a {kind.value} edit outside the text "
            f"(indices {start}-{bound}, text length {document_length}).",
            explanation,
        )

    if kind is EditKind.INSERT:
        return InsertEdit(explanation=explanation, start_index=start, text=raw.text)
    if kind is EditKind.DELETE:
        return DeleteEdit(explanation=explanation, start_index=start, end_index=end)
    return ReplaceEdit(explanation=explanation, start_index=start, end_index=end, text=raw.text)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _render(values: Any) -> str:
    try:
        return json.dumps(values)
    except (TypeError, ValueError):
        return repr(values)


def _clarify(problem: str, explanation: str) -> Clarification:
    LOGGER.warning("Downgrading proposal to clarification: %s", problem)
    message = f"Error: {problem}"
    if explanation:
        message += f" Original explanation: {explanation}"
    return Clarification(explanation=message)
