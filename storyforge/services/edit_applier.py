from __future__ import annotations

from .proposals import (
    Clarification,
    DeleteEdit,
    EditProposal,
    InsertEdit,
    NoChange,
    ReplaceAllEdit,
    ReplaceEdit,
)


class EditApplicationError(ValueError):
    """Raised when a proposal does not fit the document it is applied to."""


def apply_edit(document_text: str, proposal: EditProposal) -> str:
    """Return the document produced by applying ``proposal`` to ``document_text``."""

    text = document_text or ""
    length = len(text)

    if isinstance(proposal, ReplaceAllEdit):
        return proposal.text
    if isinstance(proposal, (Clarification, NoChange)):
        return text

    if isinstance(proposal, InsertEdit):
        _check_bounds(proposal.start_index, proposal.start_index, length)
        return text[: proposal.start_index] + proposal.text + text[proposal.start_index :]
    if isinstance(proposal, ReplaceEdit):
        _check_bounds(proposal.start_index, proposal.end_index, length)
        return text[: proposal.start_index] + proposal.text + text[proposal.end_index :]
    if isinstance(proposal, DeleteEdit):
        _check_bounds(proposal.start_index, proposal.end_index, length)
        return text[: proposal.start_index] + text[proposal.end_index :]

    raise EditApplicationError(f"Unsupported proposal type: {type(proposal).__name__}")


def _check_bounds(start: int, end: int, length: int) -> None:
    if not 0 <= start <= end <= length:
        raise EditApplicationError(
            f"Edit range {start}-{end} does not fit a document of length {length}."
        )
