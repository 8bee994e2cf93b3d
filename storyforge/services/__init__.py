"""Service layer for story generation and the edit-proposal protocol."""

from __future__ import annotations

from .edit_applier import EditApplicationError, apply_edit  # noqa: F401
from .paragraphs import Paragraph, compute_paragraphs  # noqa: F401
from .proposal_extraction import ProposalExtractionError, extract_proposal  # noqa: F401
from .proposal_validation import normalize_proposal  # noqa: F401
from .proposals import (  # noqa: F401
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
from .revision_prompt import RevisionPrompt, build_prompt  # noqa: F401
from .revision_session import RevisionSession, RevisionStateError, RevisionTicket  # noqa: F401

__all__ = [
    "Clarification",
    "DeleteEdit",
    "EditApplicationError",
    "EditKind",
    "EditProposal",
    "InsertEdit",
    "NoChange",
    "Paragraph",
    "ProposalExtractionError",
    "RawProposal",
    "ReplaceAllEdit",
    "ReplaceEdit",
    "RevisionPrompt",
    "RevisionSession",
    "RevisionStateError",
    "RevisionTicket",
    "apply_edit",
    "build_prompt",
    "compute_paragraphs",
    "extract_proposal",
    "normalize_proposal",
]
