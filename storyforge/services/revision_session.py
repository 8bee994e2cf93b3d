"""Conversational revision of a single document.

A :class:`RevisionSession` owns one document, the conversation about it and
at most one pending proposal::

    Idle --submit--> ProposalPending --accept/reject--> Idle

``submit_request`` runs the whole pipeline in one call. The web layer uses
the split form (``begin_request`` / ``generate`` / ``complete_request``) so
that it can persist the request sequence before the slow model call; a
response whose ticket no longer matches the session is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .edit_applier import apply_edit
from .generation import (
    GenerationAuthError,
    GenerationOptions,
    GenerationService,
    GenerationServiceError,
    describe_generation_failure,
)
from .paragraphs import Paragraph, compute_paragraphs, select_paragraphs
from .proposal_extraction import ProposalExtractionError, clarification_for_unparseable, extract_proposal
from .proposal_validation import normalize_proposal
from .proposals import Clarification, EditProposal, is_applicable, proposal_from_dict
from .revision_prompt import HistoryEntry, RevisionPrompt, build_prompt

LOGGER = logging.getLogger(__name__)

DEFAULT_REVISION_OPTIONS = GenerationOptions(
    temperature=0.3,
    top_p=0.95,
    top_k=40,
    max_output_tokens=2048,
    response_format="json",
)


class RevisionStateError(RuntimeError):
    """Raised when an operation does not fit the session's current state."""


class TurnStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass
class ConversationTurn:
    request_text: str
    proposal: EditProposal
    status: TurnStatus = TurnStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request": self.request_text,
            "proposal": self.proposal.to_dict(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        proposal = proposal_from_dict(data.get("proposal")) or Clarification(explanation="")
        try:
            status = TurnStatus(data.get("status"))
        except ValueError:
            status = TurnStatus.PENDING
        return cls(request_text=str(data.get("request") or ""), proposal=proposal, status=status)


@dataclass(frozen=True)
class RevisionTicket:
    """Everything a single in-flight request needs once its response arrives."""

    sequence: int
    request_text: str
    document_text: str
    paragraphs: Tuple[Paragraph, ...]
    prompt: RevisionPrompt


@dataclass
class RevisionSession:
    document: str
    generator: Optional[GenerationService] = None
    options: GenerationOptions = DEFAULT_REVISION_OPTIONS
    turns: List[ConversationTurn] = field(default_factory=list)
    pending_proposal: Optional[EditProposal] = None
    request_sequence: int = 0

    @property
    def state(self) -> str:
        return "proposal_pending" if self.pending_proposal is not None else "idle"

    def paragraphs(self) -> List[Paragraph]:
        return compute_paragraphs(self.document)

    def submit_request(
        self,
        user_text: str,
        selections: Optional[Iterable[str]] = None,
        selected_paragraphs: Optional[Iterable[int]] = None,
    ) -> Optional[EditProposal]:
        ticket = self.begin_request(user_text, selections, selected_paragraphs)
        try:
            raw_text = self.generate(ticket)
        except GenerationServiceError as exc:
            LOGGER.warning("Generation failed for revision request %s: %s", ticket.sequence, exc)
            return self.fail_request(ticket, exc)
        except Exception as exc:  # pragma: no cover - defensive logging for integrations
            LOGGER.exception("Unexpected error from the generation service")
            return self.fail_request(ticket, exc)
        return self.complete_request(ticket, raw_text)

    def begin_request(
        self,
        user_text: str,
        selections: Optional[Iterable[str]] = None,
        selected_paragraphs: Optional[Iterable[int]] = None,
    ) -> RevisionTicket:
        request_text = (user_text or "").strip()
        if not request_text:
            raise RevisionStateError("Describe the change you would like to make.")

        self._close_pending(TurnStatus.SUPERSEDED)
        self.request_sequence += 1

        paragraphs = compute_paragraphs(self.document)
        prompt = build_prompt(
            self.document,
            request_text,
            selected_snippets=list(selections or ()),
            selected_paragraphs=select_paragraphs(paragraphs, selected_paragraphs or ()),
            conversation_history=history_for(self.turns),
        )
        return RevisionTicket(
            sequence=self.request_sequence,
            request_text=request_text,
            document_text=self.document,
            paragraphs=tuple(paragraphs),
            prompt=prompt,
        )

    def generate(self, ticket: RevisionTicket) -> str:
        if self.generator is None:
            raise GenerationAuthError("No text generation backend is configured.")
        return self.generator.generate(
            ticket.prompt.system_instruction,
            ticket.prompt.messages,
            self.options,
        )

    def complete_request(self, ticket: RevisionTicket, raw_text: Optional[str]) -> Optional[EditProposal]:
        if self.is_stale(ticket):
            return None

        try:
            raw = extract_proposal(raw_text)
        except ProposalExtractionError as exc:
            LOGGER.warning("Failed to parse revision response: %s Raw text: %r", exc.reason, exc.raw_text)
            proposal: EditProposal = clarification_for_unparseable(raw_text)
        else:
            proposal = normalize_proposal(raw, ticket.document_text, ticket.paragraphs)

        return self._record(ticket, proposal, TurnStatus.PENDING)

    def fail_request(self, ticket: RevisionTicket, error: BaseException) -> Optional[EditProposal]:
        if self.is_stale(ticket):
            return None
        message, _status = describe_generation_failure(error)
        return self._record(ticket, Clarification(explanation=message), TurnStatus.FAILED)

    def is_stale(self, ticket: RevisionTicket) -> bool:
        if ticket.sequence != self.request_sequence:
            LOGGER.info(
                "Dropping response for revision request %s; request %s superseded it.",
                ticket.sequence,
                self.request_sequence,
            )
            return True
        if ticket.document_text != self.document:
            LOGGER.info(
                "Dropping response for revision request %s; the document changed while it was running.",
                ticket.sequence,
            )
            return True
        return False

    def accept_current_proposal(self) -> str:
        proposal = self.pending_proposal
        if proposal is None:
            raise RevisionStateError("There is no pending proposal to accept.")
        if not is_applicable(proposal):
            raise RevisionStateError(f"A '{proposal.kind.value}' response has nothing to apply.")

        self.document = apply_edit(self.document, proposal)
        self._close_pending(TurnStatus.ACCEPTED)
        return self.document

    def reject_current_proposal(self) -> None:
        self._close_pending(TurnStatus.REJECTED)

    def reset_conversation(self) -> None:
        self.turns = []

    def replace_document(self, document_text: str) -> None:
        """Swap in text edited outside the conversation; a pending proposal no longer fits it."""

        self._close_pending(TurnStatus.SUPERSEDED)
        self.document = document_text or ""

    def to_state(self) -> Dict[str, Any]:
        return {
            "document": self.document,
            "request_sequence": self.request_sequence,
            "pending_proposal": self.pending_proposal.to_dict() if self.pending_proposal else None,
            "turns": [turn.to_dict() for turn in self.turns],
        }

    @classmethod
    def from_state(
        cls,
        state: Dict[str, Any],
        generator: Optional[GenerationService] = None,
        options: Optional[GenerationOptions] = None,
    ) -> "RevisionSession":
        return cls(
            document=str(state.get("document") or ""),
            generator=generator,
            options=options or DEFAULT_REVISION_OPTIONS,
            turns=[ConversationTurn.from_dict(item) for item in state.get("turns") or ()],
            pending_proposal=proposal_from_dict(state.get("pending_proposal")),
            request_sequence=int(state.get("request_sequence") or 0),
        )

    def _record(self, ticket: RevisionTicket, proposal: EditProposal, status: TurnStatus) -> EditProposal:
        self.turns.append(ConversationTurn(request_text=ticket.request_text, proposal=proposal, status=status))
        self.pending_proposal = proposal
        return proposal

    def _close_pending(self, status: TurnStatus) -> None:
        if self.pending_proposal is None:
            return
        self.pending_proposal = None
        if self.turns and self.turns[-1].status is TurnStatus.PENDING:
            self.turns[-1].status = status


def history_for(turns: Sequence[ConversationTurn]) -> List[HistoryEntry]:
    return [HistoryEntry(request_text=turn.request_text, proposal=turn.proposal) for turn in turns]
