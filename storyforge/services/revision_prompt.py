"""Prompt assembly for revision requests.

This is the only place that knows how a revision request is worded for the
generation service; the matching response schema lives in the
``revision_assistant`` system prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..system_prompts import get_system_instruction
from .generation import MODEL_ROLE, USER_ROLE, ChatMessage
from .paragraphs import Paragraph
from .proposals import EditProposal

SYSTEM_PROMPT_KEY = "revision_assistant"

STORY_CONTEXT_START = "--- START STORY CONTEXT ---"
STORY_CONTEXT_END = "--- END STORY CONTEXT ---"


@dataclass(frozen=True)
class HistoryEntry:
    """One earlier exchange replayed to the model."""

    request_text: str
    proposal: Optional[EditProposal]


@dataclass(frozen=True)
class RevisionPrompt:
    system_instruction: str
    user_message: str
    history: List[ChatMessage]

    @property
    def messages(self) -> List[ChatMessage]:
        return [*self.history, ChatMessage(role=USER_ROLE, text=self.user_message)]


def build_prompt(
    document_text: str,
    user_request: str,
    selected_snippets: Optional[Iterable[str]] = None,
    selected_paragraphs: Optional[Sequence[Paragraph]] = None,
    conversation_history: Optional[Iterable[HistoryEntry]] = None,
) -> RevisionPrompt:
    return RevisionPrompt(
        system_instruction=get_system_instruction(SYSTEM_PROMPT_KEY),
        user_message=build_user_message(
            document_text,
            user_request,
            selected_snippets=selected_snippets,
            selected_paragraphs=selected_paragraphs,
        ),
        history=build_history(conversation_history or ()),
    )


def build_user_message(
    document_text: str,
    user_request: str,
    *,
    selected_snippets: Optional[Iterable[str]] = None,
    selected_paragraphs: Optional[Sequence[Paragraph]] = None,
) -> str:
    message = (user_request or "").strip()

    paragraphs = list(selected_paragraphs or ())
    if paragraphs:
        lead = "paragraph was" if len(paragraphs) == 1 else "paragraphs were"
        rendered = "\n".join(
            f'[Paragraph {paragraph.index}] "{_escape_quotes(paragraph.text)}"'
            for paragraph in paragraphs
        )
        message += (
            f"\n\nThe following {lead} specifically selected for context "
            f"(marked [Paragraph N]):\n{rendered}"
        )

    snippets = [snippet for snippet in (selected_snippets or ()) if snippet and snippet.strip()]
    if snippets:
        rendered = "\n".join(f'- "{_escape_quotes(snippet)}"' for snippet in snippets)
        message += (
            "\n\nThe user also highlighted the following text selection(s) for general "
            f"context:\n{rendered}"
        )

    message += (
        "\n\nFull Story Context for reference:\n"
        f"{STORY_CONTEXT_START}\n{document_text or ''}\n{STORY_CONTEXT_END}"
    )
    return message


def build_history(entries: Iterable[HistoryEntry]) -> List[ChatMessage]:
    """Replay earlier turns as alternating user/model messages.

    The model side is the explanation of the proposal it produced; turns
    that never got a proposal are skipped so the roles keep alternating.
    """

    messages: List[ChatMessage] = []
    for entry in entries:
        if entry.proposal is None:
            continue
        request_text = (entry.request_text or "").strip()
        if not request_text:
            continue
        messages.append(ChatMessage(role=USER_ROLE, text=request_text))
        messages.append(ChatMessage(role=MODEL_ROLE, text=entry.proposal.explanation))
    return messages


def _escape_quotes(value: str) -> str:
    return value.replace('"', '\\"')
