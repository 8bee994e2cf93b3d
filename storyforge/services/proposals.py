"""Edit proposal types shared by the revision pipeline.

``RawProposal`` mirrors whatever the model sent back: every field is optional
and nothing has been checked yet. ``normalize_proposal`` turns it into one of
the closed proposal classes below, which are the only values the edit
applier accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union


class EditKind(str, Enum):
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    REPLACE_ALL = "replace_all"
    CLARIFICATION = "clarification"
    NONE = "none"


POSITIONAL_KINDS = frozenset({EditKind.REPLACE, EditKind.INSERT, EditKind.DELETE})


@dataclass
class RawProposal:
    kind: str
    explanation: str
    text: Any = None
    start_index: Any = None
    end_index: Any = None
    target_paragraphs: Any = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RawProposal":
        kind_raw = payload.get("type")
        if kind_raw is None:
            kind_raw = payload.get("kind")
        return cls(
            kind=str(kind_raw).strip().lower() if kind_raw is not None else "",
            explanation=payload.get("explanation") or "",
            text=payload.get("text"),
            start_index=payload.get("startIndex"),
            end_index=payload.get("endIndex"),
            target_paragraphs=payload.get("contextParagraphIndices"),
            payload=dict(payload),
        )


@dataclass(frozen=True)
class ReplaceEdit:
    kind: ClassVar[EditKind] = EditKind.REPLACE

    explanation: str
    start_index: int
    end_index: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "explanation": self.explanation,
            "text": self.text,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }


@dataclass(frozen=True)
class InsertEdit:
    kind: ClassVar[EditKind] = EditKind.INSERT

    explanation: str
    start_index: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "explanation": self.explanation,
            "text": self.text,
            "startIndex": self.start_index,
        }


@dataclass(frozen=True)
class DeleteEdit:
    kind: ClassVar[EditKind] = EditKind.DELETE

    explanation: str
    start_index: int
    end_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "explanation": self.explanation,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }


@dataclass(frozen=True)
class ReplaceAllEdit:
    kind: ClassVar[EditKind] = EditKind.REPLACE_ALL

    explanation: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "explanation": self.explanation, "text": self.text}


@dataclass(frozen=True)
class Clarification:
    kind: ClassVar[EditKind] = EditKind.CLARIFICATION

    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "explanation": self.explanation}


@dataclass(frozen=True)
class NoChange:
    kind: ClassVar[EditKind] = EditKind.NONE

    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "explanation": self.explanation}


EditProposal = Union[ReplaceEdit, InsertEdit, DeleteEdit, ReplaceAllEdit, Clarification, NoChange]


def is_applicable(proposal: Optional[EditProposal]) -> bool:
    """Return True when accepting ``proposal`` would change the document."""

    return isinstance(proposal, (ReplaceEdit, InsertEdit, DeleteEdit, ReplaceAllEdit))


def proposal_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[EditProposal]:
    """Rebuild a normalized proposal from its ``to_dict`` form.

    Only used for proposals this application stored itself, so the shape is
    trusted; anything unrecognised comes back as a clarification.
    """

    if not data:
        return None

    kind = data.get("type")
    explanation = str(data.get("explanation") or "")
    if kind == EditKind.REPLACE.value:
        return ReplaceEdit(
            explanation=explanation,
            start_index=int(data["startIndex"]),
            end_index=int(data["endIndex"]),
            text=str(data["text"]),
        )
    if kind == EditKind.INSERT.value:
        return InsertEdit(
            explanation=explanation,
            start_index=int(data["startIndex"]),
            text=str(data["text"]),
        )
    if kind == EditKind.DELETE.value:
        return DeleteEdit(
            explanation=explanation,
            start_index=int(data["startIndex"]),
            end_index=int(data["endIndex"]),
        )
    if kind == EditKind.REPLACE_ALL.value:
        return ReplaceAllEdit(explanation=explanation, text=str(data["text"]))
    if kind == EditKind.NONE.value:
        return NoChange(explanation=explanation)
    return Clarification(explanation=explanation)
