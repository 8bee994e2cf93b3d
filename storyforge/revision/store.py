"""Map :class:`RevisionSession` state onto its database rows."""

from __future__ import annotations

import json
from typing import Optional

from ..models import RevisionSessionRecord, RevisionTurnRecord
from ..services.generation import GenerationOptions, GenerationService
from ..services.revision_session import RevisionSession


def load_session(
    record: RevisionSessionRecord,
    generator: Optional[GenerationService] = None,
    options: Optional[GenerationOptions] = None,
) -> RevisionSession:
    state = {
        "document": record.document or "",
        "request_sequence": record.request_sequence or 0,
        "pending_proposal": json.loads(record.pending_proposal) if record.pending_proposal else None,
        "turns": [
            {
                "request": turn.request_text,
                "proposal": json.loads(turn.proposal),
                "status": turn.status,
            }
            for turn in record.turns
        ],
    }
    return RevisionSession.from_state(state, generator=generator, options=options)


def store_session(record: RevisionSessionRecord, session: RevisionSession) -> None:
    """Write ``session`` back onto ``record``; the caller commits."""

    state = session.to_state()
    record.document = state["document"]
    record.request_sequence = state["request_sequence"]
    pending = state["pending_proposal"]
    record.pending_proposal = json.dumps(pending) if pending is not None else None

    turns = state["turns"]
    existing = list(record.turns)
    for position, turn in enumerate(turns):
        if position < len(existing):
            row = existing[position]
        else:
            row = RevisionTurnRecord(position=position)
            record.turns.append(row)
        row.request_text = turn["request"]
        row.proposal = json.dumps(turn["proposal"])
        row.status = turn["status"]
    for row in existing[len(turns):]:
        record.turns.remove(row)
