import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge.services.generation import (
    MODEL_ROLE,
    GenerationSafetyError,
    GenerationTransportError,
)
from storyforge.services.proposals import Clarification, NoChange, ReplaceEdit
from storyforge.services.revision_session import (
    DEFAULT_REVISION_OPTIONS,
    RevisionSession,
    RevisionStateError,
    TurnStatus,
)

DOCUMENT = "The cat sat.\nThe dog ran."


class DummyGenerator:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def generate(self, system_instruction, messages, options):
        self.calls.append((system_instruction, list(messages), options))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _replace(start, end, text, explanation="Better word."):
    return json.dumps(
        {
            "type": "replace",
            "explanation": explanation,
            "text": text,
            "startIndex": start,
            "endIndex": end,
        }
    )


def test_submit_and_accept_updates_document():
    generator = DummyGenerator(_replace(4, 7, "fox"))
    session = RevisionSession(document=DOCUMENT, generator=generator)

    proposal = session.submit_request("Swap the animal.")

    assert proposal == ReplaceEdit(explanation="Better word.", start_index=4, end_index=7, text="fox")
    assert session.state == "proposal_pending"
    assert session.document == DOCUMENT
    assert generator.calls[0][2] is DEFAULT_REVISION_OPTIONS

    assert session.accept_current_proposal() == "The fox sat.\nThe dog ran."
    assert session.state == "idle"
    assert session.turns[-1].status is TurnStatus.ACCEPTED


def test_reject_keeps_document_and_records_status():
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator(_replace(0, 3, "A")))
    session.submit_request("Change the article.")

    session.reject_current_proposal()

    assert session.document == DOCUMENT
    assert session.pending_proposal is None
    assert session.turns[-1].status is TurnStatus.REJECTED


def test_new_request_supersedes_pending_proposal():
    generator = DummyGenerator(_replace(0, 3, "A"), '{"type": "none", "explanation": "Fine as is."}')
    session = RevisionSession(document=DOCUMENT, generator=generator)
    session.submit_request("First.")

    proposal = session.submit_request("Second.")

    assert proposal == NoChange(explanation="Fine as is.")
    assert [turn.status for turn in session.turns] == [TurnStatus.SUPERSEDED, TurnStatus.PENDING]


def test_history_is_replayed_on_follow_up_requests():
    generator = DummyGenerator(_replace(0, 3, "A", "Use an indefinite article."), _replace(0, 1, "One"))
    session = RevisionSession(document=DOCUMENT, generator=generator)
    session.submit_request("Change the article.")
    session.reject_current_proposal()

    session.submit_request("Try a number instead.")

    messages = generator.calls[1][1]
    assert [message.text for message in messages[:2]] == ["Change the article.", "Use an indefinite article."]
    assert messages[1].role == MODEL_ROLE
    assert messages[-1].text.startswith("Try a number instead.")


def test_reset_conversation_keeps_document():
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator(_replace(0, 3, "A")))
    session.submit_request("Change it.")
    session.accept_current_proposal()

    session.reset_conversation()

    assert session.turns == []
    assert session.document == "A cat sat.\nThe dog ran."


def test_older_response_is_dropped_after_newer_request():
    session = RevisionSession(document=DOCUMENT)
    first = session.begin_request("First request.")
    second = session.begin_request("Second request.")

    assert session.complete_request(first, _replace(0, 3, "A")) is None
    assert session.turns == []
    assert session.pending_proposal is None

    proposal = session.complete_request(second, _replace(4, 7, "owl"))
    assert isinstance(proposal, ReplaceEdit)
    assert len(session.turns) == 1
    assert session.turns[0].request_text == "Second request."


def test_response_is_dropped_when_document_changed():
    session = RevisionSession(document=DOCUMENT)
    ticket = session.begin_request("Tighten this.")

    session.replace_document("Completely different text.")

    assert session.complete_request(ticket, _replace(0, 3, "A")) is None
    assert session.fail_request(ticket, GenerationTransportError("down")) is None
    assert session.document == "Completely different text."


def test_proposals_are_validated_against_request_snapshot():
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator(_replace(0, 500, "x")))

    proposal = session.submit_request("Rewrite.")

    assert isinstance(proposal, Clarification)
    assert "outside the text" in proposal.explanation
    with pytest.raises(RevisionStateError):
        session.accept_current_proposal()


def test_unparseable_response_becomes_clarification():
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator("Sure, make it darker."))

    proposal = session.submit_request("Darker tone.")

    assert isinstance(proposal, Clarification)
    assert proposal.explanation.endswith("Here's the raw suggestion: Sure, make it darker.")
    assert session.turns[-1].status is TurnStatus.PENDING


@pytest.mark.parametrize(
    "error, message",
    [
        (GenerationSafetyError("blocked"), "blocked due to safety settings"),
        (GenerationTransportError("timeout"), "could not be reached"),
    ],
)
def test_generation_failures_become_failed_turns(error, message):
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator(error))

    proposal = session.submit_request("Anything.")

    assert isinstance(proposal, Clarification)
    assert message in proposal.explanation
    assert session.turns[-1].status is TurnStatus.FAILED
    assert session.document == DOCUMENT


def test_missing_backend_reports_configuration_issue():
    session = RevisionSession(document=DOCUMENT)

    proposal = session.submit_request("Anything.")

    assert "server configuration" in proposal.explanation


def test_blank_request_is_refused():
    session = RevisionSession(document=DOCUMENT)

    with pytest.raises(RevisionStateError):
        session.begin_request("   ")
    assert session.request_sequence == 0


def test_accept_without_pending_proposal_raises():
    with pytest.raises(RevisionStateError):
        RevisionSession(document=DOCUMENT).accept_current_proposal()


def test_state_round_trips_through_dict():
    session = RevisionSession(document=DOCUMENT, generator=DummyGenerator(_replace(4, 7, "fox")))
    session.submit_request("Swap the animal.", selections=["cat"], selected_paragraphs=[0])

    restored = RevisionSession.from_state(json.loads(json.dumps(session.to_state())))

    assert restored.document == session.document
    assert restored.request_sequence == 1
    assert restored.pending_proposal == session.pending_proposal
    assert restored.turns == session.turns
    assert restored.accept_current_proposal() == "The fox sat.\nThe dog ran."


@pytest.mark.parametrize("decision, expected", [("accept", "Hi world"), ("reject", "Hello world")])
def test_hello_world_accept_and_reject(decision, expected):
    session = RevisionSession(document="Hello world", generator=DummyGenerator(_replace(0, 5, "Hi")))
    session.submit_request("Shorter greeting.")

    if decision == "accept":
        session.accept_current_proposal()
    else:
        session.reject_current_proposal()

    assert session.document == expected
    assert session.pending_proposal is None
