import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge.services.paragraphs import compute_paragraphs
from storyforge.services.proposal_validation import normalize_proposal
from storyforge.services.proposals import (
    Clarification,
    DeleteEdit,
    InsertEdit,
    NoChange,
    RawProposal,
    ReplaceAllEdit,
    ReplaceEdit,
)

DOCUMENT = "A.\nB.\nC."


@pytest.fixture()
def paragraphs():
    return compute_paragraphs(DOCUMENT)


def _raw(**fields):
    fields.setdefault("explanation", "Because.")
    return RawProposal.from_payload(fields)


def test_paragraph_target_spans_selected_paragraphs(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", text="X", contextParagraphIndices=[0, 2]), DOCUMENT, paragraphs
    )

    assert proposal == ReplaceEdit(explanation="Because.", start_index=0, end_index=8, text="X")


def test_paragraph_target_takes_priority_over_offsets(paragraphs):
    proposal = normalize_proposal(
        _raw(type="delete", startIndex=0, endIndex=1, contextParagraphIndices=[1]),
        DOCUMENT,
        paragraphs,
    )

    assert proposal == DeleteEdit(explanation="Because.", start_index=3, end_index=5)


def test_paragraph_insert_lands_at_first_targeted_paragraph(paragraphs):
    proposal = normalize_proposal(
        _raw(type="insert", text="New.\n", contextParagraphIndices=[2, 1]), DOCUMENT, paragraphs
    )

    assert proposal == InsertEdit(explanation="Because.", start_index=3, text="New.\n")


def test_partially_invalid_targets_keep_valid_ones_with_note(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", text="Y", contextParagraphIndices=[1, 5, "x"]), DOCUMENT, paragraphs
    )

    assert isinstance(proposal, ReplaceEdit)
    assert (proposal.start_index, proposal.end_index) == (3, 5)
    assert proposal.explanation == (
        "(Note: Some requested paragraph indices were invalid and ignored.) Because."
    )


def test_repeated_targets_are_not_reported_as_invalid(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", text="Y", contextParagraphIndices=[1, 1]), DOCUMENT, paragraphs
    )

    assert proposal == ReplaceEdit(explanation="Because.", start_index=3, end_index=5, text="Y")


def test_all_invalid_targets_become_clarification(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", text="Y", contextParagraphIndices=[7, -1]), DOCUMENT, paragraphs
    )

    assert isinstance(proposal, Clarification)
    assert "don't exist or were invalid ([7, -1])" in proposal.explanation
    assert proposal.explanation.endswith("Original explanation: Because.")


def test_paragraph_target_without_text_is_rejected(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", contextParagraphIndices=[0]), DOCUMENT, paragraphs
    )

    assert isinstance(proposal, Clarification)
    assert "missing the replacement text" in proposal.explanation


def test_offset_replace_is_accepted_inside_bounds(paragraphs):
    proposal = normalize_proposal(
        _raw(type="replace", text="Z", startIndex=3, endIndex=5.0), DOCUMENT, paragraphs
    )

    assert proposal == ReplaceEdit(explanation="Because.", start_index=3, end_index=5, text="Z")


def test_insert_at_document_end_is_allowed(paragraphs):
    proposal = normalize_proposal(
        _raw(type="insert", text="\nD.", startIndex=len(DOCUMENT)), DOCUMENT, paragraphs
    )

    assert proposal == InsertEdit(explanation="Because.", start_index=8, text="\nD.")


@pytest.mark.parametrize(
    "fields, fragment",
    [
        ({"type": "replace", "text": "Z", "startIndex": 0, "endIndex": 20}, "outside the text"),
        ({"type": "delete", "startIndex": -1, "endIndex": 2}, "outside the text"),
        ({"type": "replace", "text": "Z", "startIndex": 5, "endIndex": 2}, "start index 5 > end index 2"),
        ({"type": "delete", "startIndex": 1}, "valid end index"),
        ({"type": "insert", "text": "Z"}, "valid start index"),
        ({"type": "insert", "text": "Z", "startIndex": "3"}, "valid start index"),
        ({"type": "insert", "startIndex": 3}, "failed to provide the text"),
        ({"type": "rewrite", "text": "Z"}, "unsupported edit type 'rewrite'"),
    ],
)
def test_malformed_proposals_become_clarifications(paragraphs, fields, fragment):
    proposal = normalize_proposal(_raw(**fields), DOCUMENT, paragraphs)

    assert isinstance(proposal, Clarification)
    assert proposal.explanation.startswith("Error: ")
    assert fragment in proposal.explanation


def test_replace_all_needs_text(paragraphs):
    assert normalize_proposal(_raw(type="replace_all", text="Fresh."), DOCUMENT, paragraphs) == ReplaceAllEdit(
        explanation="Because.", text="Fresh."
    )
    assert isinstance(normalize_proposal(_raw(type="replace_all"), DOCUMENT, paragraphs), Clarification)


def test_clarification_and_none_pass_through(paragraphs):
    assert normalize_proposal(_raw(type="clarification"), DOCUMENT, paragraphs) == Clarification(
        explanation="Because."
    )
    assert normalize_proposal(_raw(type="none"), DOCUMENT, paragraphs) == NoChange(explanation="Because.")
