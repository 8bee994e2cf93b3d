import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge.services.edit_applier import EditApplicationError, apply_edit
from storyforge.services.proposals import (
    Clarification,
    DeleteEdit,
    InsertEdit,
    NoChange,
    ReplaceAllEdit,
    ReplaceEdit,
)

DOCUMENT = "Hello world"


def test_replace_swaps_the_range():
    edit = ReplaceEdit(explanation="", start_index=6, end_index=11, text="there")

    assert apply_edit(DOCUMENT, edit) == "Hello there"


def test_insert_adds_text_at_offset():
    assert apply_edit(DOCUMENT, InsertEdit(explanation="", start_index=5, text=",")) == "Hello, world"
    assert apply_edit(DOCUMENT, InsertEdit(explanation="", start_index=11, text="!")) == "Hello world!"


def test_delete_removes_the_range():
    assert apply_edit(DOCUMENT, DeleteEdit(explanation="", start_index=5, end_index=11)) == "Hello"


def test_replace_all_is_idempotent():
    edit = ReplaceAllEdit(explanation="", text="Goodbye")

    once = apply_edit(DOCUMENT, edit)

    assert once == "Goodbye"
    assert apply_edit(once, edit) == once


@pytest.mark.parametrize("proposal", [Clarification(explanation="?"), NoChange(explanation="fine")])
def test_non_edits_leave_document_unchanged(proposal):
    assert apply_edit(DOCUMENT, proposal) == DOCUMENT


@pytest.mark.parametrize(
    "proposal",
    [
        ReplaceEdit(explanation="", start_index=6, end_index=12, text="x"),
        DeleteEdit(explanation="", start_index=4, end_index=2),
        InsertEdit(explanation="", start_index=-1, text="x"),
    ],
)
def test_out_of_range_edits_raise(proposal):
    with pytest.raises(EditApplicationError):
        apply_edit(DOCUMENT, proposal)


def test_unknown_proposal_type_raises():
    with pytest.raises(EditApplicationError):
        apply_edit(DOCUMENT, object())
