import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge.services.proposal_extraction import (
    ProposalExtractionError,
    clarification_for_unparseable,
    extract_proposal,
    iter_json_candidates,
)


def test_extracts_json_from_fenced_block():
    raw = (
        "Here is my suggestion:\n"
        "```json\n"
        '{"type": "replace", "explanation": "Tighter wording.", "text": "Hi", '
        '"startIndex": 0, "endIndex": 5}\n'
        "```\n"
        "Let me know!"
    )

    proposal = extract_proposal(raw)

    assert proposal.kind == "replace"
    assert proposal.explanation == "Tighter wording."
    assert proposal.text == "Hi"
    assert proposal.start_index == 0
    assert proposal.end_index == 5


def test_extracts_json_from_untagged_fence():
    raw = '```\n{"type": "none", "explanation": "Already reads well."}\n```'

    assert extract_proposal(raw).kind == "none"


def test_falls_back_to_outermost_braces():
    raw = 'Sure! {"type": "insert", "explanation": "Adds a beat.", "text": " {pause}", "startIndex": 3} Done.'

    proposal = extract_proposal(raw)

    assert proposal.kind == "insert"
    assert proposal.text == " {pause}"


def test_plain_json_is_accepted():
    payload = {
        "type": "Replace_All",
        "explanation": "Full rewrite.",
        "text": "New story.",
        "contextParagraphIndices": [0, 1],
    }

    proposal = extract_proposal(json.dumps(payload))

    assert proposal.kind == "replace_all"
    assert proposal.target_paragraphs == [0, 1]
    assert proposal.payload == payload


def test_unparseable_fence_falls_back_to_braces():
    raw = '```json\nnot valid\n``` but later {"type": "clarification", "explanation": "Which scene?"}'

    with pytest.raises(ProposalExtractionError):
        extract_proposal('```json\n{broken\n```')

    assert extract_proposal(raw).kind == "clarification"


@pytest.mark.parametrize(
    "raw, reason",
    [
        ("", "empty"),
        ("   \n", "empty"),
        ("no json here", "JSON object"),
        ("[1, 2, 3]", "JSON object"),
        ('{"explanation": "Missing the type."}', "'type'"),
        ('{"type": "", "explanation": "Blank type."}', "'type'"),
        ('{"type": "replace"}', "'explanation'"),
        ('{"type": "replace", "explanation": 42}', "'explanation'"),
    ],
)
def test_extraction_failures_raise_with_reason(raw, reason):
    with pytest.raises(ProposalExtractionError) as excinfo:
        extract_proposal(raw)

    assert reason in excinfo.value.reason
    assert excinfo.value.raw_text == raw


def test_clarification_for_unparseable_embeds_raw_text():
    clarification = clarification_for_unparseable("no json here")

    assert clarification.explanation.startswith("I couldn't structure the response correctly.")
    assert "no json here" in clarification.explanation


def test_iter_json_candidates_yields_each_strategy():
    raw = '```json\n[1, 2]\n```\n{"a": 1}'

    assert list(iter_json_candidates(raw)) == [[1, 2], {"a": 1}]


def test_fenced_none_proposal_after_prose():
    proposal = extract_proposal('Here you go:\n```json\n{"type":"none","explanation":"ok"}\n```')

    assert (proposal.kind, proposal.explanation) == ("none", "ok")
