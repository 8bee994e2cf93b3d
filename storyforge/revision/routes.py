from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required

from ..extensions import db
from ..models import RevisionSessionRecord, StoryGeneration
from ..services.edit_applier import EditApplicationError
from ..services.generation import (
    GenerationOptions,
    GenerationServiceError,
    describe_generation_failure,
    get_generation_service,
)
from ..services.prompt_config import PromptConfigError, extract_generation_options, load_prompt_entry
from ..services.revision_session import DEFAULT_REVISION_OPTIONS, RevisionSession, RevisionStateError
from . import bp
from .store import load_session, store_session

PROMPT_KEY = "revision"


def _revision_options() -> GenerationOptions:
    try:
        entry = load_prompt_entry(PROMPT_KEY)
    except PromptConfigError as exc:
        current_app.logger.warning("Using default revision parameters: %s", exc)
        return DEFAULT_REVISION_OPTIONS
    return extract_generation_options(entry.get("parameters"), base=DEFAULT_REVISION_OPTIONS)


def _owned_record(session_id: int) -> RevisionSessionRecord:
    record = RevisionSessionRecord.query.get_or_404(session_id)
    if record.owner != current_user:
        abort(403)
    return record


def _session_payload(record: RevisionSessionRecord, session: RevisionSession) -> Dict[str, Any]:
    return {
        "id": record.id,
        "generation_id": record.generation_id,
        "document": session.document,
        "state": session.state,
        "request_sequence": session.request_sequence,
        "pending_proposal": session.pending_proposal.to_dict() if session.pending_proposal else None,
        "paragraphs": [paragraph.to_dict() for paragraph in session.paragraphs()],
        "turns": [turn.to_dict() for turn in session.turns],
    }


def _source_changed(record: RevisionSessionRecord) -> bool:
    return (record.generation.generated_story or "") != (record.source_text or "")


def _string_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return None
    return value


@bp.route("", methods=["POST"])
@login_required
def open_session():
    payload = request.get_json(silent=True) or {}
    try:
        generation_id = int(payload.get("generation_id"))
    except (TypeError, ValueError):
        return jsonify({"error": "Select a valid generation to revise."}), 400

    generation = StoryGeneration.query.get_or_404(generation_id)
    if generation.owner != current_user:
        abort(403)

    record = generation.revision_session
    created = record is None
    if created:
        record = RevisionSessionRecord(
            owner=current_user,
            generation=generation,
            document=generation.generated_story or "",
            source_text=generation.generated_story or "",
        )
        db.session.add(record)
        db.session.commit()

    session = load_session(record)
    if not created and _source_changed(record):
        if session.pending_proposal is None:
            session.replace_document(generation.generated_story or "")
            store_session(record, session)
            record.source_text = generation.generated_story or ""
            db.session.commit()
            current_app.logger.info("Reloaded session %s from edited generation %s", record.id, generation.id)
        else:
            current_app.logger.info(
                "Generation %s changed while session %s has a pending proposal", generation.id, record.id
            )

    return jsonify({"session": _session_payload(record, session)}), 201 if created else 200


@bp.route("/<int:session_id>", methods=["GET"])
@login_required
def get_session(session_id: int):
    record = _owned_record(session_id)
    return jsonify({"session": _session_payload(record, load_session(record))})


@bp.route("/<int:session_id>/requests", methods=["POST"])
@login_required
def submit_request(session_id: int):
    record = _owned_record(session_id)
    payload = request.get_json(silent=True) or {}

    request_text = payload.get("request")
    if not isinstance(request_text, str):
        return jsonify({"error": "Describe the change you would like to make."}), 400
    selections = _string_list(payload.get("selections"))
    if selections is None:
        return jsonify({"error": "Selections must be a list of text snippets."}), 400
    selected_paragraphs = payload.get("selected_paragraphs") or []
    if not isinstance(selected_paragraphs, list):
        return jsonify({"error": "Selected paragraphs must be a list of paragraph numbers."}), 400

    generator = get_generation_service()
    options = _revision_options()
    session = load_session(record, generator, options)
    try:
        ticket = session.begin_request(request_text, selections, selected_paragraphs)
    except RevisionStateError as exc:
        return jsonify({"error": str(exc)}), 400

    # Publish the new sequence before the slow call so older requests see they lost.
    store_session(record, session)
    db.session.commit()

    raw_text: Optional[str] = None
    failure: Optional[BaseException] = None
    try:
        raw_text = session.generate(ticket)
    except GenerationServiceError as exc:
        current_app.logger.warning("Revision request %s failed: %s", ticket.sequence, exc)
        failure = exc
    except Exception as exc:  # pragma: no cover - defensive logging for external integrations
        current_app.logger.exception("Unexpected error while generating a revision proposal")
        failure = exc

    db.session.refresh(record)
    session = load_session(record, generator, options)
    status = 200
    if failure is not None:
        proposal = session.fail_request(ticket, failure)
        _message, status = describe_generation_failure(failure)
    else:
        proposal = session.complete_request(ticket, raw_text)

    if proposal is None:
        return jsonify({"superseded": True, "request_sequence": ticket.sequence})

    store_session(record, session)
    db.session.commit()
    return jsonify({"proposal": proposal.to_dict(), "session": _session_payload(record, session)}), status


@bp.route("/<int:session_id>/accept", methods=["POST"])
@login_required
def accept_proposal(session_id: int):
    record = _owned_record(session_id)
    session = load_session(record)
    try:
        session.accept_current_proposal()
    except (RevisionStateError, EditApplicationError) as exc:
        return jsonify({"error": str(exc)}), 409

    store_session(record, session)
    db.session.commit()
    return jsonify({"session": _session_payload(record, session)})


@bp.route("/<int:session_id>/reject", methods=["POST"])
@login_required
def reject_proposal(session_id: int):
    record = _owned_record(session_id)
    session = load_session(record)
    session.reject_current_proposal()
    store_session(record, session)
    db.session.commit()
    return jsonify({"session": _session_payload(record, session)})


@bp.route("/<int:session_id>/reset", methods=["POST"])
@login_required
def reset_conversation(session_id: int):
    record = _owned_record(session_id)
    session = load_session(record)
    session.reset_conversation()
    store_session(record, session)
    db.session.commit()
    return jsonify({"session": _session_payload(record, session)})


@bp.route("/<int:session_id>/document", methods=["POST"])
@login_required
def replace_document(session_id: int):
    record = _owned_record(session_id)
    payload = request.get_json(silent=True) or {}
    document = payload.get("document")
    if not isinstance(document, str):
        return jsonify({"error": "The document must be text."}), 400

    session = load_session(record)
    session.replace_document(document)
    store_session(record, session)
    db.session.commit()
    return jsonify({"session": _session_payload(record, session)})


@bp.route("/<int:session_id>/save", methods=["POST"])
@login_required
def save_document(session_id: int):
    record = _owned_record(session_id)
    generation = record.generation
    if _source_changed(record):
        return jsonify({"error": "The story was changed elsewhere. Reopen the revision session before saving."}), 409
    generation.generated_story = record.document
    record.source_text = record.document
    db.session.commit()
    current_app.logger.info("Saved revised document of session %s to generation %s", record.id, generation.id)
    return jsonify({"generation": generation.to_dict()})
