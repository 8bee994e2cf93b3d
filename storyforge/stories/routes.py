from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required
from werkzeug.datastructures import MultiDict

from ..extensions import db
from ..models import Chapter, Story, StoryGeneration
from ..services.chapter_planning import ChapterPlanningError, plan_chapters
from ..services.generation import (
    GenerationSafetyError,
    GenerationServiceError,
    describe_generation_failure,
)
from ..services.prompt_config import PromptConfigError
from ..services.story_generation import (
    ChapterContext,
    StoryContext,
    StoryGenerationError,
    StoryPartRequest,
    generate_story_part,
)
from . import bp
from .forms import ChapterForm, ChapterPlanForm, StoryForm

STORY_FIELDS = (
    "title",
    "structure_type",
    "global_synopsis",
    "global_style_note",
    "global_additional_notes",
    "target_length",
)
CHAPTER_FIELDS = ("title", "synopsis", "style_notes", "additional_notes")


def _form_errors(form) -> Dict[str, List[str]]:
    return {name: list(messages) for name, messages in form.errors.items()}


def _formdata(values: Dict[str, Any]) -> MultiDict:
    return MultiDict({key: value for key, value in values.items() if value is not None})


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _as_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _owned_story(story_id: int) -> Story:
    story = Story.query.get_or_404(story_id)
    if story.owner != current_user:
        abort(403)
    return story


def _owned_generation(generation_id: int) -> StoryGeneration:
    generation = StoryGeneration.query.get_or_404(generation_id)
    if generation.owner != current_user:
        abort(403)
    return generation


def _replace_chapters(story: Story, entries: Iterable[Dict[str, Any]]) -> List[Chapter]:
    """Swap the story's chapter list for ``entries``, numbered by position."""

    StoryGeneration.query.filter(
        StoryGeneration.story_id == story.id,
        StoryGeneration.chapter_id.isnot(None),
    ).update({"chapter_id": None}, synchronize_session="fetch")
    for chapter in list(story.chapters):
        db.session.delete(chapter)
    db.session.flush()
    db.session.expire(story, ["chapters"])

    chapters: List[Chapter] = []
    for number, entry in enumerate(entries, start=1):
        chapter = Chapter(
            story=story,
            chapter_number=number,
            title=_clean(entry.get("title")),
            synopsis=_clean(entry.get("synopsis")),
            style_notes=_clean(entry.get("style_notes")),
            additional_notes=_clean(entry.get("additional_notes")),
        )
        db.session.add(chapter)
        chapters.append(chapter)
    return chapters


@bp.route("/stories", methods=["GET"])
@login_required
def list_stories():
    stories = (
        Story.query.filter_by(owner_id=current_user.id)
        .order_by(Story.updated_at.desc())
        .all()
    )
    return jsonify({"stories": [story.to_dict() for story in stories]})


@bp.route("/stories", methods=["POST"])
@login_required
def create_story():
    form = StoryForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid story details.", "fields": _form_errors(form)}), 400

    story = Story(
        owner=current_user,
        title=form.title.data.strip(),
        structure_type=form.structure_type.data,
        global_synopsis=_clean(form.global_synopsis.data),
        global_style_note=_clean(form.global_style_note.data),
        global_additional_notes=_clean(form.global_additional_notes.data),
        target_length=form.target_length.data,
    )
    db.session.add(story)
    db.session.commit()
    return jsonify({"story": story.to_dict()}), 201


@bp.route("/stories/<int:story_id>", methods=["GET"])
@login_required
def get_story(story_id: int):
    story = _owned_story(story_id)
    return jsonify({"story": story.to_dict(include_chapters=True)})


@bp.route("/stories/<int:story_id>", methods=["PATCH"])
@login_required
def update_story(story_id: int):
    story = _owned_story(story_id)
    payload = request.get_json(silent=True) or {}

    merged = {field: getattr(story, field) for field in STORY_FIELDS}
    merged.update({key: payload[key] for key in STORY_FIELDS if key in payload})
    form = StoryForm(formdata=_formdata(merged))
    if not form.validate():
        return jsonify({"error": "Invalid story details.", "fields": _form_errors(form)}), 400

    story.title = form.title.data.strip()
    story.structure_type = form.structure_type.data
    story.global_synopsis = _clean(form.global_synopsis.data)
    story.global_style_note = _clean(form.global_style_note.data)
    story.global_additional_notes = _clean(form.global_additional_notes.data)
    story.target_length = form.target_length.data
    db.session.commit()
    return jsonify({"story": story.to_dict()})


@bp.route("/stories/<int:story_id>", methods=["DELETE"])
@login_required
def delete_story(story_id: int):
    story = _owned_story(story_id)
    db.session.delete(story)
    db.session.commit()
    return jsonify({"deleted": story_id})


@bp.route("/stories/<int:story_id>/chapters", methods=["GET"])
@login_required
def list_chapters(story_id: int):
    story = _owned_story(story_id)
    return jsonify({"chapters": [chapter.to_dict() for chapter in story.chapters]})


@bp.route("/stories/<int:story_id>/chapters", methods=["POST"])
@login_required
def save_chapters(story_id: int):
    story = _owned_story(story_id)
    payload = request.get_json(silent=True) or {}
    entries = payload.get("chapters")
    if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
        return jsonify({"error": "Invalid request body. Expecting { chapters: [...] }"}), 400

    for position, entry in enumerate(entries, start=1):
        form = ChapterForm(formdata=_formdata(entry), meta={"csrf": False})
        if not form.validate():
            return (
                jsonify({"error": f"Chapter {position} is invalid.", "fields": _form_errors(form)}),
                400,
            )

    chapters = _replace_chapters(story, entries)
    db.session.commit()
    current_app.logger.info("Saved %s chapters for story %s", len(chapters), story.id)
    return jsonify({"chapters": [chapter.to_dict() for chapter in chapters], "count": len(chapters)})


@bp.route("/stories/<int:story_id>/chapters/<int:chapter_id>", methods=["PATCH"])
@login_required
def update_chapter(story_id: int, chapter_id: int):
    story = _owned_story(story_id)
    chapter = Chapter.query.filter_by(id=chapter_id, story_id=story.id).first()
    if not chapter:
        return jsonify({"error": "We couldn't find that chapter."}), 404

    payload = request.get_json(silent=True) or {}
    form = ChapterForm(formdata=_formdata(payload))
    if not form.validate():
        return jsonify({"error": "Invalid chapter details.", "fields": _form_errors(form)}), 400

    for field in CHAPTER_FIELDS:
        if field in payload:
            setattr(chapter, field, _clean(payload[field]))
    db.session.commit()
    return jsonify({"chapter": chapter.to_dict()})


@bp.route("/stories/<int:story_id>/chapters/<int:chapter_id>", methods=["DELETE"])
@login_required
def delete_chapter(story_id: int, chapter_id: int):
    story = _owned_story(story_id)
    chapter = Chapter.query.filter_by(id=chapter_id, story_id=story.id).first()
    if not chapter:
        return jsonify({"error": "We couldn't find that chapter."}), 404

    StoryGeneration.query.filter_by(chapter_id=chapter.id).update(
        {"chapter_id": None}, synchronize_session=False
    )
    db.session.delete(chapter)
    db.session.commit()
    return jsonify({"deleted": chapter_id})


@bp.route("/stories/<int:story_id>/chapter-plan", methods=["POST"])
@login_required
def generate_chapter_plan(story_id: int):
    story = _owned_story(story_id)
    if story.structure_type != "book":
        return jsonify({"error": 'Chapter generation is only applicable to stories with structure type "book".'}), 400

    form = ChapterPlanForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid chapter plan request.", "fields": _form_errors(form)}), 400

    try:
        planned = plan_chapters(
            form.num_chapters.data,
            synopsis=story.global_synopsis,
            style_note=story.global_style_note,
            additional_notes=story.global_additional_notes,
            planning_notes=form.generation_notes.data,
            target_length=story.target_length,
        )
    except ChapterPlanningError as exc:
        return jsonify({"error": str(exc)}), 500
    except GenerationServiceError as exc:
        message, status = describe_generation_failure(exc)
        return jsonify({"error": message}), status if status >= 400 else 400
    except PromptConfigError as exc:
        current_app.logger.error("Chapter planning is misconfigured: %s", exc)
        return jsonify({"error": str(exc)}), 500

    chapters = _replace_chapters(story, [chapter.to_dict() for chapter in planned])
    db.session.commit()
    return jsonify({"chapters": [chapter.to_dict() for chapter in chapters]})


@bp.route("/generate", methods=["POST"])
@login_required
def generate():
    payload = request.get_json(silent=True) or {}

    length = _as_positive_int(payload.get("length"))
    if length is None:
        return jsonify({"error": "Valid length is required."}), 400

    story: Optional[Story] = None
    chapter: Optional[Chapter] = None
    parent: Optional[StoryGeneration] = None

    if payload.get("story_id") is not None:
        story_id = _as_positive_int(payload.get("story_id"))
        if story_id is None:
            return jsonify({"error": "Select a valid story."}), 400
        story = _owned_story(story_id)

    if payload.get("chapter_id") is not None:
        chapter_id = _as_positive_int(payload.get("chapter_id"))
        if story is None or chapter_id is None:
            return jsonify({"error": "A chapter can only be used together with its story."}), 400
        chapter = Chapter.query.filter_by(id=chapter_id, story_id=story.id).first()
        if not chapter:
            return jsonify({"error": f"Chapter {chapter_id} not found."}), 404

    if payload.get("parent_id") is not None:
        parent_id = _as_positive_int(payload.get("parent_id"))
        if parent_id is None:
            return jsonify({"error": "Select a valid generation to refine."}), 400
        parent = _owned_generation(parent_id)

    part_request = StoryPartRequest(
        length=length,
        synopsis=_clean(payload.get("synopsis")),
        style_note=_clean(payload.get("style_note")) or (parent.style_note if parent else None),
        part_instructions=_clean(payload.get("part_instructions")),
        previous_part_content=_clean(payload.get("previous_part_content")),
        refinement_feedback=_clean(payload.get("refinement_feedback")),
        parent_content=(parent.generated_story or "") if parent else None,
        story=_story_context(story) if story else None,
        chapter=_chapter_context(chapter) if chapter else None,
        story_target_length=_as_positive_int(payload.get("story_target_length")),
        current_story_length=_as_positive_int(payload.get("current_story_length")),
        use_web_search=bool(payload.get("use_web_search")),
    )

    try:
        result = generate_story_part(part_request)
    except StoryGenerationError as exc:
        return jsonify({"error": str(exc)}), 400
    except GenerationSafetyError:
        return jsonify({"error": "Content generation blocked due to safety settings."}), 400
    except GenerationServiceError as exc:
        message, status = describe_generation_failure(exc)
        return jsonify({"error": message}), status
    except PromptConfigError as exc:
        current_app.logger.error("Story generation is misconfigured: %s", exc)
        return jsonify({"error": str(exc)}), 500

    is_initial = parent is None
    generation = StoryGeneration(
        owner=current_user,
        story=story,
        chapter_id=chapter.id if chapter else None,
        parent=parent,
        synopsis=part_request.synopsis if is_initial and story is None else None,
        part_instructions=part_request.part_instructions if is_initial and story is not None and chapter is None else None,
        style_note=result.style_note,
        requested_length=length,
        use_web_search=part_request.use_web_search,
        prompt=result.prompt,
        generated_story=result.text,
        iteration_feedback=part_request.refinement_feedback,
        context_target_length=part_request.story_target_length,
        context_current_length=part_request.current_story_length,
    )
    db.session.add(generation)
    db.session.commit()

    return jsonify({"story": result.text, "generation_id": generation.id, "mode": result.mode})


@bp.route("/generations/<int:generation_id>", methods=["GET"])
@login_required
def get_generation(generation_id: int):
    generation = _owned_generation(generation_id)
    return jsonify({"generation": generation.to_dict()})


@bp.route("/generations/<int:generation_id>", methods=["PATCH"])
@login_required
def update_generation(generation_id: int):
    generation = _owned_generation(generation_id)
    payload = request.get_json(silent=True) or {}
    content = payload.get("generated_story")
    if not isinstance(content, str):
        return jsonify({"error": "Updated story content is required."}), 400

    generation.generated_story = content
    db.session.commit()
    return jsonify({"generation": generation.to_dict()})


@bp.route("/generations/<int:generation_id>/accept", methods=["POST"])
@login_required
def accept_generation(generation_id: int):
    generation = _owned_generation(generation_id)
    payload = request.get_json(silent=True) or {}
    content = payload.get("content")
    if content is not None and not isinstance(content, str):
        return jsonify({"error": "Edited content must be text."}), 400

    generation.is_accepted = True
    if content is not None:
        generation.generated_story = content
    db.session.commit()
    return jsonify({"generation": generation.to_dict()})


@bp.route("/history", methods=["GET"])
@login_required
def history():
    limit = int(current_app.config.get("HISTORY_LIMIT", 20))
    generations = (
        StoryGeneration.query.filter_by(owner_id=current_user.id)
        .order_by(StoryGeneration.created_at.desc(), StoryGeneration.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"generations": [generation.to_dict() for generation in generations]})


def _story_context(story: Story) -> StoryContext:
    return StoryContext(
        title=story.title,
        structure_type=story.structure_type,
        synopsis=story.global_synopsis,
        style_note=story.global_style_note,
        additional_notes=story.global_additional_notes,
    )


def _chapter_context(chapter: Chapter) -> ChapterContext:
    return ChapterContext(
        number=chapter.chapter_number,
        title=chapter.title,
        synopsis=chapter.synopsis,
        style_notes=chapter.style_notes,
        additional_notes=chapter.additional_notes,
    )
