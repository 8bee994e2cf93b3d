from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager

STRUCTURE_TYPES = ("book", "short_story")


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    stories = db.relationship("Story", backref="owner", lazy=True, cascade="all, delete-orphan")
    generations = db.relationship("StoryGeneration", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "display_name": self.display_name}

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, int(user_id))


class Story(db.Model):
    __tablename__ = "stories"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    title = db.Column(db.String(150), nullable=False)
    structure_type = db.Column(db.String(20), nullable=False, default="short_story")
    global_synopsis = db.Column(db.Text, nullable=True)
    global_style_note = db.Column(db.Text, nullable=True)
    global_additional_notes = db.Column(db.Text, nullable=True)
    target_length = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    chapters = db.relationship(
        "Chapter",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.chapter_number",
    )
    generations = db.relationship(
        "StoryGeneration",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StoryGeneration.created_at",
    )

    def to_dict(self, *, include_chapters: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "structure_type": self.structure_type,
            "global_synopsis": self.global_synopsis,
            "global_style_note": self.global_style_note,
            "global_additional_notes": self.global_additional_notes,
            "target_length": self.target_length,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_chapters:
            data["chapters"] = [chapter.to_dict() for chapter in self.chapters]
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Story {self.title} ({self.structure_type})>"


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)
    chapter_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(255), nullable=True)
    synopsis = db.Column(db.Text, nullable=True)
    style_notes = db.Column(db.Text, nullable=True)
    additional_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("story_id", "chapter_number", name="uq_chapter_story_number"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "chapter_number": self.chapter_number,
            "title": self.title,
            "synopsis": self.synopsis,
            "style_notes": self.style_notes,
            "additional_notes": self.additional_notes,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.chapter_number} of story {self.story_id}>"


class StoryGeneration(db.Model):
    __tablename__ = "story_generations"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=True, index=True)
    chapter_id = db.Column(db.Integer, db.ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True)
    parent_generation_id = db.Column(db.Integer, db.ForeignKey("story_generations.id"), nullable=True)
    synopsis = db.Column(db.Text, nullable=True)
    part_instructions = db.Column(db.Text, nullable=True)
    style_note = db.Column(db.Text, nullable=True)
    requested_length = db.Column(db.Integer, nullable=True)
    use_web_search = db.Column(db.Boolean, nullable=False, default=False)
    prompt = db.Column(db.Text, nullable=True)
    generated_story = db.Column(db.Text, nullable=True)
    iteration_feedback = db.Column(db.Text, nullable=True)
    is_accepted = db.Column(db.Boolean, nullable=False, default=False)
    context_target_length = db.Column(db.Integer, nullable=True)
    context_current_length = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    parent = db.relationship("StoryGeneration", remote_side=[id], backref="refinements")
    chapter = db.relationship("Chapter")
    revision_session = db.relationship(
        "RevisionSessionRecord",
        backref="generation",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "chapter_id": self.chapter_id,
            "parent_generation_id": self.parent_generation_id,
            "synopsis": self.synopsis,
            "part_instructions": self.part_instructions,
            "style_note": self.style_note,
            "requested_length": self.requested_length,
            "use_web_search": self.use_web_search,
            "prompt": self.prompt,
            "generated_story": self.generated_story,
            "iteration_feedback": self.iteration_feedback,
            "is_accepted": self.is_accepted,
            "created_at": _isoformat(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<StoryGeneration {self.id} (story {self.story_id})>"


class RevisionSessionRecord(db.Model):
    __tablename__ = "revision_sessions"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    generation_id = db.Column(db.Integer, db.ForeignKey("story_generations.id"), nullable=False, unique=True)
    document = db.Column(db.Text, nullable=False, default="")
    # Generation text as of the last load or save.
    source_text = db.Column(db.Text, nullable=True)
    pending_proposal = db.Column(db.Text, nullable=True)
    request_sequence = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner = db.relationship("User")
    turns = db.relationship(
        "RevisionTurnRecord",
        backref="session",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="RevisionTurnRecord.position",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RevisionSessionRecord {self.id} for generation {self.generation_id}>"


class RevisionTurnRecord(db.Model):
    __tablename__ = "revision_turns"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("revision_sessions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    request_text = db.Column(db.Text, nullable=False)
    proposal = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RevisionTurnRecord {self.position} ({self.status})>"
