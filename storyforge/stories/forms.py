from flask_wtf import FlaskForm
from wtforms import IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import InputRequired, Length, NumberRange, Optional

from ..models import STRUCTURE_TYPES


class StoryForm(FlaskForm):
    title = StringField("Title", validators=[InputRequired(), Length(max=150)])
    structure_type = SelectField(
        "Structure",
        choices=[(value, value) for value in STRUCTURE_TYPES],
        default="short_story",
    )
    global_synopsis = TextAreaField("Synopsis", validators=[Optional()])
    global_style_note = TextAreaField("Style note", validators=[Optional()])
    global_additional_notes = TextAreaField("Additional notes", validators=[Optional()])
    target_length = IntegerField("Target length (words)", validators=[Optional(), NumberRange(min=1)])


class ChapterForm(FlaskForm):
    chapter_number = IntegerField("Chapter number", validators=[Optional(), NumberRange(min=1)])
    title = StringField("Title", validators=[Optional(), Length(max=255)])
    synopsis = TextAreaField("Synopsis", validators=[Optional()])
    style_notes = TextAreaField("Style notes", validators=[Optional()])
    additional_notes = TextAreaField("Additional notes", validators=[Optional()])


class ChapterPlanForm(FlaskForm):
    num_chapters = IntegerField(
        "Number of chapters",
        validators=[InputRequired(), NumberRange(min=1, max=150, message="Invalid number of chapters (must be 1-150).")],
    )
    generation_notes = TextAreaField("Planning notes", validators=[Optional(), Length(max=4000)])
