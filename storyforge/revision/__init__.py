from flask import Blueprint

bp = Blueprint("revision", __name__, url_prefix="/api/revisions")

from . import routes  # noqa: E402,F401
