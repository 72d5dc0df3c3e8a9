from flask import Blueprint

fees_bp = Blueprint("fees", __name__)

from . import routes  # noqa: E402,F401
