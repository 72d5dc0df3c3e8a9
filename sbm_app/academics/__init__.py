from flask import Blueprint

academics_bp = Blueprint("academics", __name__)

from . import routes  # noqa: E402,F401
