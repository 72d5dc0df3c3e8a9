from flask import Blueprint

report_cards_bp = Blueprint("report_cards", __name__)

from . import routes  # noqa: E402,F401
