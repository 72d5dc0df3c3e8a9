from flask import Blueprint

backups_bp = Blueprint("backups", __name__)

from . import routes  # noqa: E402,F401
