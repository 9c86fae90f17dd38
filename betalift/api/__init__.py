"""
JSON API blueprint.

Route modules (health, projects, feedback, notifications, push) register
their endpoints on this shared blueprint; the app factory imports them and
mounts ``api_bp`` under ``/api``.
"""
from flask import Blueprint

api_bp = Blueprint("api", __name__)
