import logging
import uuid
from flask import Blueprint, jsonify, request, session
from db import get_config, save_config

logger = logging.getLogger(__name__)

portfolio_bp = Blueprint("portfolio", __name__)


def get_session_id():
    """Return the visitor's session id, issuing one on first contact."""
    sid = session.get("sid")
    if not sid:
        sid = uuid.uuid4().hex
        session["sid"] = sid
        session.permanent = True
    return sid


@portfolio_bp.get("/api/portfolio")
def get_portfolio():
    return jsonify(get_config(get_session_id()))


@portfolio_bp.post("/api/portfolio")
def post_portfolio():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    sid = get_session_id()
    created = save_config(sid, data)
    logger.info("%s portfolio document for session %s", "Created" if created else "Updated", sid)
    return jsonify({"ok": True, "created": created}), 201 if created else 200
