from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.formhub.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"service": "formhub", "ok": True})


@bp.get("/health")
def health():
    """Health check endpoint with a DB round trip. Returns JSON."""
    try:
        db_session().execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        current_app.logger.error("Health check DB error: %s", e)
        db_ok = False
    return jsonify({"ok": db_ok, "db": db_ok}), (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200
