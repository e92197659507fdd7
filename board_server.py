#!/usr/bin/env python3
"""
Lifecycle Board Server
----------------------
JSON API over one BoardSession, backed by the shared SQLite board.

Usage:
    python board_server.py
    python board_server.py --db /tmp/board.db --port 3001
    LIFEBOARD_API_SECRET=... python board_server.py --host 0.0.0.0

API:
    GET  /api/board?team=                 → { board, teamScope, teams, pending, stats, payments }
    POST /api/move                        → { studentId, from, to, fromIndex, toIndex }
    POST /api/transition/confirm          → { date, reason? }
    POST /api/transition/cancel
    POST /api/students/<id>/notes         → { text, author? }
    PUT  /api/students/<id>/team          → { team }
    GET  /api/stats?team=
    GET  /health

Mutating routes require the X-API-Key header.
"""

import argparse
import hmac
import logging
import os
import sys
from functools import wraps
from typing import Optional

from flask import Flask, jsonify, request

from lifeboard.config import Config
from lifeboard.session import BoardSession, Outcome

logger = logging.getLogger(__name__)

# Outcome.error → HTTP status
ERROR_STATUS = {
    "InvalidReference": 409,
    "UnknownEntity": 404,
    "MissingRequiredField": 400,
    "TransitionPending": 409,
    "PersistenceFailure": 503,
    "MalformedSnapshot": 400,
}


def _respond(outcome: Outcome, success_code: int = 200):
    if outcome.error:
        return jsonify(outcome.to_dict()), ERROR_STATUS.get(outcome.error, 400)
    if outcome.pending is not None:
        return jsonify(outcome.to_dict()), 202
    return jsonify(outcome.to_dict()), success_code


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def create_app(session: BoardSession, api_secret: str = "") -> Flask:
    """Build the Flask app for one session."""
    app = Flask(__name__)

    def require_api_key(f):
        """Decorator: reject requests without a valid X-API-Key header."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not api_secret:
                return jsonify({"error": "API secret not set"}), 503
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, api_secret):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    # ── Routes ───────────────────────────────────────────────────────────────

    @app.route("/api/board")
    def api_board():
        team = request.args.get("team")
        if team is not None:
            session.set_team_scope(team)
        return jsonify(session.render_state())

    @app.route("/api/move", methods=["POST"])
    @require_api_key
    def api_move():
        data = _body()
        student_id = str(data.get("studentId", "")).strip()
        from_column = str(data.get("from", "")).strip()
        if not student_id or not from_column:
            return jsonify({"error": "studentId and from are required"}), 400
        try:
            from_index = int(data.get("fromIndex"))
            to_index = int(data.get("toIndex", 0))
        except (TypeError, ValueError):
            return jsonify({"error": "fromIndex and toIndex must be integers"}), 400
        # "to": null means the card was dropped outside any column
        return _respond(session.drag_end(student_id, from_column, data.get("to"), from_index, to_index))

    @app.route("/api/transition/confirm", methods=["POST"])
    @require_api_key
    def api_confirm():
        data = _body()
        return _respond(session.confirm_transition(data.get("date"), data.get("reason")))

    @app.route("/api/transition/cancel", methods=["POST"])
    @require_api_key
    def api_cancel():
        return _respond(session.cancel_transition())

    @app.route("/api/students/<student_id>/notes", methods=["POST"])
    @require_api_key
    def api_add_note(student_id):
        data = _body()
        return _respond(
            session.add_note(student_id, str(data.get("text", "")), str(data.get("author", "") or "")),
            success_code=201,
        )

    @app.route("/api/students/<student_id>/team", methods=["PUT"])
    @require_api_key
    def api_set_team(student_id):
        data = _body()
        if "team" not in data:
            return jsonify({"error": "team is required"}), 400
        if data["team"] is not None and not isinstance(data["team"], str):
            return jsonify({"error": "team must be a string or null"}), 400
        return _respond(session.set_team(student_id, data.get("team")))

    @app.route("/api/reload", methods=["POST"])
    @require_api_key
    def api_reload():
        session.reload()
        return jsonify(session.render_state())

    @app.route("/api/stats")
    def api_stats():
        team = request.args.get("team") or session.team_scope
        return jsonify(session.store.stats(team))

    @app.route("/health")
    def health():
        return jsonify({
            "status": "ok",
            "db": getattr(session.store.adapter, "db_path", None),
            "view": session.store.view_id,
        })

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(description="Lifecycle Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to board.db (overrides LIFEBOARD_DB env var)")
    parser.add_argument("--config", help="Path to lifeboard.yaml")
    args = parser.parse_args(argv)

    if args.db:
        os.environ["LIFEBOARD_DB"] = args.db
    cfg = Config.load(args.config)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [lifeboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not cfg.api_secret:
        logger.warning(f"{cfg.api_secret_env} not set, mutating routes will answer 503")

    session = BoardSession.open(cfg)
    app = create_app(session, cfg.api_secret)
    logger.info(f"Serving board {cfg.db_path} on http://{args.host}:{args.port}")
    try:
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
    finally:
        session.close()


if __name__ == "__main__":
    main()
