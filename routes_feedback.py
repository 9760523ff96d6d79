#!/usr/bin/env python3
"""
routes_feedback.py

Post-session feedback: tag catalogue, submit, my feedback, received
feedback (owner sees pending + approved, everyone else approved only),
approve / delete by the recipient.
"""

from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from database import jsonable
from feedback import (
    FEEDBACK_TEXT_MAX,
    approve_feedback,
    delete_feedback,
    get_feedback,
    get_my_feedback,
    list_received_feedback,
    recipient_of,
    submit_feedback,
)
from feedback_tags import approved_tag_counts, catalogue, validate_tags
from permissions import current_user_id, load_participant_session, not_found
from security import log_audit_event


def register_feedback_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    def _recipient_row(feedback_id: str, user_id: str):
        row = get_feedback(feedback_id)
        if not row or recipient_of(row) != user_id:
            return None
        return row

    @app.route("/api/feedback/tags", methods=["GET"])
    def feedback_tags():
        return jsonify(catalogue())

    @app.route("/api/sessions/<uuid:session_id>/feedback", methods=["POST"])
    @_limit(settings.get("rate_limit_feedback") or "10 per minute")
    @jwt_required()
    def feedback_submit(session_id):
        me = str(get_jwt_identity())
        if not load_participant_session(str(session_id), me):
            return not_found()
        data = request.get_json(silent=True) or {}
        text = str(data.get("feedback") or "").strip()
        if len(text) > FEEDBACK_TEXT_MAX:
            return jsonify({"error": f"Feedback too long (max {FEEDBACK_TEXT_MAX})"}), 400
        tags, bad = validate_tags(data.get("tags"))
        if bad:
            return jsonify({"error": "Unknown feedback tags: " + ", ".join(bad)}), 400
        if not text and not tags:
            return jsonify({"error": "Write something or pick at least one tag"}), 400
        row = submit_feedback(str(session_id), me, text, tags)
        if row is None:
            return jsonify({"error": "You already left feedback for this session"}), 409
        return jsonify(jsonable(row)), 201

    @app.route("/api/sessions/<uuid:session_id>/feedback/mine", methods=["GET"])
    @jwt_required()
    def feedback_mine(session_id):
        me = str(get_jwt_identity())
        if not load_participant_session(str(session_id), me):
            return not_found()
        return jsonify(jsonable(get_my_feedback(str(session_id), me)))

    @app.route("/api/users/<uuid:user_id>/feedback", methods=["GET"])
    def feedback_received(user_id):
        user_id = str(user_id)
        owner = current_user_id() == user_id
        rows = list_received_feedback(user_id, include_pending=owner)
        return jsonify(jsonable({"feedback": rows, "tag_counts": approved_tag_counts(rows)}))

    @app.route("/api/feedback/<uuid:feedback_id>/approve", methods=["POST"])
    @jwt_required()
    def feedback_approve(feedback_id):
        me = str(get_jwt_identity())
        if not _recipient_row(str(feedback_id), me):
            return not_found()
        row = approve_feedback(str(feedback_id))
        log_audit_event(me, "approve_feedback", target=str(feedback_id))
        return jsonify(jsonable(row))

    @app.route("/api/feedback/<uuid:feedback_id>", methods=["DELETE"])
    @jwt_required()
    def feedback_delete(feedback_id):
        me = str(get_jwt_identity())
        if not _recipient_row(str(feedback_id), me):
            return not_found()
        delete_feedback(str(feedback_id))
        log_audit_event(me, "delete_feedback", target=str(feedback_id))
        return jsonify({"ok": True})
