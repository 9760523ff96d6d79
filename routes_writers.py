#!/usr/bin/env python3
"""
routes_writers.py

Writer profiles, directory, presence heartbeat, likes, profile comments and
friend requests. Profiles are addressed by their owner's user id.
"""

import logging

from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from characters import list_user_characters
from database import jsonable
from feed_filters import WRITER_SORTS, filter_writers, sort_writers
from feedback import list_received_feedback
from feedback_tags import approved_tag_counts
from permissions import current_user_id, not_found, parse_uuid
from realtime.notify import emit_to_user
from security import log_audit_event, write_rate_ok
from writers import (
    WRITER_NAME_MAX,
    add_comment,
    create_writer,
    delete_comment,
    delete_writer,
    get_like_state,
    get_writer_by_user,
    like_writer,
    list_comments,
    list_incoming_requests,
    list_online_writers,
    list_top_writers,
    list_writers,
    respond_friend_request,
    send_friend_request,
    touch_writer_presence,
    unlike_writer,
    update_comment,
    update_writer,
)

COMMENT_BODY_MAX = 2000


def _profile_fields(data: dict, partial: bool) -> tuple[dict, str | None]:
    clean = {}
    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            return {}, "Writer name is required"
        if len(name) > WRITER_NAME_MAX:
            return {}, f"Writer name too long (max {WRITER_NAME_MAX})"
        clean["name"] = name
    for key in ("description", "portrait_url"):
        if key in data:
            val = data.get(key)
            clean[key] = str(val).strip() if val not in (None, "") else None
    return clean, None


def register_writer_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    def _too_fast(action: str, user_id: str):
        ok, retry = write_rate_ok(settings, action, user_id)
        if ok:
            return None
        return jsonify({"error": "Slow down", "retry_after": round(retry, 1)}), 429

    # ── Own profile ──────────────────────────────────────────────────────
    @app.route("/api/writers", methods=["POST"])
    @_limit(settings.get("rate_limit_profile") or "10 per minute")
    @jwt_required()
    def writers_create():
        user_id = str(get_jwt_identity())
        fields, err = _profile_fields(request.get_json(silent=True) or {}, partial=False)
        if err:
            return jsonify({"error": err}), 400
        writer = create_writer(user_id, fields["name"], fields.get("description"), fields.get("portrait_url"))
        if writer is None:
            return jsonify({"error": "You already have a writer profile"}), 409
        return jsonify(jsonable(writer)), 201

    @app.route("/api/writers/me", methods=["PATCH"])
    @_limit(settings.get("rate_limit_profile") or "10 per minute")
    @jwt_required()
    def writers_update_me():
        user_id = str(get_jwt_identity())
        fields, err = _profile_fields(request.get_json(silent=True) or {}, partial=True)
        if err:
            return jsonify({"error": err}), 400
        writer = update_writer(user_id, fields)
        if writer is None:
            return not_found()
        return jsonify(jsonable(writer))

    @app.route("/api/writers/me", methods=["DELETE"])
    @jwt_required()
    def writers_delete_me():
        user_id = str(get_jwt_identity())
        if not delete_writer(user_id):
            return not_found()
        log_audit_event(user_id, "delete_writer_profile")
        return jsonify({"ok": True})

    @app.route("/api/writers/heartbeat", methods=["POST"])
    @_limit(settings.get("rate_limit_heartbeat") or "12 per minute")
    @jwt_required()
    def writers_heartbeat():
        if not touch_writer_presence(str(get_jwt_identity())):
            return jsonify({"error": "Create a writer profile first"}), 403
        return jsonify({"ok": True})

    # ── Directory ────────────────────────────────────────────────────────
    @app.route("/api/writers", methods=["GET"])
    def writers_directory():
        q = request.args.get("q", "")
        sort = request.args.get("sort", "newest")
        if sort not in WRITER_SORTS:
            return jsonify({"error": "sort must be one of: " + ", ".join(WRITER_SORTS)}), 400
        rows = sort_writers(filter_writers(list_writers(), q), sort)
        return jsonify(jsonable(rows))

    @app.route("/api/writers/online", methods=["GET"])
    def writers_online():
        return jsonify(jsonable(list_online_writers()))

    @app.route("/api/writers/top", methods=["GET"])
    def writers_top():
        return jsonify(jsonable(list_top_writers()))

    @app.route("/api/writers/<uuid:user_id>", methods=["GET"])
    def writers_profile(user_id):
        user_id = str(user_id)
        writer = get_writer_by_user(user_id)
        if not writer:
            return not_found()
        viewer_id = current_user_id()
        likes, liked = get_like_state(str(writer["id"]), viewer_id)
        feedback = list_received_feedback(user_id, include_pending=(viewer_id == user_id))
        return jsonify(jsonable({
            "writer": writer,
            "likes_count": likes,
            "liked_by_me": liked,
            "characters": list_user_characters(user_id),
            "feedback": feedback,
            "tag_counts": approved_tag_counts(feedback),
        }))

    # ── Likes ────────────────────────────────────────────────────────────
    @app.route("/api/writers/<uuid:user_id>/like", methods=["POST", "DELETE"])
    @_limit(settings.get("rate_limit_like") or "30 per minute")
    @jwt_required()
    def writers_like(user_id):
        writer = get_writer_by_user(str(user_id))
        if not writer:
            return not_found()
        me = str(get_jwt_identity())
        if request.method == "POST":
            like_writer(str(writer["id"]), me)
        else:
            unlike_writer(str(writer["id"]), me)
        likes, liked = get_like_state(str(writer["id"]), me)
        return jsonify({"likes_count": likes, "liked_by_me": liked})

    # ── Comments ─────────────────────────────────────────────────────────
    @app.route("/api/writers/<uuid:user_id>/comments", methods=["GET"])
    def writers_comments(user_id):
        writer = get_writer_by_user(str(user_id))
        if not writer:
            return not_found()
        return jsonify(jsonable(list_comments(str(writer["id"]))))

    @app.route("/api/writers/<uuid:user_id>/comments", methods=["POST"])
    @jwt_required()
    def writers_comment_create(user_id):
        writer = get_writer_by_user(str(user_id))
        if not writer:
            return not_found()
        me = str(get_jwt_identity())
        limited = _too_fast("comment", me)
        if limited:
            return limited
        body = str((request.get_json(silent=True) or {}).get("body") or "").strip()
        if not body:
            return jsonify({"error": "Comment cannot be empty"}), 400
        if len(body) > COMMENT_BODY_MAX:
            return jsonify({"error": f"Comment too long (max {COMMENT_BODY_MAX})"}), 400
        return jsonify(jsonable(add_comment(str(writer["id"]), me, body))), 201

    @app.route("/api/comments/<uuid:comment_id>", methods=["PATCH"])
    @jwt_required()
    def comments_update(comment_id):
        body = str((request.get_json(silent=True) or {}).get("body") or "").strip()
        if not body:
            return jsonify({"error": "Comment cannot be empty"}), 400
        if len(body) > COMMENT_BODY_MAX:
            return jsonify({"error": f"Comment too long (max {COMMENT_BODY_MAX})"}), 400
        row = update_comment(str(comment_id), str(get_jwt_identity()), body)
        if row is None:
            return not_found()
        return jsonify(jsonable(row))

    @app.route("/api/comments/<uuid:comment_id>", methods=["DELETE"])
    @jwt_required()
    def comments_delete(comment_id):
        if not delete_comment(str(comment_id), str(get_jwt_identity())):
            return not_found()
        return jsonify({"ok": True})

    # ── Friend requests ──────────────────────────────────────────────────
    @app.route("/api/friend-requests", methods=["POST"])
    @_limit(settings.get("rate_limit_friend_request") or "10 per minute")
    @jwt_required()
    def friend_request_send():
        me = str(get_jwt_identity())
        receiver_id = parse_uuid((request.get_json(silent=True) or {}).get("receiver_id"))
        if not receiver_id:
            return jsonify({"error": "A valid receiver_id is required"}), 400
        if receiver_id == me:
            return jsonify({"error": "You cannot send a friend request to yourself"}), 400
        if not get_writer_by_user(receiver_id):
            return not_found()
        row = send_friend_request(me, receiver_id)
        if row is None:
            return jsonify({"error": "A friend request is already pending"}), 409
        sender = get_writer_by_user(me) or {}
        payload = dict(row, requester_name=sender.get("name"), requester_portrait_url=sender.get("portrait_url"))
        emit_to_user(receiver_id, "friend_request", payload)
        logging.info("friend request %s -> %s", me, receiver_id)
        return jsonify(jsonable(row)), 201

    @app.route("/api/friend-requests", methods=["GET"])
    @jwt_required()
    def friend_request_incoming():
        return jsonify(jsonable(list_incoming_requests(str(get_jwt_identity()))))

    @app.route("/api/friend-requests/<uuid:request_id>", methods=["POST"])
    @jwt_required()
    def friend_request_respond(request_id):
        data = request.get_json(silent=True) or {}
        action = str(data.get("action") or "").strip().lower()
        if action not in ("accept", "reject"):
            return jsonify({"error": "action must be 'accept' or 'reject'"}), 400
        row = respond_friend_request(str(request_id), str(get_jwt_identity()), accept=(action == "accept"))
        if row is None:
            return not_found()
        emit_to_user(str(row["requester_id"]), "friend_request_updated", row)
        return jsonify(jsonable(row))
