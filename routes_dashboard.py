#!/usr/bin/env python3
"""
routes_dashboard.py

Aggregated views for the signed-in landing page.
"""

from flask import jsonify
from flask_jwt_extended import get_jwt_identity, jwt_required

from database import jsonable
from direct_messages import list_inbox
from roleplay_sessions import list_invitations, list_my_sessions, list_watch_sessions
from writers import list_incoming_requests, list_online_writers, list_top_writers


def merge_chats(sessions: list[dict], threads: list[dict]) -> list[dict]:
    """Sessions first (already in dashboard order), then DM threads by latest message."""
    return list(sessions) + list(threads)


def register_dashboard_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    @app.route("/api/dashboard/chats", methods=["GET"])
    @_limit(settings.get("rate_limit_dashboard") or "60 per minute")
    @jwt_required()
    def dashboard_chats():
        me = str(get_jwt_identity())
        sessions = list_my_sessions(me, include_closed=False)
        threads = list_inbox(me)
        return jsonify(jsonable({
            "sessions": sessions,
            "dms": threads,
            "chats": merge_chats(sessions, threads),
        }))

    @app.route("/api/dashboard/summary", methods=["GET"])
    @_limit(settings.get("rate_limit_dashboard") or "60 per minute")
    @jwt_required()
    def dashboard_summary():
        me = str(get_jwt_identity())
        return jsonify(jsonable({
            "friend_requests": list_incoming_requests(me),
            "invitations": list_invitations(me),
            "online_writers": list_online_writers(),
            "top_writers": list_top_writers(),
            "watch_sessions": list_watch_sessions(me),
        }))
