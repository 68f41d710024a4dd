from __future__ import annotations

"""Viewing-surface routes. Every video shown to a child passes the safety gate."""

from flask import Blueprint, jsonify, request, current_app

from ...database.models import AGE_RATINGS
from ..app import get_pipeline, get_repo

viewing_bp = Blueprint("viewing", __name__)


def _max_age():
    max_age = request.args.get("max_age")
    if max_age is not None and max_age not in AGE_RATINGS:
        return None, (jsonify({"error": f"max_age must be one of {', '.join(AGE_RATINGS)}"}), 400)
    return max_age, None


@viewing_bp.route("/children/<child_id>/videos", methods=["GET"])
def list_visible_videos(child_id):
    max_age, error = _max_age()
    if error:
        return error
    videos = get_pipeline(current_app).gate().visible_videos(child_id, max_age)
    return jsonify({"child_id": child_id, "videos": [v.to_dict() for v in videos]})


@viewing_bp.route("/children/<child_id>/videos/<video_id>/visible", methods=["GET"])
def check_visible(child_id, video_id):
    max_age, error = _max_age()
    if error:
        return error
    video = get_repo(current_app).get_video(video_id)
    visible = get_pipeline(current_app).gate().is_visible_to_child(video, child_id, max_age)
    return jsonify({"child_id": child_id, "video_id": video_id, "visible": visible})


@viewing_bp.route("/children/<child_id>/channels/<channel_id>", methods=["POST"])
def approve_channel(child_id, channel_id):
    created = get_repo(current_app).approve_channel(child_id, channel_id)
    return jsonify({"child_id": child_id, "channel_id": channel_id, "approved": True}), (201 if created else 200)


@viewing_bp.route("/children/<child_id>/channels/<channel_id>", methods=["DELETE"])
def revoke_channel(child_id, channel_id):
    removed = get_repo(current_app).revoke_channel(child_id, channel_id)
    if not removed:
        return jsonify({"error": "Channel not approved for this child"}), 404
    return jsonify({"child_id": child_id, "channel_id": channel_id, "approved": False})
