from __future__ import annotations

"""Operator routes that drive the pipeline by hand."""

import logging

from flask import Blueprint, jsonify, request, current_app

from ..app import get_pipeline, get_repo

logger = logging.getLogger(__name__)

pipeline_bp = Blueprint("pipeline", __name__)


@pipeline_bp.route("/ingest/<channel_id>", methods=["POST"])
def ingest_channel(channel_id):
    """Register a channel's recent uploads and queue them."""
    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        return jsonify({"error": "limit must be a positive integer"}), 400
    result = get_pipeline(current_app).ingestion().run(channel_id, limit)
    return jsonify(result)


@pipeline_bp.route("/enqueue/<video_id>", methods=["POST"])
def enqueue_video(video_id):
    repo = get_repo(current_app)
    existing = repo.get_task_by_video_id(video_id)
    task = repo.enqueue(video_id)
    return jsonify({"task": task.to_dict(), "created": existing is None}), (201 if existing is None else 200)


@pipeline_bp.route("/transcribe", methods=["POST"])
def transcribe_one():
    """Run one transcription step."""
    return jsonify(get_pipeline(current_app).transcription().run_once())


@pipeline_bp.route("/classify", methods=["POST"])
def classify_one():
    """Run one classification step."""
    return jsonify(get_pipeline(current_app).classification().run_once())


@pipeline_bp.route("/sweep", methods=["POST"])
def sweep_stale():
    """Fail tasks stuck in a claimed status."""
    swept = get_pipeline(current_app).janitor().sweep()
    return jsonify({"swept": swept, "count": len(swept)})


@pipeline_bp.route("/tasks/<task_id>/reset", methods=["POST"])
def reset_task(task_id):
    task = get_repo(current_app).reset_task(task_id)
    logger.info(f"Task {task_id} reset via web")
    return jsonify({"task": task.to_dict()})
