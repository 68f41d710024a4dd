from __future__ import annotations

"""Status and task inspection routes."""

from flask import Blueprint, jsonify, request, current_app

from ...database.models import TaskStatus
from ...errors import TaskNotFound
from ..app import get_repo

status_bp = Blueprint("status", __name__)


@status_bp.route("/status", methods=["GET"])
def get_status():
    """Get queue and verdict counts as JSON."""
    repo = get_repo(current_app)
    return jsonify(repo.get_pipeline_stats())


@status_bp.route("/tasks", methods=["GET"])
def list_tasks():
    status = request.args.get("status")
    if status is not None and status not in TaskStatus.ALL:
        return jsonify({"error": f"Unknown status: {status}"}), 400
    limit = request.args.get("limit", default=50, type=int)

    repo = get_repo(current_app)
    tasks = repo.list_tasks(status, limit)
    return jsonify({"tasks": [t.to_dict() for t in tasks]})


@status_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id):
    """A task with its full transition history."""
    repo = get_repo(current_app)
    task = repo.get_task(task_id)
    if task is None:
        raise TaskNotFound(task_id)
    return jsonify({"task": task.to_dict(), "events": repo.get_task_events(task_id)})
