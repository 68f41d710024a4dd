from __future__ import annotations

"""Flask application factory for the operator and viewing-surface API."""

import logging
from typing import Optional

from flask import Flask, g, jsonify

from ..config import load_config
from ..database.repository import Repository
from ..errors import InvalidTransition, PipelineError, TaskNotFound, UpstreamError
from ..pipeline.factory import Pipeline

logger = logging.getLogger(__name__)


def create_app(config: dict = None, services: Optional[dict] = None) -> Flask:
    """Create and configure the Flask application.

    `services` overrides service clients by name (catalog, transcriber,
    classifier, embedder, blob_store); anything missing is built from config.
    """
    if config is None:
        config = load_config()

    app = Flask(__name__)
    app.config["DB_PATH"] = config["db_path"]
    app.config["KIDSAFE"] = config
    app.extensions["kidsafe_services"] = dict(services or {})

    from .routes.pipeline import pipeline_bp
    from .routes.status import status_bp
    from .routes.viewing import viewing_bp

    app.register_blueprint(pipeline_bp, url_prefix="/api")
    app.register_blueprint(status_bp, url_prefix="/api")
    app.register_blueprint(viewing_bp, url_prefix="/api")

    @app.teardown_appcontext
    def close_repo(exc):
        repo = g.pop("repo", None)
        if repo is not None:
            repo.close()

    @app.errorhandler(TaskNotFound)
    def task_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(InvalidTransition)
    def invalid_transition(e):
        return jsonify({"error": str(e), "status": e.current}), 409

    @app.errorhandler(UpstreamError)
    def upstream_error(e):
        logger.error(f"Upstream failure: {e}")
        return jsonify({"error": str(e), "service": e.service}), 502

    @app.errorhandler(PipelineError)
    def pipeline_error(e):
        logger.error(f"Pipeline failure ({e.failure_kind}): {e}")
        return jsonify({"error": str(e), "kind": e.failure_kind}), 502

    return app


def get_repo(app: Flask) -> Repository:
    """Repository for the current request; one SQLite connection per request."""
    if "repo" not in g:
        g.repo = Repository(app.config["DB_PATH"])
    return g.repo


def get_pipeline(app: Flask) -> Pipeline:
    """Pipeline for the current request, sharing long-lived service clients."""
    if "pipeline" not in g:
        g.pipeline = Pipeline(
            app.config["KIDSAFE"], get_repo(app), app.extensions["kidsafe_services"]
        )
    return g.pipeline
