"""Flask webhook server - starts pipeline runs and reports their status.

Endpoints:

* ``POST /webhook/run``: start a run in the background (202), or 409 when
  one is already in progress
* ``GET /status``: whether a run is in progress, plus the last result
* ``GET /health``: liveness check

When ``WEBHOOK_SECRET`` is set every request must carry
``Authorization: Bearer <secret>``.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import threading
from collections.abc import Callable
from typing import Any

from flask import Flask, jsonify, request
from pydantic import ValidationError

from tag_mixer.pipeline.orchestrator import run_pipeline
from tag_mixer.pipeline.phases import PipelineConfig, PipelineResult
from tag_mixer.pipeline.workspace import today_iso

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3847
EXTENSION_KEY = "tag_mixer"

PipelineFn = Callable[..., PipelineResult]


class RunLease:
    """Non-blocking exclusive lease: at most one pipeline run per server."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.locked()


class ServerState:
    """Mutable state shared by the request handlers and the worker thread."""

    def __init__(self, pipeline_fn: PipelineFn, base_config: PipelineConfig) -> None:
        self.pipeline_fn = pipeline_fn
        self.base_config = base_config
        self.lease = RunLease()
        self.last_result: PipelineResult | None = None
        self.last_log: dict[str, str] | None = None
        self.thread: threading.Thread | None = None

    def record_log(self, level: str, message: str) -> None:
        self.last_log = {
            "time": dt.datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        }

    def run_in_background(self, config: PipelineConfig) -> None:
        """Run the pipeline; the lease must already be held and is released here."""
        try:
            try:
                result = self.pipeline_fn(config, log_callback=self.record_log)
                logger.info("Pipeline finished: success=%s", result.success)
            except Exception as exc:
                logger.exception("Pipeline crashed")
                result = PipelineResult(success=False, date=today_iso(), error=str(exc))
            self.last_result = result
        finally:
            self.lease.release()


def _parse_run_request(data: Any, base: PipelineConfig) -> PipelineConfig:
    """Merge a webhook body (``tags``, ``minTags``, ``maxTags``, ``createRepo``) into *base*."""
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    updates: dict[str, Any] = {}
    if data.get("tags") is not None:
        tags = data["tags"]
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValueError("tags must be a list of strings")
        updates["tags"] = tags
    if data.get("minTags") is not None:
        updates["min_tags"] = data["minTags"]
    if data.get("maxTags") is not None:
        updates["max_tags"] = data["maxTags"]
    if data.get("createRepo") is not None:
        updates["publish"] = data["createRepo"]
    return PipelineConfig.model_validate({**base.model_dump(), **updates})


def create_app(
    *,
    pipeline_fn: PipelineFn = run_pipeline,
    base_config: PipelineConfig | None = None,
    secret: str | None = None,
) -> Flask:
    """Build the webhook app.

    ``secret`` defaults to the ``WEBHOOK_SECRET`` environment variable; an
    empty secret disables authentication.
    """
    app = Flask(__name__)
    state = ServerState(pipeline_fn, base_config or PipelineConfig())
    app.extensions[EXTENSION_KEY] = state
    webhook_secret = os.getenv("WEBHOOK_SECRET", "") if secret is None else secret

    @app.before_request
    def _check_auth():
        if not webhook_secret:
            return None
        if request.headers.get("Authorization", "") != f"Bearer {webhook_secret}":
            return jsonify({"error": "Unauthorized"}), 401
        return None

    @app.route("/webhook/run", methods=["POST"])
    def webhook_run():
        """Start a pipeline run in the background."""
        if not state.lease.try_acquire():
            last = state.last_result
            return jsonify(
                {
                    "error": "Pipeline already running",
                    "lastResult": {"date": last.date, "tags": last.tags.tag_names} if last else None,
                }
            ), 409

        # The worker thread owns the lease once started; until then it is ours.
        started = False
        try:
            data = request.get_json(silent=True)
            try:
                config = _parse_run_request({} if data is None else data, state.base_config)
            except (ValueError, ValidationError) as exc:
                return jsonify({"error": f"Invalid request: {exc}"}), 400

            logger.info("Pipeline start requested: %s", data)
            state.thread = threading.Thread(
                target=state.run_in_background,
                args=(config,),
                name="tag-mixer-pipeline",
                daemon=True,
            )
            state.thread.start()
            started = True
        finally:
            if not started:
                state.lease.release()
        return jsonify({"message": "Pipeline started", "tags": config.tags or "random"}), 202

    @app.route("/status")
    def status():
        last = state.last_result
        return jsonify(
            {
                "isRunning": state.lease.held,
                "lastResult": {
                    "success": last.success,
                    "date": last.date,
                    "tags": last.tags.tag_names,
                    "outputDir": last.output_dir,
                    "repoUrl": last.repo_url,
                    "error": last.error,
                }
                if last
                else None,
                "lastLog": state.last_log,
            }
        )

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "timestamp": dt.datetime.now(dt.timezone.utc).isoformat()})

    return app


def run_server(host: str = "0.0.0.0", port: int | None = None) -> None:
    """Start the Flask server (port defaults to ``$PORT`` or 3847)."""
    port = port or int(os.getenv("PORT", "") or DEFAULT_PORT)
    app = create_app()
    logger.info("Steam Tag Mixer webhook server on %s:%s", host, port)
    logger.info("POST /webhook/run  - start a pipeline run")
    logger.info("GET  /status       - run status")
    logger.info("GET  /health       - health check")
    app.run(host=host, port=port, debug=False, threaded=True)
