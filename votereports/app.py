import logging
import os
from typing import Any, Dict

import click
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from . import aggregator, audit
from .errors import ReportError, InvalidArgument
from .models import db
from .utils.calc import hourly_axis
from .utils.context import current_context
from .utils.settings import get_report_settings, save_report_settings

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(overrides: Dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///votereports.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")
    if overrides:
        app.config.update(overrides)
    # position/program ids are dict keys; keep report order
    app.json.sort_keys = False

    _configure_logging(app.config["LOG_LEVEL"])
    db.init_app(app)

    @app.cli.command("init-db")
    def init_db():
        """Create the voting and audit tables."""
        db.create_all()
        click.echo("Database initialised.")

    # -------------------------
    # Error handling
    # -------------------------
    @app.errorhandler(ReportError)
    def handle_report_error(exc: ReportError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind, exc.message)
        else:
            logger.info("%s: %s", exc.kind, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.name.lower().replace(" ", "_"), "message": exc.description}), exc.code

    def _int_arg(name: str):
        raw = (request.args.get(name) or "").strip()
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            raise InvalidArgument(f"{name} must be an integer, got {raw!r}.")

    # -------------------------
    # Reports
    # -------------------------
    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    @app.get("/api/elections/<int:election_id>/tally")
    def api_tally(election_id: int):
        settings = get_report_settings()
        position_id = _int_arg("position_id")
        report = aggregator.tally(election_id, position_id=position_id, close_margin=int(settings["close_race_margin"]))
        audit.record(current_context(), "report.tally", f"election_id={election_id}")
        return jsonify(report)

    @app.get("/api/elections/<int:election_id>/turnout")
    def api_turnout(election_id: int):
        program_id = _int_arg("program_id")
        report = aggregator.turnout(election_id, program_id=program_id)
        audit.record(current_context(), "report.turnout", f"election_id={election_id}")
        return jsonify(report)

    @app.get("/api/elections/<int:election_id>/timeline")
    def api_timeline(election_id: int):
        settings = get_report_settings()
        time_range = request.args.get("range", "all")
        report = aggregator.timeline(election_id, time_range=time_range)
        report["hourly"] = hourly_axis(report["buckets"])
        report["peak_times"] = aggregator.peak_times(
            election_id, limit=int(settings["peak_times_limit"]), time_range=time_range
        )
        audit.record(current_context(), "report.timeline", f"election_id={election_id} range={report['range']}")
        return jsonify(report)

    @app.get("/api/summary")
    def api_summary():
        election_id = _int_arg("election_id")
        program_id = _int_arg("program_id")
        report = aggregator.summary(election_id, time_range=request.args.get("range", "all"), program_id=program_id)
        scope = f"election_id={election_id}" if election_id is not None else "system"
        if program_id is not None:
            scope += f" program_id={program_id}"
        audit.record(current_context(), "report.summary", scope)
        return jsonify(report)

    @app.get("/api/compare")
    def api_compare():
        raw_ids = [r.strip() for r in request.args.getlist("election_id") if r.strip()]
        try:
            election_ids = [int(r) for r in raw_ids]
        except ValueError:
            raise InvalidArgument("election_id values must be integers.")
        settings = get_report_settings()
        report = aggregator.compare(election_ids, close_margin=int(settings["close_race_margin"]))
        audit.record(current_context(), "report.compare", "election_ids=" + ",".join(str(i) for i in election_ids))
        return jsonify(report)

    # -------------------------
    # Report settings
    # -------------------------
    @app.get("/api/settings/reports")
    def api_get_settings():
        return jsonify(get_report_settings())

    @app.post("/api/settings/reports")
    def api_save_settings():
        payload = request.get_json(silent=True)
        if payload is None:
            raise InvalidArgument("Expected a JSON body.")
        settings = save_report_settings(payload)
        audit.record(current_context(), "settings.reports", ", ".join(f"{k}={v}" for k, v in sorted(payload.items())))
        return jsonify(settings)

    return app
