from __future__ import annotations

"""
JSON API (v1) for Ticket Printer.

Endpoints:
- POST /api/v1/jobs          : Submit a ticket payload (async). Returns 202 + Location
- GET  /api/v1/jobs          : Job history, newest first (?limit=)
- GET  /api/v1/jobs/<job_id> : Fetch job status (live, then history)
- GET  /api/v1/queue         : Queue snapshot (per-target processing flags, recent jobs)
- GET  /api/v1/printers      : Printers known to the host OS

Payload shape (POST /api/v1/jobs):
{"content": str, "target": str, "encoding": "text|base64"}
"""

import os

from flask import Blueprint, current_app, jsonify, request, url_for
from pydantic import ValidationError

from ticket_printer.printing.errors import InvalidJobError
from ticket_printer.printing.strategies import list_printers
from ticket_printer.printing.worker import ensure_worker, get_job, get_queue_status, submit
from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


MAX_CONTENT_BYTES = _env_int("TICKETPRINTER_MAX_CONTENT_BYTES", 512 * 1024)


def _json_error(msg: str, code: int = 400):
    return jsonify({"error": msg}), code


def _history_job(job_id: str):
    if not current_app.config.get("HISTORY_ENABLED", True):
        return None
    from ticket_printer.core import db as dbh

    try:
        return dbh.get_job_db(job_id)
    except Exception as e:
        current_app.logger.warning("History lookup for %s failed: %s", job_id, e)
        return None


@api_bp.post("/jobs")
def submit_job():
    """
    Accept a JSON ticket submission, validate and enqueue it.
    Returns 202 Accepted with a Location header to the job status resource.
    """
    if not request.is_json:
        return _json_error("Expected application/json body", 415)

    data = request.get_json(silent=True) or {}
    try:
        req = schemas.JobSubmitRequest.model_validate(
            data, context={"limits": {"MAX_CONTENT_BYTES": MAX_CONTENT_BYTES}}
        )
    except ValidationError as e:
        errors = e.errors()
        msg = errors[0].get("msg") if errors else str(e)
        return _json_error(msg or "invalid JSON payload", 400)

    try:
        job_id = submit(req.payload(), req.target)
    except InvalidJobError as e:
        return _json_error(str(e), 400)

    if current_app.config.get("START_WORKER_ON_SUBMIT", True):
        ensure_worker()

    api_href = url_for("api.job_status", job_id=job_id)
    resp_model = schemas.JobAcceptedResponse(id=job_id, status="pending", links=schemas.Links(self=api_href))
    resp = jsonify(resp_model.model_dump())
    resp.status_code = 202
    resp.headers["Location"] = api_href
    current_app.logger.info("POST /api/v1/jobs accepted id=%s target=%s", job_id, req.target)
    return resp


@api_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    """
    Return job status JSON (live or persisted), 404 if not found.
    """
    job = get_job(job_id)
    if job is not None:
        return schemas.JobOut.model_validate(job.to_dict()).model_dump(exclude_none=True)
    db_job = _history_job(job_id)
    if db_job:
        return schemas.JobOut.model_validate(db_job).model_dump(exclude_none=True)
    return _json_error("not_found", 404)


@api_bp.get("/jobs")
def job_history():
    """
    Finished jobs from the history store, newest first. ``?limit=`` caps the list (1-500, default 50).
    """
    limit = max(1, min(request.args.get("limit", default=50, type=int), 500))
    if not current_app.config.get("HISTORY_ENABLED", True):
        return jsonify({"jobs": []})
    from ticket_printer.core import db as dbh

    try:
        rows = dbh.list_jobs_db(limit)
    except Exception as e:
        current_app.logger.warning("History listing failed: %s", e)
        return _json_error("history_unavailable", 503)
    return jsonify({"jobs": [schemas.JobOut.model_validate(r).model_dump(exclude_none=True) for r in rows]})


@api_bp.get("/queue")
def queue_status():
    return jsonify(get_queue_status())


@api_bp.get("/printers")
def printers():
    return jsonify({"printers": list_printers()})
