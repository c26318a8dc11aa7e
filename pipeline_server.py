#!/usr/bin/env python3
"""
Pipeline Board Server
---------------------
JSON API over the pipeline SQLite store, shared by every board session that
connects over HTTP.

Usage:
    python pipeline_server.py --port 3000 --db /var/lib/pipeline-board/pipeline.db

API:
    GET    /api/board             → { tasks, counts, active, identities, assets }
    GET    /api/tasks             → { tasks, count }   (?department= &assigned_to= &user_id=)
    GET    /api/tasks/<id>        → { task }
    POST   /api/tasks             → { task }           (creator = X-Identity)
    PATCH  /api/tasks/<id>        → { task }
    DELETE /api/tasks/<id>        → { deleted }        (creator only)
    GET    /api/changes           → { changes, latest } (?since= &limit=)
    GET    /api/stats             → counts by department / status / priority
    GET    /api/identities        → { identities }
    GET    /api/assets            → { assets }
    GET    /health

Writes require X-API-Key; the acting identity travels in X-Identity.
"""

import hmac
import logging
import os
from functools import wraps
from pathlib import Path

from flask import Flask, jsonify, request

from pkg.pipeline.composer import TaskDraft, build_task
from pkg.pipeline.errors import PersistenceError, ValidationError
from pkg.pipeline.store import DEFAULT_DB, TaskStore

app = Flask(__name__)
logger = logging.getLogger("pipeline_server")

# ── Auth ─────────────────────────────────────────────────────────────────────

API_SECRET = os.environ.get("PIPELINE_API_SECRET", "")


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not API_SECRET:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, API_SECRET):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


def require_identity(f):
    """Decorator: reject writes that don't say who is acting."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not request.headers.get("X-Identity", "").strip():
            return jsonify({"error": "X-Identity header required"}), 401
        return f(*args, **kwargs)
    return decorated


def current_identity() -> str:
    return request.headers.get("X-Identity", "").strip()


# ── Config ───────────────────────────────────────────────────────────────────

def get_db_path() -> Path:
    env = os.environ.get("PIPELINE_DB")
    if env:
        return Path(env)
    return DEFAULT_DB


def get_store() -> TaskStore:
    return TaskStore(str(get_db_path()))


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(PersistenceError)
def handle_persistence_error(e):
    logger.error("Persistence error: %s", e)
    return jsonify({"error": str(e)}), 500


# ── Routes ───────────────────────────────────────────────────────────────────

@app.route("/api/board")
def api_board():
    store = get_store()
    tasks = store.query()
    return jsonify({
        "tasks":      [t.to_dict() for t in tasks],
        "counts":     store.counts_by_department(),
        "active":     sum(1 for t in tasks if t.status.value != "completed"),
        "identities": [i.to_dict() for i in store.list_identities()],
        "assets":     [a.to_dict() for a in store.list_assets()],
    })


@app.route("/api/tasks", methods=["GET"])
def api_tasks():
    filters = {}
    for key in ("id", "department", "status", "priority", "assigned_to", "user_id", "sku_ref"):
        value = request.args.get(key)
        if value:
            filters[key] = value
    tasks = get_store().query(filters)
    return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})


@app.route("/api/tasks/<task_id>", methods=["GET"])
def api_task(task_id):
    task = get_store().get(task_id)
    if not task:
        return jsonify({"error": "Task not found"}), 404
    return jsonify({"task": task.to_dict()})


@app.route("/api/tasks", methods=["POST"])
@require_api_key
@require_identity
def api_create_task():
    """Create a new task; status is always todo and the caller is the creator."""
    data = request.get_json(force=True, silent=True) or {}
    task = build_task(TaskDraft.from_dict(data), current_identity())
    created = get_store().insert(task)
    return jsonify({"task": created.to_dict(), "id": created.task_id}), 201


@app.route("/api/tasks/<task_id>", methods=["PATCH", "PUT"])
@require_api_key
@require_identity
def api_update_task(task_id):
    """Partial update. Any identity may edit; the creator can never change."""
    data = request.get_json(force=True, silent=True) or {}
    task = get_store().update(task_id, data)
    if not task:
        return jsonify({"error": "Task not found"}), 404
    return jsonify({"task": task.to_dict()})


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@require_api_key
@require_identity
def api_delete_task(task_id):
    """Delete a task. Only its creator may do this."""
    store = get_store()
    task = store.get(task_id)
    if not task:
        return jsonify({"deleted": False}), 404
    if task.creator_id != current_identity():
        logger.warning("Delete of %s by %s rejected", task_id, current_identity())
        return jsonify({"error": "Only the creator can delete this task"}), 403
    return jsonify({"deleted": store.delete(task_id)})


@app.route("/api/changes")
def api_changes():
    """Committed changes after ?since=<seq>, oldest first."""
    try:
        since = int(request.args.get("since", 0))
        limit = min(int(request.args.get("limit", 500)), 1000)
    except ValueError:
        return jsonify({"error": "since and limit must be integers"}), 400
    store = get_store()
    changes = store.changes_since(since, limit)
    return jsonify({
        "changes": [c.to_dict() for c in changes],
        "latest":  store.latest_change_seq(),
    })


@app.route("/api/stats")
def api_stats():
    return jsonify(get_store().stats())


@app.route("/api/identities")
def api_identities():
    return jsonify({"identities": [i.to_dict() for i in get_store().list_identities()]})


@app.route("/api/assets")
def api_assets():
    return jsonify({"assets": [a.to_dict() for a in get_store().list_assets()]})


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": str(get_db_path())})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    from pkg.pipeline.config import setup_logging

    parser = argparse.ArgumentParser(description="Pipeline Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to pipeline.db (overrides PIPELINE_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["PIPELINE_DB"] = args.db

    setup_logging(os.environ.get("PIPELINE_LOG_LEVEL", "INFO"))
    db_path = get_db_path()
    get_store()  # create tables up front

    print(f"""
╔═══════════════════════════════════════╗
║  Pipeline Board Server                ║
╠═══════════════════════════════════════╣
║  URL:  http://{args.host}:{args.port:<20}║
║  DB:   {str(db_path):<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)
