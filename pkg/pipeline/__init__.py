# Production pipeline board: shared task board with optimistic moves and a live change feed
#
# Components:
#   schema.py      - Data model (Task, Department, TaskStatus, TaskPriority, ChangeEvent)
#   errors.py      - Error hierarchy surfaced to callers
#   store.py       - SQLite backing store with change log
#   client.py      - Async store client and change subscriptions
#   http_client.py - Async client for pipeline_server.py
#   board.py       - Board state manager (optimistic moves, reconciliation)
#   drag.py        - Drag/drop controller
#   feed.py        - Change-feed listener with reconnect
#   guard.py       - Creator-only delete enforcement
#   composer.py    - New task validation and submission
#   session.py     - Per-session wiring and lifecycle
#   config.py      - YAML/env configuration and logging setup
