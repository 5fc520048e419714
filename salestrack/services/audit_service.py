"""Audit service — change diffs and the fire-and-forget audit recorder.

Every mutation path calls audit_recorder.record(...) after its own write
(or after its failure, with action FAILED). The recorder:

  - snapshots the payload to plain JSON at call time, so later changes to
    the caller's objects never leak into the log
  - hands the entry to a bounded queue drained by one daemon worker thread
    (AUDIT_ASYNC=False writes inline instead, used by the test suite)
  - never raises to the caller: a full queue drops the entry, a storage
    error is rolled back, and both are logged

Usage:
    from salestrack.extensions import audit_recorder

    audit_recorder.record(
        "UPDATE",
        entity_type="ACTIVITY",
        entity_id=activity.id,
        user_id=user.id, user_name=user.name, user_role=user.role,
        details={"changes": changes},
        ip_address=ip, user_agent=ua,
    )
"""

import json
import logging
import queue
import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal

logger = logging.getLogger(__name__)

_STOP = object()
_FLUSH_POLL_SECONDS = 0.1


# ──────────────────────────────────────────────
# Diff computation
# ──────────────────────────────────────────────

def _json_default(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def to_jsonable(value):
    """Deep-copy a payload into JSON-native types (dict/list/str/number/None)."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=_json_default))


def _canonical(value):
    return json.dumps(value, default=_json_default, sort_keys=True)


def values_equal(old, new):
    """Structural equality: same serialized form means unchanged."""
    return _canonical(old) == _canonical(new)


def compute_changes(before, after, fields):
    """Field-level diff restricted to `fields`.

    Args:
        before: Mapping of field -> value before the mutation.
        after: Mapping of field -> value after the mutation.
        fields: The fields the mutation request actually supplied (plus any
            the server forced). Nothing outside this set is compared.

    Returns:
        {field: {"oldValue": ..., "newValue": ...}} for changed fields only,
        values already JSON-safe.
    """
    changes = {}
    for field in fields:
        old = before.get(field)
        new = after.get(field)
        if not values_equal(old, new):
            changes[field] = {
                "oldValue": to_jsonable(old),
                "newValue": to_jsonable(new),
            }
    return changes


def snapshot(model, fields=None):
    """JSON-safe dict of a model's column values (for CREATE/DELETE details)."""
    columns = fields or [c.key for c in model.__table__.columns]
    return to_jsonable({name: getattr(model, name) for name in columns})


# ──────────────────────────────────────────────
# Recorder
# ──────────────────────────────────────────────

class AuditRecorder:
    """Flask extension that appends AuditLog rows without blocking callers."""

    def __init__(self, app=None):
        self.app = None
        self.async_mode = True
        self.dropped = 0
        self._queue = None
        self._worker = None
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.async_mode = app.config.get("AUDIT_ASYNC", True)
        self._queue = queue.Queue(maxsize=app.config.get("AUDIT_QUEUE_MAXSIZE", 1000))
        app.extensions["audit_recorder"] = self

    # -- public API --

    def record(
        self,
        action,
        *,
        entity_type=None,
        entity_id=None,
        user_id=None,
        user_name=None,
        user_role=None,
        target_user_id=None,
        details=None,
        ip_address=None,
        user_agent=None,
        timestamp=None,
    ):
        """Append one audit entry. Returns immediately; never raises."""
        try:
            entry = {
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "user_id": user_id,
                "user_name": user_name,
                "user_role": user_role,
                "target_user_id": target_user_id,
                "details": to_jsonable(details),
                "ip_address": ip_address,
                "user_agent": (user_agent or "")[:512] or None,
                "timestamp": timestamp or datetime.now(timezone.utc),
            }
        except (TypeError, ValueError) as e:
            logger.error(f"AUDIT LOGGING FAILED (payload): {e} action={action} entity={entity_type}:{entity_id}")
            return

        if not self.async_mode:
            self._write(entry)
            return

        self._ensure_worker()
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            with self._lock:
                self.dropped += 1
                dropped = self.dropped
            logger.error(
                f"AUDIT LOGGING DROPPED (queue full, {dropped} dropped so far): "
                f"{action} {entity_type}:{entity_id}"
            )

    def record_failure(self, operation, error, *, entity_type=None, entity_id=None, **kwargs):
        """Shorthand for a FAILED entry describing a mutation that did not go through."""
        details = dict(kwargs.pop("details", None) or {})
        details.update({"error": str(error), "operation": operation})
        self.record(
            "FAILED",
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            **kwargs,
        )

    def flush(self, timeout=None):
        """Block until every queued entry has been written.

        Returns False on timeout, or when the worker is gone and entries
        are still pending.
        """
        if self._queue is None or self._worker is None:
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if not self._worker.is_alive():
                    logger.error(
                        f"AUDIT LOGGING STALLED: worker stopped with "
                        f"{self._queue.unfinished_tasks} entries pending"
                    )
                    return False
                wait = _FLUSH_POLL_SECONDS
                if deadline is not None:
                    wait = min(wait, deadline - time.monotonic())
                    if wait <= 0:
                        return False
                self._queue.all_tasks_done.wait(wait)
        return True

    def shutdown(self, timeout=5):
        """Drain the queue and stop the worker."""
        if self._worker is None:
            return
        self.flush(timeout)
        if self._worker.is_alive():
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.error("Audit worker did not accept the stop signal")
        self._worker.join(timeout)
        self._worker = None

    # -- internals --

    def _ensure_worker(self):
        if self._worker is not None and self._worker.is_alive():
            return
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run, name="audit-recorder", daemon=True
            )
            self._worker.start()

    def _run(self):
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                with self.app.app_context():
                    self._write(entry)
            finally:
                self._queue.task_done()

    def _write(self, entry):
        """Persist one entry. Storage errors are logged, never raised."""
        from salestrack.extensions import db
        from salestrack.models.audit import AuditLog

        try:
            db.session.add(AuditLog(**entry))
            db.session.commit()
        except Exception as e:
            logger.error(
                f"AUDIT LOGGING FAILED: {e} action={entry.get('action')} "
                f"entity={entry.get('entity_type')}:{entry.get('entity_id')}",
                exc_info=True,
            )
            try:
                db.session.rollback()
            except Exception as rollback_error:
                logger.error(f"Audit rollback failed: {rollback_error}")


# ──────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────

def entity_history(entity_type, entity_id):
    """All audit entries for one entity, oldest first."""
    from salestrack.models.audit import AuditLog

    return (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.timestamp.asc())
        .all()
    )


def actor_identity(user):
    """Actor fields captured by value: {user_id, user_name, user_role}."""
    if user is None or not getattr(user, "is_authenticated", False):
        return {}
    return {
        "user_id": user.id,
        "user_name": user.name,
        "user_role": user.role,
    }
