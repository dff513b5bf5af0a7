"""
FPO Lifecycle Service
Scheduler Service.

Jobs are plain functions registered with ``@register_job`` and run inside
an app context, either from the CLI (``flask fpo-setup-retry-sweep``) or
from an external cron that shells out to it.

A job never runs twice at the same time inside one process: a second
``run_job`` for a job that is still running returns ``status="skipped"``
instead of queueing. Across processes, the lifecycle controller's version
guard keeps two sweeps from applying the same retry twice.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask

logger = logging.getLogger(__name__)


_job_registry: dict[str, Callable] = {}
_job_locks: dict[str, threading.Lock] = {}


def register_job(name: str):
    """Decorator adding a job function to the registry.

    Usage:
        @register_job("fpo_setup_retry_sweep")
        def sweep_failed_setups(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        _job_locks.setdefault(name, threading.Lock())
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


class SchedulerService:
    """Runs registered jobs with timing, overlap protection and error capture."""

    _app: Flask | None = None
    _last_runs: dict[str, dict] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with jobs: %s", ", ".join(sorted(_job_registry)) or "none")

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute one job by name.

        Returns:
            {"job_name", "status", "started_at", "duration_ms", "result", "error"}
            where status is "success", "failed" or "skipped" (already running),
            or {"status": "error", "error": ...} for an unknown job.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        lock = _job_locks[job_name]
        if not lock.acquire(blocking=False):
            logger.warning("Job %s is already running; skipping this trigger", job_name)
            return {"job_name": job_name, "status": "skipped", "error": "already running"}

        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        result = None
        error = None
        status = "success"
        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)
        finally:
            lock.release()

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Job %s finished status=%s duration_ms=%d", job_name, status, duration_ms)

        run = {
            "job_name": job_name,
            "status": status,
            "started_at": started_at.isoformat(),
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }
        cls._last_runs[job_name] = run
        return run

    @classmethod
    def last_run(cls, job_name: str) -> dict | None:
        """Most recent completed run of ``job_name`` in this process."""
        return cls._last_runs.get(job_name)
