"""Background maintenance: provisioning retries and stale checkout cleanup."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, Dict, Optional

from .app.services.billing import get_reconciliation_service, get_subscription_service

logger = logging.getLogger(__name__)


class MaintenanceJob(str, Enum):
    PROVISIONING_RETRY = "provisioning_retry"
    CHECKOUT_PURGE = "checkout_purge"


def _retry_provisioning(now: datetime) -> int:
    summary = get_reconciliation_service().retry_pending_provisioning(now)
    return summary.provisioned


def _purge_checkouts(now: datetime) -> int:
    return get_subscription_service().purge_stale_checkouts(now)


_JOB_RUNNERS: Dict[MaintenanceJob, Callable[[datetime], int]] = {
    MaintenanceJob.PROVISIONING_RETRY: _retry_provisioning,
    MaintenanceJob.CHECKOUT_PURGE: _purge_checkouts,
}

_scheduler_lock = Lock()
_workers: Dict[str, "_MaintenanceWorker"] = {}


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "items_processed": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
    }


_MAINTENANCE_METRICS: Dict[str, Dict[str, object]] = {job.value: _empty_metrics() for job in MaintenanceJob}
_metrics_lock = Lock()


def _record_run_start(job: MaintenanceJob, started_at: datetime) -> None:
    with _metrics_lock:
        metrics = _MAINTENANCE_METRICS[job.value]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        metrics["last_run_at"] = started_at


def _record_run_success(job: MaintenanceJob, completed_at: datetime, processed: int) -> None:
    with _metrics_lock:
        metrics = _MAINTENANCE_METRICS[job.value]
        metrics["items_processed"] = int(metrics.get("items_processed", 0)) + processed
        metrics["last_success_at"] = completed_at
        metrics["last_error"] = None


def _record_run_failure(job: MaintenanceJob, error: Exception) -> None:
    with _metrics_lock:
        metrics = _MAINTENANCE_METRICS[job.value]
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def run_maintenance_job(job: MaintenanceJob, *, now: Optional[datetime] = None) -> int:
    """Run one maintenance job and return how many items it handled."""

    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(job, current_time)
    try:
        processed = _JOB_RUNNERS[job](current_time)
    except Exception as exc:
        _record_run_failure(job, exc)
        logger.exception("Maintenance job failed", extra={"job": job.value})
        raise
    _record_run_success(job, current_time, processed)
    logger.info("Maintenance job completed", extra={"job": job.value, "processed": processed})
    return processed


class _MaintenanceWorker(Thread):
    def __init__(self, job: MaintenanceJob, *, initial_delay: float, interval: float):
        super().__init__(daemon=True, name=f"maintenance-{job.value}")
        self.job = job
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_maintenance_job(self.job)
            except Exception:
                # Errors are logged inside run_maintenance_job; keep the schedule.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_maintenance_scheduler(interval_seconds: float, *, initial_delay: Optional[float] = None) -> None:
    with _scheduler_lock:
        if _workers:
            return
        delay = interval_seconds if initial_delay is None else initial_delay
        for job in MaintenanceJob:
            _workers[job.value] = _MaintenanceWorker(job, initial_delay=delay, interval=interval_seconds)
        for worker in _workers.values():
            worker.start()
        logger.info(
            "Maintenance scheduler started",
            extra={"interval_seconds": interval_seconds, "initial_delay_seconds": round(delay, 2)},
        )


def shutdown_maintenance_scheduler() -> None:
    with _scheduler_lock:
        workers = list(_workers.values())
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(timeout=1.0)
        _workers.clear()
        logger.info("Maintenance scheduler stopped")


def is_scheduler_running() -> bool:
    with _scheduler_lock:
        return bool(_workers)


def get_maintenance_metrics() -> Dict[str, Dict[str, object]]:
    with _metrics_lock:
        snapshot: Dict[str, Dict[str, object]] = {}
        for key, value in _MAINTENANCE_METRICS.items():
            snapshot[key] = {
                **value,
                "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
            }
        return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        for metrics in _MAINTENANCE_METRICS.values():
            metrics.update(_empty_metrics())


__all__ = [
    "MaintenanceJob",
    "get_maintenance_metrics",
    "is_scheduler_running",
    "run_maintenance_job",
    "shutdown_maintenance_scheduler",
    "start_maintenance_scheduler",
]
