"""Periodic recalculation sweep.

Runs ``RecalculationService.recalculate_all`` on a fixed interval, independent
of request traffic. It is the reconciler of last resort for triggers that
failed or were dropped. A tick is skipped while the previous run is still in
flight, and ``stop()`` interrupts the wait between ticks immediately.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Optional

from app.config import SWEEP_SETTINGS
from app.models.db.enums import RecalculationTrigger
from app.services.recalculation import BatchRecalculationResult, RecalculationService
from app.utils import get_logger
from app.utils.time import utc_now

logger = get_logger(__name__)


class PeriodicRecalculationSweep:
    def __init__(
        self,
        service: RecalculationService,
        *,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
    ) -> None:
        self.service = service
        self.interval_seconds = float(interval_seconds if interval_seconds is not None else SWEEP_SETTINGS["interval_seconds"])
        self.initial_delay_seconds = float(initial_delay_seconds if initial_delay_seconds is not None else SWEEP_SETTINGS["initial_delay_seconds"])
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_started_at: Optional[datetime] = None
        self.last_result: Optional[dict[str, Any]] = None
        self.last_error: Optional[str] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="recalculation-sweep", daemon=True)
        self._thread.start()
        logger.info("Periodic recalculation sweep started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout if timeout is not None else float(SWEEP_SETTINGS["shutdown_timeout_seconds"]))
            if self._thread.is_alive():
                logger.warning("Sweep still finishing an in-flight run at shutdown")
        logger.info("Periodic recalculation sweep stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    def _loop(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.interval_seconds):
                break

    def run_once(self) -> Optional[BatchRecalculationResult]:
        """Run one sweep now. Returns None when skipped (already in flight) or failed."""
        if not self._run_lock.acquire(blocking=False):
            self.skipped += 1
            logger.info("Sweep tick skipped: previous run still in flight")
            return None
        try:
            self.last_started_at = utc_now()
            result = self.service.recalculate_all(trigger=RecalculationTrigger.PERIODIC_SWEEP)
            self.runs += 1
            self.last_result = result.to_dict()
            self.last_error = None
            logger.info(
                "Sweep completed",
                total=result.total,
                succeeded=result.succeeded,
                changed=len(result.changed),
                errors=len(result.errors),
            )
            return result
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error("Sweep run failed", error=str(e), exc_info=True)
            return None
        finally:
            self._run_lock.release()

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "in_flight": self.in_flight,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


__all__ = ["PeriodicRecalculationSweep"]
