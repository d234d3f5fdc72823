"""
Self-healing monitor.

Runs health evaluations, records them in the error log, and re-initializes
unhealthy subsystems with a bounded number of attempts (the recovery fuse).

Fuse behaviour:
    - Each recovery attempt increments the attempt counter.
    - Once the counter exceeds max_recovery_attempts the fuse is tripped:
      a critical "recovery_failed" entry is logged and no re-initialization
      is attempted until reset_recovery_attempts() is called.
    - The counter resets to zero when the post-recovery evaluation is healthy.
    - There is no time-based reset.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from .error_log import (
    DEFAULT_RETRIEVAL_LIMIT,
    ErrorLog,
    ErrorLogEntry,
    ErrorType,
    Severity,
)
from .health_checker import HealthChecker, HealthReport

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECOVERY_ATTEMPTS = 5

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


class Recoverable(Protocol):
    """A subsystem that can be re-initialized."""

    async def initialize(self) -> bool:
        ...


class SelfHealingMonitor:
    """
    Health evaluation plus bounded recovery.

    Usage:
        monitor = SelfHealingMonitor(
            checker,
            recovery_targets={"data_service": source, "ml_models": engine},
        )

        report = await monitor.check_system_health()
        monitor.log_error("data_fetch", "error", "Failed to fetch market data")
    """

    def __init__(
        self,
        checker: HealthChecker,
        recovery_targets: Optional[Dict[str, Recoverable]] = None,
        error_log: Optional[ErrorLog] = None,
        max_recovery_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS,
        check_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            checker: Health checker producing reports
            recovery_targets: Component name -> object with async initialize()
            error_log: Shared error log (a new one is created if omitted)
            max_recovery_attempts: Attempts allowed before the fuse trips
            check_timeout: Timeout passed to HealthChecker.check_all
        """
        self._checker = checker
        self._targets: Dict[str, Recoverable] = dict(recovery_targets or {})
        self._error_log = error_log if error_log is not None else ErrorLog()
        self._max_attempts = max_recovery_attempts
        self._check_timeout = check_timeout

        self._recovery_attempts = 0
        self._recovery_lock = asyncio.Lock()
        self._last_report: Optional[HealthReport] = None
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def error_log(self) -> ErrorLog:
        return self._error_log

    @property
    def recovery_attempts(self) -> int:
        return self._recovery_attempts

    @property
    def max_recovery_attempts(self) -> int:
        return self._max_attempts

    @property
    def fuse_tripped(self) -> bool:
        return self._recovery_attempts > self._max_attempts

    @property
    def last_report(self) -> Optional[HealthReport]:
        return self._last_report

    # =========================================================================
    # Health evaluation
    # =========================================================================

    async def probe(self) -> HealthReport:
        """Run all probes without logging, storing or recovering."""
        return await self._checker.check_all(timeout=self._check_timeout)

    async def _evaluate(self) -> HealthReport:
        """Run all probes, store and log the result. Never recovers."""
        report = await self._checker.check_all(timeout=self._check_timeout)
        self._last_report = report

        severity = Severity.INFO if report.is_healthy else Severity.WARNING
        self._error_log.append(
            ErrorType.HEALTH_CHECK,
            severity,
            f"System health: {report.overall.value}",
            details={c.component: c.status.value for c in report.components},
        )
        return report

    async def check_system_health(self) -> HealthReport:
        """
        Evaluate system health, recovering if anything is not healthy.

        Returns:
            The report from this evaluation (before any recovery). The
            post-recovery report is available as last_report.
        """
        report = await self._evaluate()

        if report.is_healthy:
            logger.debug("System health check passed")
        else:
            logger.warning(
                f"System health {report.overall.value}: "
                + ", ".join(f"{c.component}={c.status.value}" for c in report.unhealthy_components())
            )
            await self.attempt_recovery(report)

        return report

    # =========================================================================
    # Recovery
    # =========================================================================

    async def attempt_recovery(self, report: Optional[HealthReport] = None) -> bool:
        """
        Try to bring unhealthy subsystems back.

        Concurrent calls are serialized so the attempt counter is never
        corrupted.

        Args:
            report: Report that triggered recovery; evaluated fresh if None

        Returns:
            True if the system is healthy afterwards
        """
        async with self._recovery_lock:
            if report is None:
                report = await self._evaluate()
                if report.is_healthy:
                    return True

            if not self.fuse_tripped:
                self._recovery_attempts += 1

            if self.fuse_tripped:
                entry = self._error_log.append(
                    ErrorType.RECOVERY_FAILED,
                    Severity.CRITICAL,
                    "Maximum recovery attempts reached",
                    details={"attempts": self._max_attempts},
                )
                logger.critical(entry.message)
                return False

            attempt = self._recovery_attempts
            for component in report.unhealthy_components():
                target = self._targets.get(component.component)
                if target is None:
                    continue
                logger.info(f"Re-initializing {component.component}")
                try:
                    await target.initialize()
                except Exception as e:
                    logger.error(f"Recovery of {component.component} failed: {e}")
                    self._error_log.append(
                        ErrorType.RECOVERY_ATTEMPT,
                        Severity.ERROR,
                        f"Failed to re-initialize {component.component}",
                        details=str(e),
                    )

            self._log(
                ErrorType.RECOVERY_ATTEMPT,
                Severity.WARNING,
                f"Recovery attempt {attempt}/{self._max_attempts}",
                details={"status": report.overall.value},
            )

            after = await self._evaluate()
            if after.is_healthy:
                self._recovery_attempts = 0
                logger.info("System recovered")
                return True

            return False

    def reset_recovery_attempts(self) -> None:
        """Reset the fuse."""
        if self._recovery_attempts:
            logger.info(f"Recovery counter reset (was {self._recovery_attempts})")
        self._recovery_attempts = 0

    # =========================================================================
    # Error log
    # =========================================================================

    def _log(
        self,
        error_type: ErrorType | str,
        severity: Severity | str,
        message: str,
        details: Optional[Any] = None,
    ) -> ErrorLogEntry:
        entry = self._error_log.append(error_type, severity, message, details)
        logger.log(_LOG_LEVELS[entry.severity], f"[{entry.type}] {message}")
        return entry

    def log_error(
        self,
        error_type: ErrorType | str,
        severity: Severity | str,
        message: str,
        details: Optional[Any] = None,
    ) -> ErrorLogEntry:
        """
        Record an error. Critical entries schedule a recovery attempt on
        the running event loop.
        """
        entry = self._log(error_type, severity, message, details)

        if entry.severity is Severity.CRITICAL:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop; recovery not scheduled")
                return entry
            task = loop.create_task(self._recover_in_background())
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return entry

    async def _recover_in_background(self) -> None:
        try:
            await self.attempt_recovery()
        except Exception as e:
            logger.error(f"Background recovery failed: {e}")

    def get_error_log(self, limit: int = DEFAULT_RETRIEVAL_LIMIT) -> list[ErrorLogEntry]:
        return self._error_log.recent(limit)

    def get_health_status(self) -> dict:
        """Latest health summary for the dashboard."""
        report = self._last_report
        return {
            "overall": report.overall.value if report else "unknown",
            "components": [c.to_dict() for c in report.components] if report else [],
            "checked_at": report.checked_at.isoformat() if report else None,
            "recovery_attempts": self._recovery_attempts,
            "max_recovery_attempts": self._max_attempts,
            "fuse_tripped": self.fuse_tripped,
        }

    async def stop(self) -> None:
        """Cancel any scheduled background recovery."""
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
