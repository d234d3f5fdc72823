"""
Health Checker for component health monitoring.

Probes the market data source, the scoring engine and the auxiliary
external APIs, and combines the results into a HealthReport.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from crypto_intel.core.score_service import ScoringEngine
    from crypto_intel.ingestion import MarketDataSource

logger = logging.getLogger(__name__)

DATA_SOURCE = "data_service"
SCORING_ENGINE = "ml_models"
APIS = "apis"


class HealthStatus(Enum):
    """Health status of a single component."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"


class OverallStatus(Enum):
    """Health status of the whole system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class ComponentHealth:
    """Health check result for a single component."""

    component: str
    status: HealthStatus
    message: str
    required: bool = True
    details: Dict[str, Any] = field(default_factory=dict)
    latency_ms: Optional[float] = None

    @property
    def is_healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "status": self.status.value,
            "message": self.message,
            "required": self.required,
            "details": self.details,
            "latency_ms": self.latency_ms,
        }


@dataclass
class HealthReport:
    """Point-in-time system health."""

    overall: OverallStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_healthy(self) -> bool:
        return self.overall is OverallStatus.HEALTHY

    def get(self, component: str) -> Optional[ComponentHealth]:
        return next((c for c in self.components if c.component == component), None)

    def unhealthy_components(self) -> List[ComponentHealth]:
        return [c for c in self.components if not c.is_healthy]

    def to_dict(self) -> dict:
        return {
            "overall": self.overall.value,
            "components": [c.to_dict() for c in self.components],
            "checked_at": self.checked_at.isoformat(),
        }


def calculate_overall_status(components: List[ComponentHealth]) -> OverallStatus:
    """
    Combine component statuses.

    Any required CRITICAL -> CRITICAL. Otherwise anything not healthy
    (including a critical non-required component) -> DEGRADED.
    """
    if any(c.required and c.status is HealthStatus.CRITICAL for c in components):
        return OverallStatus.CRITICAL

    if any(c.status is not HealthStatus.HEALTHY for c in components):
        return OverallStatus.DEGRADED

    return OverallStatus.HEALTHY


ApiProbe = Callable[[], Awaitable[Dict[str, bool]]]


class SimulatedApiProbe:
    """
    Stand-in for pinging the external market/social/news APIs.

    Each API is independently reported down with its configured odds.
    """

    DEFAULT_FAILURE_RATES = {
        "coinMarketCap": 0.2,
        "twitter": 0.3,
        "news": 0.1,
    }

    def __init__(
        self,
        failure_rates: Optional[Dict[str, float]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._failure_rates = dict(failure_rates or self.DEFAULT_FAILURE_RATES)
        self._rng = rng or random.Random()

    async def __call__(self) -> Dict[str, bool]:
        return {
            name: self._rng.random() >= rate
            for name, rate in self._failure_rates.items()
        }


class HealthChecker:
    """
    Checks health of system components.

    Monitors:
    - Market data source (connection and data presence)
    - Scoring engine (models loaded)
    - Auxiliary APIs (reachability, not required)

    Usage:
        checker = HealthChecker(data_source, scoring_engine)

        # Check single component
        health = await checker.check_data_source()

        # Check all components
        report = await checker.check_all()
    """

    def __init__(
        self,
        data_source: Optional["MarketDataSource"] = None,
        scoring_engine: Optional["ScoringEngine"] = None,
        api_probe: Optional[ApiProbe] = None,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            data_source: Market data source to check
            scoring_engine: Scoring engine to check
            api_probe: Async callable returning {api_name: reachable}
        """
        self._data_source = data_source
        self._scoring_engine = scoring_engine
        self._api_probe = api_probe or SimulatedApiProbe()

    async def check_data_source(self) -> ComponentHealth:
        """
        Check data source connection and data presence.

        Returns:
            ComponentHealth with status
        """
        if self._data_source is None:
            return ComponentHealth(
                component=DATA_SOURCE,
                status=HealthStatus.CRITICAL,
                message="No data service configured",
            )

        try:
            is_connected = self._data_source.is_connected
            coin_count = len(self._data_source.get_all_coins())
        except Exception as e:
            logger.error(f"Data service health check failed: {e}")
            return ComponentHealth(
                component=DATA_SOURCE,
                status=HealthStatus.CRITICAL,
                message=f"Data service error: {str(e)}",
            )

        details = {"connected": is_connected, "coins": coin_count}

        if not is_connected:
            return ComponentHealth(
                component=DATA_SOURCE,
                status=HealthStatus.UNHEALTHY,
                message="Data service is not connected",
                details=details,
            )

        if coin_count == 0:
            return ComponentHealth(
                component=DATA_SOURCE,
                status=HealthStatus.CRITICAL,
                message="Data service has no data",
                details=details,
            )

        return ComponentHealth(
            component=DATA_SOURCE,
            status=HealthStatus.HEALTHY,
            message="Data service is operational",
            details=details,
        )

    async def check_scoring_engine(self) -> ComponentHealth:
        """
        Check that the score models are loaded.

        Returns:
            ComponentHealth with status
        """
        if self._scoring_engine is None:
            return ComponentHealth(
                component=SCORING_ENGINE,
                status=HealthStatus.CRITICAL,
                message="No scoring engine configured",
            )

        try:
            model_info = self._scoring_engine.get_model_info()
        except Exception as e:
            logger.error(f"ML models health check failed: {e}")
            return ComponentHealth(
                component=SCORING_ENGINE,
                status=HealthStatus.CRITICAL,
                message=f"ML models error: {str(e)}",
            )

        if model_info.get("is_initialized"):
            return ComponentHealth(
                component=SCORING_ENGINE,
                status=HealthStatus.HEALTHY,
                message="ML models are operational",
                details=model_info,
            )

        return ComponentHealth(
            component=SCORING_ENGINE,
            status=HealthStatus.CRITICAL,
            message="ML models are not initialized",
            details=model_info,
        )

    async def check_apis(self) -> ComponentHealth:
        """
        Check auxiliary API reachability.

        Returns:
            ComponentHealth with status (never required)
        """
        start_time = time.time()

        try:
            api_status = await self._api_probe()
        except Exception as e:
            logger.error(f"API health check failed: {e}")
            return ComponentHealth(
                component=APIS,
                status=HealthStatus.CRITICAL,
                message=f"API check error: {str(e)}",
                required=False,
                latency_ms=(time.time() - start_time) * 1000,
            )

        latency_ms = (time.time() - start_time) * 1000
        details = {name: ("healthy" if up else "unhealthy") for name, up in api_status.items()}
        down = sum(1 for up in api_status.values() if not up)

        if down == 0:
            status, message = HealthStatus.HEALTHY, "All APIs are operational"
        elif down == 1:
            status, message = HealthStatus.UNHEALTHY, "Some APIs are degraded"
        else:
            status, message = HealthStatus.CRITICAL, "Multiple APIs are unavailable"

        return ComponentHealth(
            component=APIS,
            status=status,
            message=message,
            required=False,
            details=details,
            latency_ms=latency_ms,
        )

    async def check_all(self, timeout: float = 5.0) -> HealthReport:
        """
        Check all components with timeout.

        Args:
            timeout: Maximum time for all checks in seconds

        Returns:
            HealthReport with all component results
        """
        components = []

        checks = [
            (DATA_SOURCE, self.check_data_source, True),
            (SCORING_ENGINE, self.check_scoring_engine, True),
            (APIS, self.check_apis, False),
        ]

        for name, check_func, required in checks:
            try:
                result = await asyncio.wait_for(
                    check_func(),
                    timeout=timeout / len(checks),
                )
                components.append(result)
            except asyncio.TimeoutError:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.CRITICAL,
                    message=f"{name} check timed out",
                    required=required,
                ))
            except Exception as e:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.CRITICAL,
                    message=f"{name} check failed: {str(e)}",
                    required=required,
                ))

        return HealthReport(
            overall=calculate_overall_status(components),
            components=components,
        )
