"""
Monitoring Layer - Health checks, self-healing, error log and dashboard.

This module provides:
    - HealthChecker: Component probes with timeouts
    - HealthStatus / OverallStatus: Component and system status enums
    - ComponentHealth: Health check result for a single component
    - HealthReport: Combined system health
    - SelfHealingMonitor: Periodic evaluation with a bounded recovery fuse
    - ErrorLog: Bounded most-recent-N error log
    - Dashboard / create_app: Flask dashboard factory

Health Checks:
    - Data source connected AND has data
    - Score models loaded
    - Auxiliary APIs reachable (not required)

Recovery Fuse:
    - Each recovery attempt increments a counter
    - After max attempts, recovery stops until explicitly reset
"""

from .health_checker import (
    ComponentHealth,
    HealthChecker,
    HealthReport,
    HealthStatus,
    OverallStatus,
    SimulatedApiProbe,
)
from .error_log import ErrorLog, ErrorLogEntry, ErrorType, Severity
from .self_healing import SelfHealingMonitor
from .dashboard import Dashboard, create_app

__all__ = [
    # Health checking
    "HealthChecker",
    "HealthStatus",
    "OverallStatus",
    "ComponentHealth",
    "HealthReport",
    "SimulatedApiProbe",
    # Self-healing
    "SelfHealingMonitor",
    # Error log
    "ErrorLog",
    "ErrorLogEntry",
    "ErrorType",
    "Severity",
    # Dashboard
    "Dashboard",
    "create_app",
]
