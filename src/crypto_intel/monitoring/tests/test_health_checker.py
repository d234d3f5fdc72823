"""
Tests for health checking.

Health checks verify the data source, the scoring engine and the
auxiliary APIs, then combine them into an overall status.
"""
import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from crypto_intel.monitoring.health_checker import (
    APIS,
    DATA_SOURCE,
    SCORING_ENGINE,
    ComponentHealth,
    HealthChecker,
    HealthStatus,
    OverallStatus,
    SimulatedApiProbe,
    calculate_overall_status,
)


def _component(name, status, required=True):
    return ComponentHealth(component=name, status=status, message="", required=required)


class TestDataSourceCheck:
    """Tests for check_data_source()."""

    @pytest.mark.asyncio
    async def test_healthy(self, mock_data_source_healthy):
        health = await HealthChecker(data_source=mock_data_source_healthy).check_data_source()

        assert health.status is HealthStatus.HEALTHY
        assert health.details == {"connected": True, "coins": 30}

    @pytest.mark.asyncio
    async def test_connected_but_empty_is_critical(self, mock_data_source_empty):
        health = await HealthChecker(data_source=mock_data_source_empty).check_data_source()

        assert health.status is HealthStatus.CRITICAL
        assert health.message == "Data service has no data"

    @pytest.mark.asyncio
    async def test_disconnected_is_unhealthy(self, mock_data_source_disconnected):
        health = await HealthChecker(data_source=mock_data_source_disconnected).check_data_source()

        assert health.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_missing_source_is_critical(self):
        health = await HealthChecker().check_data_source()

        assert health.status is HealthStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_probe_error_is_critical(self):
        source = MagicMock()
        source.get_all_coins = MagicMock(side_effect=RuntimeError("corrupt"))

        health = await HealthChecker(data_source=source).check_data_source()

        assert health.status is HealthStatus.CRITICAL
        assert "corrupt" in health.message

    @pytest.mark.asyncio
    async def test_real_source_before_first_fetch(self, data_source):
        health = await HealthChecker(data_source=data_source).check_data_source()

        assert health.status is HealthStatus.UNHEALTHY


class TestScoringEngineCheck:
    """Tests for check_scoring_engine()."""

    @pytest.mark.asyncio
    async def test_initialized_is_healthy(self, mock_engine_ready):
        health = await HealthChecker(scoring_engine=mock_engine_ready).check_scoring_engine()

        assert health.status is HealthStatus.HEALTHY
        assert health.component == SCORING_ENGINE

    @pytest.mark.asyncio
    async def test_not_initialized_is_critical(self, mock_engine_unloaded):
        health = await HealthChecker(scoring_engine=mock_engine_unloaded).check_scoring_engine()

        assert health.status is HealthStatus.CRITICAL


class TestApiCheck:
    """Tests for check_apis()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_map,expected", [
        ({"a": True, "b": True, "c": True}, HealthStatus.HEALTHY),
        ({"a": False, "b": True, "c": True}, HealthStatus.UNHEALTHY),
        ({"a": False, "b": False, "c": True}, HealthStatus.CRITICAL),
    ])
    async def test_down_count(self, status_map, expected):
        checker = HealthChecker(api_probe=AsyncMock(return_value=status_map))

        health = await checker.check_apis()

        assert health.status is expected
        assert health.required is False
        assert health.latency_ms is not None

    @pytest.mark.asyncio
    async def test_probe_exception(self):
        checker = HealthChecker(api_probe=AsyncMock(side_effect=OSError("dns")))

        health = await checker.check_apis()

        assert health.status is HealthStatus.CRITICAL
        assert health.required is False

    @pytest.mark.asyncio
    async def test_simulated_probe_honours_rates(self):
        probe = SimulatedApiProbe({"always_down": 1.0, "never_down": 0.0}, rng=random.Random(0))

        assert await probe() == {"always_down": False, "never_down": True}


class TestOverallStatus:
    """Tests for calculate_overall_status()."""

    def test_all_healthy(self):
        components = [_component("a", HealthStatus.HEALTHY), _component("b", HealthStatus.HEALTHY)]

        assert calculate_overall_status(components) is OverallStatus.HEALTHY

    def test_required_critical_is_critical(self):
        components = [_component("a", HealthStatus.CRITICAL), _component("b", HealthStatus.HEALTHY)]

        assert calculate_overall_status(components) is OverallStatus.CRITICAL

    def test_unrequired_critical_is_degraded(self):
        components = [
            _component("a", HealthStatus.HEALTHY),
            _component(APIS, HealthStatus.CRITICAL, required=False),
        ]

        assert calculate_overall_status(components) is OverallStatus.DEGRADED

    def test_unhealthy_is_degraded(self):
        components = [_component("a", HealthStatus.UNHEALTHY)]

        assert calculate_overall_status(components) is OverallStatus.DEGRADED


class TestCheckAll:
    """Tests for check_all()."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, mock_data_source_healthy, mock_engine_ready, api_probe):
        checker = HealthChecker(mock_data_source_healthy, mock_engine_ready, api_probe)

        report = await checker.check_all()

        assert report.is_healthy
        assert [c.component for c in report.components] == [DATA_SOURCE, SCORING_ENGINE, APIS]

    @pytest.mark.asyncio
    async def test_api_outage_only_degrades(self, mock_data_source_healthy, mock_engine_ready):
        probe = AsyncMock(return_value={"a": False, "b": False, "c": False})
        checker = HealthChecker(mock_data_source_healthy, mock_engine_ready, probe)

        report = await checker.check_all()

        assert report.overall is OverallStatus.DEGRADED
        assert [c.component for c in report.unhealthy_components()] == [APIS]

    @pytest.mark.asyncio
    async def test_timeout_is_critical(self, mock_data_source_healthy, mock_engine_ready):
        async def hang():
            await asyncio.sleep(10)
            return {}

        checker = HealthChecker(mock_data_source_healthy, mock_engine_ready, hang)

        report = await checker.check_all(timeout=0.03)

        apis = report.get(APIS)
        assert apis.status is HealthStatus.CRITICAL
        assert "timed out" in apis.message
        assert apis.required is False
        assert report.overall is OverallStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_real_components_before_startup(self, checker):
        report = await checker.check_all()

        assert report.overall is OverallStatus.CRITICAL
        assert report.get(DATA_SOURCE).status is HealthStatus.UNHEALTHY
        assert report.get(SCORING_ENGINE).status is HealthStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_report_to_dict(self, checker):
        data = (await checker.check_all()).to_dict()

        assert data["overall"] == "critical"
        assert len(data["components"]) == 3
        assert "checked_at" in data
