"""
Orchestrator composition and cross-component operation tests
"""
import asyncio
import json
from datetime import timedelta
from io import BytesIO

import pytest
from openpyxl import load_workbook

from orchestrator.api.schemas import (
    BatchStatus,
    HealthStatus,
    ReloadOutcome,
    UsageFilter,
    UsageRecordCreate,
)
from orchestrator.core.config import Settings
from orchestrator.core.exceptions import ValidationError
from orchestrator.services.orchestrator import ProviderOrchestrator
from orchestrator.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        health_check_enabled=False,
        redis_enabled=False,
        ollama_base_url="http://ollama.test:11434",
        usage_retention_days=30,
    )


@pytest.fixture
def orchestrator(settings, session_factory, probe_client, clock):
    return ProviderOrchestrator.build(settings, session_factory, probe_client, clock=clock)


async def record(orchestrator, provider_id, **overrides):
    data = {
        "provider_id": provider_id,
        "model": "gpt-4o",
        "tokens_in": 10,
        "tokens_out": 20,
        "cost_usd": 0.5,
        "success": True,
    }
    data.update(overrides)
    return await orchestrator.ledger.record_attempt(UsageRecordCreate(**data))


@pytest.mark.asyncio
class TestBuild:
    """Composition from settings"""

    async def test_components_share_registry_and_clock(self, orchestrator, clock):
        assert orchestrator.selector.registry is orchestrator.registry
        assert orchestrator.checker.registry is orchestrator.registry
        assert orchestrator.ledger.registry is orchestrator.registry
        assert isinstance(orchestrator.ledger.rate_limiter, SlidingWindowRateLimiter)
        assert orchestrator.retention.retention_days == 30
        assert orchestrator.clock is clock

    async def test_background_tasks_start_and_stop(self, orchestrator):
        orchestrator.start_background_tasks(health_checks=False)
        assert not orchestrator.scheduler.running

        await orchestrator.stop_background_tasks()

        orchestrator.start_background_tasks()
        assert orchestrator.scheduler.running
        await orchestrator.stop_background_tasks()
        assert not orchestrator.scheduler.running


@pytest.mark.asyncio
class TestReloadConfiguration:
    """Re-validation plus probing of every provider"""

    async def test_all_valid_and_healthy(self, orchestrator, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await orchestrator.registry.create(keyed_config("p1", host="p1.test"))

        report = await orchestrator.reload_configuration()

        assert report.status == BatchStatus.SUCCESS
        assert report.healthy_providers == 1
        assert report.warnings == []
        assert [(e.provider_id, e.outcome) for e in report.entries] == [(provider.id, ReloadOutcome.OK)]
        assert report.entries[0].health.status == HealthStatus.HEALTHY

    async def test_seeded_providers_without_credentials(self, orchestrator, provider_api):
        await orchestrator.registry.seed_defaults()

        report = await orchestrator.reload_configuration(validate_only=True)

        assert report.status == BatchStatus.PARTIAL
        assert report.validate_only
        assert report.total_providers == 7
        assert report.enabled_providers == 0
        assert report.valid_providers == 1
        assert "No providers are enabled" in report.warnings
        outcomes = {e.name: e.outcome for e in report.entries}
        assert outcomes["Ollama Local"] == ReloadOutcome.OK
        assert outcomes["OpenAI GPT-4o"] == ReloadOutcome.INVALID
        assert provider_api.calls == []

    async def test_unhealthy_only_provider_is_failure(self, orchestrator, provider_api, keyed_config):
        provider_api.respond("p1.test", status_code=503)
        await orchestrator.registry.create(keyed_config("p1", priority=2, host="p1.test"))

        report = await orchestrator.reload_configuration()

        assert report.status == BatchStatus.FAILURE
        assert report.entries[0].outcome == ReloadOutcome.ERROR
        assert report.warnings == ["No enabled provider has priority 1"]

    async def test_multiple_top_priority_warning(self, orchestrator, keyed_config):
        await orchestrator.registry.create(keyed_config("a", priority=1))
        await orchestrator.registry.create(keyed_config("b", priority=1))

        report = await orchestrator.reload_configuration(validate_only=True)

        assert report.status == BatchStatus.SUCCESS
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("Multiple enabled providers have priority 1")


@pytest.mark.asyncio
class TestUpdateProvider:
    """Configuration change followed by a background re-probe"""

    async def test_update_schedules_recheck(self, orchestrator, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await orchestrator.registry.create(keyed_config("p1", host="p1.test"))

        updated = await orchestrator.update_provider(provider.id, {"priority": 4})
        pending = list(orchestrator.scheduler._pending)
        await asyncio.gather(*pending)

        assert updated.priority == 4
        assert len(pending) == 1
        assert (await orchestrator.registry.get(provider.id)).health_status == HealthStatus.HEALTHY

    async def test_disabling_does_not_probe(self, orchestrator, provider_api, keyed_config):
        provider = await orchestrator.registry.create(keyed_config("p1", host="p1.test"))

        updated = await orchestrator.update_provider(provider.id, {"enabled": False})

        assert updated.health_status == HealthStatus.DISABLED
        assert not orchestrator.scheduler._pending
        assert provider_api.calls == []

    async def test_invalid_update_rejected(self, orchestrator, keyed_config):
        provider = await orchestrator.registry.create(keyed_config("p1"))

        with pytest.raises(ValidationError):
            await orchestrator.update_provider(provider.id, {"priority": 0})
        assert not orchestrator.scheduler._pending


@pytest.mark.asyncio
class TestRefreshLocalModels:
    """Model list refresh for locally-hosted providers"""

    async def test_replaces_models(self, orchestrator, provider_api, ollama_config):
        provider_api.respond("ollama.test", json={"models": [{"name": "qwen2:7b"}, {"name": "phi3:mini"}]})
        provider = await orchestrator.registry.create(ollama_config())

        refreshed = await orchestrator.refresh_local_models(provider.id)

        assert refreshed.models == ["qwen2:7b", "phi3:mini"]

    async def test_keyed_provider_rejected(self, orchestrator, provider_api, keyed_config):
        provider = await orchestrator.registry.create(keyed_config("p1"))

        with pytest.raises(ValidationError):
            await orchestrator.refresh_local_models(provider.id)
        assert provider_api.calls == []


@pytest.mark.asyncio
class TestRetentionAndExport:
    """Usage pruning and downloads"""

    async def test_cleanup_removes_expired_records(self, orchestrator, keyed_config, clock):
        provider = await orchestrator.registry.create(keyed_config("p1"))
        await record(orchestrator, provider.id, timestamp=clock() - timedelta(days=31))
        await record(orchestrator, provider.id)

        stats = await orchestrator.retention.cleanup()

        assert stats["deleted_count"] == 1
        assert stats["retention_days"] == 30
        assert len(await orchestrator.ledger.list_records()) == 1

    async def test_export_formats(self, orchestrator, keyed_config):
        provider = await orchestrator.registry.create(keyed_config("p1"))
        await record(orchestrator, provider.id, user_id="alice")
        await record(orchestrator, provider.id, success=False, error_kind="timeout")

        csv_lines = (await orchestrator.exporter.export("csv")).getvalue().decode().splitlines()
        assert csv_lines[0].startswith("id,created_at,user_id,provider_id,provider_name")
        assert len(csv_lines) == 3

        rows = json.loads((await orchestrator.exporter.export("json", UsageFilter(success=True))).getvalue())
        assert [(r["provider_name"], r["user_id"]) for r in rows] == [("p1", "alice")]

        workbook = load_workbook(BytesIO((await orchestrator.exporter.export("xlsx")).getvalue()))
        sheet = workbook["Usage"]
        assert sheet["A1"].value == "id"
        assert sheet.max_row == 3

    async def test_unknown_format(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.exporter.export("pdf")
