"""
Health checker, probe and scheduler tests
"""
import httpx
import pytest
from pydantic import SecretStr

from orchestrator.api.schemas import HealthStatus, ProviderRecord, ProviderType
from orchestrator.core.exceptions import NotFoundError
from orchestrator.probes.factory import ProbeFactory
from orchestrator.probes.keyed import AnthropicProbe, GoogleProbe, OpenAICompatibleProbe, PerplexityProbe
from orchestrator.probes.ollama import OllamaProbe
from orchestrator.services.health_check import HealthChecker


class MemoryCache:
    """Cache double holding JSON values in a dict."""

    def __init__(self):
        self.values = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ttl=None):
        self.values[key] = value
        return True


def make_record(**overrides) -> ProviderRecord:
    """Provider snapshot that never touched the database."""
    data = {
        "id": "local-1",
        "name": "Ollama without endpoint",
        "type": ProviderType.OLLAMA,
        "enabled": True,
        "priority": 1,
        "models": ["llama3.1:8b"],
        "credential": None,
        "endpoint": None,
        "max_requests_per_minute": 60,
        "max_cost_per_day_usd": 0.0,
        "timeout_ms": 30000,
        "retry_attempts": 3,
        "health_check_interval_ms": 300000,
        "health_status": HealthStatus.UNKNOWN,
    }
    data.update(overrides)
    return ProviderRecord(**data)


class TestProbeFactory:
    """Probe selection per provider type"""

    @pytest.mark.parametrize("provider_type,probe_class", [
        (ProviderType.OPENAI, OpenAICompatibleProbe),
        (ProviderType.MISTRAL, OpenAICompatibleProbe),
        (ProviderType.GROQ, OpenAICompatibleProbe),
        (ProviderType.ANTHROPIC, AnthropicProbe),
        (ProviderType.GOOGLE, GoogleProbe),
        (ProviderType.PERPLEXITY, PerplexityProbe),
        (ProviderType.OLLAMA, OllamaProbe),
    ])
    def test_create_probe(self, provider_type, probe_class):
        probe = ProbeFactory.create_probe(make_record(type=provider_type), client=None, timeout_seconds=1)
        assert isinstance(probe, probe_class)

    def test_every_type_is_supported(self):
        assert set(ProbeFactory.get_supported_types()) == {t.value for t in ProviderType}

    def test_default_base_urls(self):
        groq = ProbeFactory.create_probe(make_record(type=ProviderType.GROQ), None, 1)
        assert groq.base_url == "https://api.groq.com/openai/v1"

        custom = ProbeFactory.create_probe(
            make_record(type=ProviderType.OPENAI, endpoint="https://proxy.test/v1/"), None, 1
        )
        assert custom.base_url == "https://proxy.test/v1"


@pytest.mark.asyncio
class TestHealthChecker:
    """Single and batch probes"""

    async def test_local_provider_without_endpoint(self, checker, provider_api):
        result = await checker.check_one(make_record())

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error_message == "Missing base URL"
        assert result.error_kind == "config"
        assert provider_api.calls == []

    async def test_keyed_provider_without_credential(self, checker, provider_api):
        result = await checker.check_one(make_record(type=ProviderType.ANTHROPIC))

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error_message == "Missing API key"
        assert provider_api.calls == []

    async def test_disabled_and_maintenance_short_circuit(self, checker, provider_api):
        disabled = await checker.check_one(make_record(enabled=False, endpoint="http://ollama.test:11434"))
        maintenance = await checker.check_one(make_record(
            health_status=HealthStatus.MAINTENANCE, endpoint="http://ollama.test:11434"
        ))

        assert disabled.status == HealthStatus.DISABLED
        assert maintenance.status == HealthStatus.MAINTENANCE
        assert provider_api.calls == []

    async def test_healthy_openai_probe(self, registry, checker, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.HEALTHY
        assert result.available_models == ["gpt-4o", "gpt-4o-mini"]
        assert result.error_message is None
        request = provider_api.calls_to("p1.test")[0]
        assert request.url.path == "/v1/models"
        assert request.headers["authorization"] == "Bearer sk-p1-secret"

        stored = await registry.get(provider.id)
        assert stored.health_status == HealthStatus.HEALTHY
        assert stored.last_health_check_at == result.checked_at

    async def test_anthropic_probe_headers(self, registry, checker, provider_api, keyed_config):
        provider_api.respond("api.anthropic.com", json={"data": []})
        provider = await registry.create(keyed_config("claude", type="anthropic", models=["claude-3-5-sonnet"]))

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.HEALTHY
        assert result.available_models == ["claude-3-5-sonnet"]
        request = provider_api.calls_to("api.anthropic.com")[0]
        assert request.url.path == "/v1/models"
        assert request.headers["x-api-key"] == "sk-claude-secret"
        assert request.headers["anthropic-version"] == "2023-06-01"

    async def test_perplexity_probe_sends_one_token_completion(self, registry, checker, provider_api, keyed_config):
        provider_api.respond("api.perplexity.ai", json={"choices": []})
        provider = await registry.create(keyed_config("pplx", type="perplexity", models=["sonar"]))

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.HEALTHY
        request = provider_api.calls_to("api.perplexity.ai")[0]
        assert request.method == "POST"
        assert request.url.path == "/chat/completions"

    @pytest.mark.parametrize("status_code,error_kind", [
        (401, "auth"),
        (403, "auth"),
        (429, "transient"),
        (503, "transient"),
        (404, "error"),
    ])
    async def test_http_failures_are_classified(
        self, registry, checker, provider_api, keyed_config, status_code, error_kind
    ):
        provider_api.respond("p1.test", status_code=status_code)
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error_kind == error_kind
        assert str(status_code) in result.error_message
        assert (await registry.get(provider.id)).health_status == HealthStatus.UNHEALTHY

    async def test_connection_failure_is_transient(self, registry, checker, provider_api, keyed_config):
        provider_api.fail("p1.test", httpx.ConnectError("connection refused"))
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error_kind == "transient"

    async def test_ollama_without_models_is_unhealthy(self, registry, checker, provider_api, ollama_config):
        provider_api.respond("ollama.test", json={"models": []})
        provider = await registry.create(ollama_config())

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.UNHEALTHY
        assert "no models are installed" in result.error_message

    async def test_healthy_ollama(self, registry, checker, provider_api, ollama_config):
        provider_api.respond("ollama.test", json={"models": [{"name": "llama3.1:8b"}, {"name": "qwen2:7b"}]})
        provider = await registry.create(ollama_config())

        result = await checker.check_one(provider)

        assert result.status == HealthStatus.HEALTHY
        assert result.available_models == ["llama3.1:8b", "qwen2:7b"]
        assert provider_api.calls_to("ollama.test")[0].url.path == "/api/tags"

    async def test_provider_disabled_mid_probe_stays_disabled(self, registry, checker, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))
        await registry.toggle(provider.id, False)

        # Snapshot taken before the toggle still says enabled
        result = await checker.check_one(provider)

        assert result.status == HealthStatus.DISABLED
        assert (await registry.get(provider.id)).health_status == HealthStatus.DISABLED

    async def test_check_many_isolates_failures(self, registry, checker, provider_api, keyed_config):
        provider_api.respond("good.test", json={"data": [{"id": "gpt-4o"}]})
        provider_api.fail("bad.test", httpx.ReadTimeout("read timed out"))
        good = await registry.create(keyed_config("good", priority=1, host="good.test"))
        bad = await registry.create(keyed_config("bad", priority=2, host="bad.test"))

        results = await checker.check_many([bad, good])

        assert [r.provider_id for r in results] == [bad.id, good.id]
        assert results[0].status == HealthStatus.UNHEALTHY
        assert results[0].error_kind == "transient"
        assert results[1].status == HealthStatus.HEALTHY

    async def test_check_many_empty(self, checker):
        assert await checker.check_many([]) == []

    async def test_keyed_record_with_credential(self, checker, provider_api):
        provider_api.respond("api.mistral.ai", json={"data": [{"id": "mistral-small-latest"}]})
        record = make_record(
            id="mistral-1",
            type=ProviderType.MISTRAL,
            credential=SecretStr("mk-1"),
            models=["mistral-small-latest"],
        )

        result = await checker.check_one(record)

        assert result.status == HealthStatus.HEALTHY
        assert provider_api.calls_to("api.mistral.ai")[0].url.path == "/v1/models"

    async def test_history_and_cached_status(self, registry, checker, provider_api, keyed_config, clock):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        await checker.check_one(provider)
        clock.advance(minutes=1)
        provider_api.respond("p1.test", status_code=500)
        await checker.check_one(provider)

        history = checker.get_history(provider.id)
        assert [r.status for r in history] == [HealthStatus.HEALTHY, HealthStatus.UNHEALTHY]

        last = await checker.get_health_status(provider.id)
        assert last.status == HealthStatus.UNHEALTHY
        assert last.checked_at == clock()
        assert len(provider_api.calls) == 2


@pytest.mark.asyncio
class TestCachedHealthStatus:
    """Last status served from the cache"""

    @pytest.fixture
    def cache(self):
        return MemoryCache()

    @pytest.fixture
    def cached_checker(self, registry, probe_client, cache, clock):
        return HealthChecker(registry, probe_client, cache=cache, clock=clock)

    async def test_fresh_result_served_from_cache(self, registry, cached_checker, cache, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        await cached_checker.check_one(provider)
        last = await cached_checker.get_health_status(provider.id)

        assert last.status == HealthStatus.HEALTHY
        assert last.available_models == ["gpt-4o"]
        assert len(cache.values) == 1

    async def test_disable_overrides_cached_healthy(self, registry, cached_checker, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))
        await cached_checker.check_one(provider)

        await registry.toggle(provider.id, False)

        assert (await cached_checker.get_health_status(provider.id)).status == HealthStatus.DISABLED

    async def test_maintenance_overrides_cached_healthy(self, registry, cached_checker, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))
        await cached_checker.check_one(provider)

        await registry.set_maintenance(provider.id, True)

        assert (await cached_checker.get_health_status(provider.id)).status == HealthStatus.MAINTENANCE

    async def test_deleted_provider_not_found(self, registry, cached_checker, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))
        await cached_checker.check_one(provider)

        await registry.delete(provider.id)

        with pytest.raises(NotFoundError):
            await cached_checker.get_health_status(provider.id)


@pytest.mark.asyncio
class TestHealthScheduler:
    """Per-provider interval scheduling"""

    async def test_due_providers_follow_interval(self, registry, scheduler, provider_api, keyed_config, clock):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test", health_check_interval_ms=60000))
        await registry.create(keyed_config("off", enabled=False))

        assert [p.id for p in await scheduler.due_providers()] == [provider.id]

        await scheduler.run_once()
        assert await scheduler.due_providers() == []

        clock.advance(seconds=59)
        assert await scheduler.due_providers() == []
        clock.advance(seconds=1)
        assert [p.id for p in await scheduler.due_providers()] == [provider.id]

    async def test_maintenance_is_never_due(self, registry, scheduler, keyed_config):
        provider = await registry.create(keyed_config("p1"))
        await registry.set_maintenance(provider.id, True)
        assert await scheduler.due_providers() == []

    async def test_schedule_recheck_writes_back(self, registry, scheduler, provider_api, keyed_config):
        provider_api.respond("p1.test", json={"data": [{"id": "gpt-4o"}]})
        provider = await registry.create(keyed_config("p1", host="p1.test"))

        result = await scheduler.schedule_recheck(provider.id)

        assert result.status == HealthStatus.HEALTHY
        assert (await registry.get(provider.id)).health_status == HealthStatus.HEALTHY

    async def test_start_and_stop(self, registry, scheduler):
        scheduler.start()
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running
