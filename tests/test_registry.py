"""
Provider registry tests
"""
import asyncio

import pytest
from pydantic import SecretStr

from orchestrator.api.schemas import (
    HealthCheckResult,
    HealthStatus,
    ProviderFilter,
    ProviderType,
    provider_config_errors,
)
from orchestrator.core.exceptions import NotFoundError, ValidationError
from orchestrator.services.registry import DEFAULT_PROVIDERS, ProviderRegistry


class TestProviderConfigErrors:
    """Validation rules shared by create, update and reload"""

    def test_valid_keyed_config(self, keyed_config):
        assert provider_config_errors(keyed_config("openai-main")) == []

    def test_valid_local_config(self, ollama_config):
        assert provider_config_errors(ollama_config()) == []

    def test_collects_every_violation(self):
        errors = provider_config_errors({
            "name": "broken",
            "type": "anthropic",
            "priority": 0,
            "models": [],
            "timeout_ms": 10,
            "retry_attempts": 11,
        })
        fields = {e.split(":")[0] for e in errors}
        assert {"priority", "models", "timeout_ms", "retry_attempts", "credential"} <= fields

    def test_unknown_type(self, keyed_config):
        errors = provider_config_errors(keyed_config("x", type="cohere"))
        assert any(e.startswith("type:") for e in errors)

    def test_unknown_type_still_reports_shared_fields(self):
        errors = provider_config_errors({"name": "x", "type": "cohere", "models": [], "priority": 500})
        fields = {e.split(":")[0] for e in errors}
        assert {"type", "models", "priority"} <= fields

    def test_local_provider_requires_endpoint(self, ollama_config):
        config = ollama_config()
        del config["endpoint"]
        assert provider_config_errors(config) == ["endpoint: is required"]

    def test_local_endpoint_must_be_http(self, ollama_config):
        errors = provider_config_errors(ollama_config(endpoint="ftp://ollama"))
        assert len(errors) == 1
        assert errors[0].startswith("endpoint:")

    def test_blank_credential_rejected(self, keyed_config):
        errors = provider_config_errors(keyed_config("x", credential="   "))
        assert len(errors) == 1
        assert errors[0].startswith("credential:")

    @pytest.mark.parametrize("field,value,valid", [
        ("priority", 1, True),
        ("priority", 100, True),
        ("priority", 101, False),
        ("timeout_ms", 1000, True),
        ("timeout_ms", 999, False),
        ("retry_attempts", 0, True),
        ("retry_attempts", 10, True),
        ("retry_attempts", -1, False),
    ])
    def test_boundaries(self, keyed_config, field, value, valid):
        errors = provider_config_errors(keyed_config("x", **{field: value}))
        assert (errors == []) is valid


@pytest.mark.asyncio
class TestProviderRegistry:
    """Registry CRUD"""

    async def test_create_stores_provider(self, registry, keyed_config):
        record = await registry.create(keyed_config("openai-main", priority=3))

        assert record.id
        assert record.type == ProviderType.OPENAI
        assert record.priority == 3
        assert record.health_status == HealthStatus.UNKNOWN
        assert record.has_credential
        assert record.credential.get_secret_value() == "sk-openai-main-secret"
        assert await registry.get(record.id) == record

    async def test_create_disabled_provider_is_disabled(self, registry, keyed_config):
        record = await registry.create(keyed_config("off", enabled=False))
        assert record.health_status == HealthStatus.DISABLED

    async def test_create_rejects_iff_config_invalid(self, registry, keyed_config, ollama_config):
        configs = [
            keyed_config("a"),
            keyed_config("b", priority=0),
            keyed_config("c", models=[]),
            keyed_config("d", credential=None),
            ollama_config("e"),
            ollama_config("f", endpoint=None),
            keyed_config("g", type="cohere"),
            keyed_config("h", timeout_ms=500, retry_attempts=20),
        ]
        for config in configs:
            expected = provider_config_errors(config)
            if expected:
                with pytest.raises(ValidationError) as exc_info:
                    await registry.create(config)
                assert exc_info.value.errors == expected
            else:
                await registry.create(config)

        assert await registry.count() == 2

    async def test_duplicate_name_is_a_validation_error(self, registry, keyed_config):
        await registry.create(keyed_config("same"))
        with pytest.raises(ValidationError) as exc_info:
            await registry.create(keyed_config("same", priority=2))
        assert exc_info.value.errors[0].startswith("name:")

    async def test_get_unknown_provider(self, registry):
        with pytest.raises(NotFoundError):
            await registry.get("missing")

    async def test_list_orders_by_priority(self, registry, keyed_config, ollama_config):
        low = await registry.create(keyed_config("low", priority=9))
        high = await registry.create(keyed_config("high", priority=1))
        local = await registry.create(ollama_config(priority=5, enabled=False))

        assert [p.id for p in await registry.list()] == [high.id, local.id, low.id]
        assert [p.id for p in await registry.list(ProviderFilter(enabled_only=True))] == [high.id, low.id]
        assert [p.id for p in await registry.list(ProviderFilter(type=ProviderType.OLLAMA))] == [local.id]

    async def test_update_merges_and_revalidates(self, registry, keyed_config):
        record = await registry.create(keyed_config("main"))

        updated = await registry.update(record.id, {"priority": 7, "models": ["gpt-4o"]})
        assert updated.priority == 7
        assert updated.models == ["gpt-4o"]
        assert updated.credential.get_secret_value() == "sk-main-secret"

        with pytest.raises(ValidationError) as exc_info:
            await registry.update(record.id, {"credential": "", "priority": 0})
        fields = {e.split(":")[0] for e in exc_info.value.errors}
        assert fields == {"credential", "priority"}
        assert (await registry.get(record.id)).priority == 7

    async def test_update_unknown_provider(self, registry):
        with pytest.raises(NotFoundError):
            await registry.update("missing", {"priority": 2})

    async def test_update_disable_sets_disabled(self, registry, keyed_config):
        record = await registry.create(keyed_config("main"))
        updated = await registry.update(record.id, {"enabled": False})
        assert updated.health_status == HealthStatus.DISABLED

    async def test_toggle(self, registry, keyed_config):
        record = await registry.create(keyed_config("main"))

        disabled = await registry.toggle(record.id, False)
        assert not disabled.enabled
        assert disabled.health_status == HealthStatus.DISABLED

        enabled = await registry.toggle(record.id, True)
        assert enabled.enabled
        assert enabled.health_status == HealthStatus.UNKNOWN

    async def test_toggle_wins_over_late_probe_result(self, registry, keyed_config, clock):
        record = await registry.create(keyed_config("main"))
        await registry.toggle(record.id, False)

        stored = await registry.apply_health(HealthCheckResult(
            provider_id=record.id,
            status=HealthStatus.HEALTHY,
            checked_at=clock(),
        ))

        assert stored == HealthStatus.DISABLED
        assert (await registry.get(record.id)).health_status == HealthStatus.DISABLED

    async def test_set_priority_bounds(self, registry, keyed_config):
        record = await registry.create(keyed_config("main"))
        assert (await registry.set_priority(record.id, 42)).priority == 42
        with pytest.raises(ValidationError):
            await registry.set_priority(record.id, 0)
        with pytest.raises(NotFoundError):
            await registry.set_priority("missing", 5)

    async def test_maintenance_round_trip(self, registry, keyed_config, clock):
        record = await registry.create(keyed_config("main"))

        assert (await registry.set_maintenance(record.id, True)).health_status == HealthStatus.MAINTENANCE
        stored = await registry.apply_health(HealthCheckResult(
            provider_id=record.id, status=HealthStatus.HEALTHY, checked_at=clock()
        ))
        assert stored == HealthStatus.MAINTENANCE
        assert (await registry.set_maintenance(record.id, False)).health_status == HealthStatus.UNKNOWN

    async def test_maintenance_keeps_disabled(self, registry, keyed_config):
        record = await registry.create(keyed_config("main", enabled=False))
        assert (await registry.set_maintenance(record.id, True)).health_status == HealthStatus.DISABLED

    async def test_delete(self, registry, keyed_config):
        record = await registry.create(keyed_config("main"))
        await registry.delete(record.id)
        with pytest.raises(NotFoundError):
            await registry.get(record.id)
        with pytest.raises(NotFoundError):
            await registry.delete(record.id)

    async def test_apply_health_for_deleted_provider(self, registry, clock):
        stored = await registry.apply_health(HealthCheckResult(
            provider_id="gone", status=HealthStatus.HEALTHY, checked_at=clock()
        ))
        assert stored is None


@pytest.mark.asyncio
class TestSeeding:
    """Default provider seeding"""

    async def test_seed_inserts_defaults_disabled(self, registry):
        assert await registry.seed_defaults() == len(DEFAULT_PROVIDERS)

        providers = await registry.list()
        assert [p.priority for p in providers] == list(range(1, 8))
        assert {p.type.value for p in providers} == {d["type"] for d in DEFAULT_PROVIDERS}
        assert all(not p.enabled for p in providers)
        assert all(p.health_status == HealthStatus.DISABLED for p in providers)
        assert not any(p.has_credential for p in providers)

    async def test_seed_is_idempotent(self, registry):
        once = await registry.seed_defaults()
        twice = await registry.seed_defaults()
        assert once == twice == await registry.count()

    async def test_concurrent_seeding_does_not_duplicate(self, registry):
        results = await asyncio.gather(*(registry.seed_defaults() for _ in range(5)))
        assert set(results) == {len(DEFAULT_PROVIDERS)}
        assert await registry.count() == len(DEFAULT_PROVIDERS)

    async def test_seed_skips_when_providers_exist(self, registry, keyed_config):
        await registry.create(keyed_config("custom"))
        assert await registry.seed_defaults() == 1

    async def test_seed_applies_startup_settings(self, session_factory, clock):
        registry = ProviderRegistry(
            session_factory,
            clock=clock,
            startup_credentials={"openai": SecretStr("sk-from-env")},
            ollama_base_url="http://gpu-box:11434/",
        )
        await registry.seed_defaults()

        by_type = {p.type.value: p for p in await registry.list()}
        assert by_type["openai"].credential.get_secret_value() == "sk-from-env"
        assert not by_type["anthropic"].has_credential
        assert by_type["ollama"].endpoint == "http://gpu-box:11434"
        assert by_type["ollama"].max_cost_per_day_usd == 0.0
