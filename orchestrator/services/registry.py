"""
Provider registry: validated CRUD over provider configuration records.
"""
import asyncio
from typing import Any, Dict, List, Mapping, Optional

from pydantic import SecretStr
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orchestrator.api.schemas import (
    HealthCheckResult,
    HealthStatus,
    ProviderFilter,
    ProviderRecord,
    parse_provider_settings,
    provider_config_errors,
)
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.exceptions import NotFoundError, ValidationError
from orchestrator.core.logger import get_logger
from orchestrator.models.provider import Provider

logger = get_logger(__name__)


DEFAULT_PROVIDERS: List[Dict[str, Any]] = [
    {
        "name": "OpenAI GPT-4o",
        "type": "openai",
        "priority": 1,
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        "max_requests_per_minute": 60,
        "max_cost_per_day_usd": 10.0,
    },
    {
        "name": "Claude 3.5 Sonnet",
        "type": "anthropic",
        "priority": 2,
        "models": [
            "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-20241022",
            "claude-3-haiku-20240307",
            "claude-3-opus-20240229",
        ],
        "max_requests_per_minute": 60,
        "max_cost_per_day_usd": 10.0,
    },
    {
        "name": "Google Gemini",
        "type": "google",
        "priority": 3,
        "models": ["gemini-1.5-pro", "gemini-1.5-flash", "gemini-1.0-pro"],
        "max_requests_per_minute": 60,
        "max_cost_per_day_usd": 10.0,
    },
    {
        "name": "Mistral AI",
        "type": "mistral",
        "priority": 4,
        "models": ["mistral-large-latest", "mistral-medium-latest", "mistral-small-latest", "codestral-latest"],
        "max_requests_per_minute": 60,
        "max_cost_per_day_usd": 10.0,
    },
    {
        "name": "Ollama Local",
        "type": "ollama",
        "priority": 5,
        "models": ["llama3.1:8b", "llama3.1:70b", "codellama:7b", "codellama:13b", "mistral:7b", "phi3:mini", "qwen2:7b"],
        "max_requests_per_minute": 120,
        "max_cost_per_day_usd": 0.0,
        "timeout_ms": 60000,
        "retry_attempts": 2,
    },
    {
        "name": "Groq",
        "type": "groq",
        "priority": 6,
        "models": ["llama-3.1-70b-versatile", "llama-3.1-8b-instant", "mixtral-8x7b-32768", "gemma2-9b-it"],
        "max_requests_per_minute": 30,
        "max_cost_per_day_usd": 5.0,
    },
    {
        "name": "Perplexity",
        "type": "perplexity",
        "priority": 7,
        "models": [
            "llama-3.1-sonar-large-128k-online",
            "llama-3.1-sonar-small-128k-online",
            "llama-3.1-8b-instruct",
            "llama-3.1-70b-instruct",
        ],
        "max_requests_per_minute": 20,
        "max_cost_per_day_usd": 5.0,
    },
]

# Columns a configuration change may touch
CONFIG_FIELDS = (
    "name", "type", "enabled", "priority", "models", "credential", "endpoint",
    "max_requests_per_minute", "max_cost_per_day_usd", "timeout_ms",
    "retry_attempts", "health_check_interval_ms",
)


def _plain(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Unwrap secrets so a config mapping can be merged and re-validated."""
    return {
        key: value.get_secret_value() if isinstance(value, SecretStr) else value
        for key, value in values.items()
    }


class ProviderRegistry:
    """
    Validated CRUD over provider records.

    Every mutation runs in its own transaction so readers never observe a
    partially applied update. The ``disabled`` status always follows
    ``enabled = false``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        startup_credentials: Optional[Mapping[str, SecretStr]] = None,
        ollama_base_url: Optional[str] = None,
    ):
        """
        Initialize registry.

        Args:
            session_factory: Async session factory
            clock: Returns the current naive UTC time
            startup_credentials: Credentials per provider type applied when seeding
            ollama_base_url: Endpoint applied to the seeded local provider
        """
        self.session_factory = session_factory
        self.clock = clock
        self.startup_credentials = dict(startup_credentials or {})
        self.ollama_base_url = ollama_base_url
        self._seed_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, provider_id: str) -> ProviderRecord:
        """
        Get a provider by id.

        Raises:
            NotFoundError: If no provider has this id
        """
        async with self.session_factory() as session:
            provider = await session.get(Provider, provider_id)
            if provider is None:
                raise NotFoundError(provider_id)
            return ProviderRecord.model_validate(provider)

    async def list(self, filter: Optional[ProviderFilter] = None) -> List[ProviderRecord]:
        """
        List providers ordered by priority, then id.

        Args:
            filter: Optional type / enabled-only filter

        Returns:
            Provider snapshots
        """
        query = select(Provider)
        if filter is not None:
            if filter.type is not None:
                query = query.where(Provider.type == filter.type.value)
            if filter.enabled_only:
                query = query.where(Provider.enabled.is_(True))
        query = query.order_by(Provider.priority.asc(), Provider.id.asc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [ProviderRecord.model_validate(p) for p in result.scalars().all()]

    async def count(self) -> int:
        async with self.session_factory() as session:
            return (await session.execute(select(func.count(Provider.id)))).scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, config: Mapping[str, Any]) -> ProviderRecord:
        """
        Validate and store a new provider.

        Args:
            config: Provider configuration; ``type`` selects the variant

        Returns:
            Stored provider

        Raises:
            ValidationError: With every violated rule
        """
        config = _plain(config)
        errors = provider_config_errors(config)
        if errors:
            raise ValidationError(errors)

        parsed = parse_provider_settings(config)
        values = _plain(parsed.model_dump())
        now = self.clock()
        provider = Provider(
            **values,
            health_status=(HealthStatus.UNKNOWN if parsed.enabled else HealthStatus.DISABLED).value,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as session:
            session.add(provider)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError([f"name: a provider named '{parsed.name}' already exists"])
            record = ProviderRecord.model_validate(provider)

        logger.info(
            "Provider created",
            provider_id=record.id,
            name=record.name,
            type=record.type.value,
            has_credential=record.has_credential,
        )
        return record

    async def update(self, provider_id: str, partial: Mapping[str, Any]) -> ProviderRecord:
        """
        Merge a partial configuration onto a provider and re-validate the result.

        Args:
            provider_id: Provider id
            partial: Fields to change

        Returns:
            Updated provider

        Raises:
            NotFoundError: Unknown provider id
            ValidationError: Merged configuration violates a rule
        """
        partial = {k: v for k, v in _plain(partial).items() if k in CONFIG_FIELDS}

        async with self.session_factory() as session:
            provider = await session.get(Provider, provider_id)
            if provider is None:
                raise NotFoundError(provider_id)

            merged = ProviderRecord.model_validate(provider).config_dict()
            merged.update(partial)
            errors = provider_config_errors(merged)
            if errors:
                raise ValidationError(errors)

            values = _plain(parse_provider_settings(merged).model_dump())
            was_enabled = provider.enabled
            for key, value in values.items():
                setattr(provider, key, value)

            if not provider.enabled:
                provider.health_status = HealthStatus.DISABLED.value
            elif not was_enabled:
                provider.health_status = HealthStatus.UNKNOWN.value
            provider.updated_at = self.clock()

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError([f"name: a provider named '{values['name']}' already exists"])
            record = ProviderRecord.model_validate(provider)

        logger.info(
            "Provider updated",
            provider_id=provider_id,
            fields=sorted(partial.keys()),
            has_credential=record.has_credential,
        )
        return record

    async def toggle(self, provider_id: str, enabled: bool) -> ProviderRecord:
        """
        Enable or disable a provider without probing it.

        Disabling sets ``disabled`` immediately; enabling sets ``unknown``
        until the next probe.
        """
        status = HealthStatus.UNKNOWN if enabled else HealthStatus.DISABLED
        await self._update_columns(provider_id, enabled=enabled, health_status=status.value)
        logger.info("Provider toggled", provider_id=provider_id, enabled=enabled)
        return await self.get(provider_id)

    async def set_priority(self, provider_id: str, priority: int) -> ProviderRecord:
        """
        Change a provider's priority.

        Raises:
            ValidationError: Priority outside [1, 100]
        """
        if not 1 <= priority <= 100:
            raise ValidationError(["priority: must be between 1 and 100"])
        await self._update_columns(provider_id, priority=priority)
        logger.info("Provider priority changed", provider_id=provider_id, priority=priority)
        return await self.get(provider_id)

    async def set_maintenance(self, provider_id: str, maintenance: bool) -> ProviderRecord:
        """
        Put a provider into maintenance or bring it back.

        Leaving maintenance resets the status to ``unknown``. A disabled
        provider stays ``disabled`` either way.
        """
        current = await self.get(provider_id)
        if maintenance:
            target = HealthStatus.MAINTENANCE.value
        elif current.health_status == HealthStatus.MAINTENANCE:
            target = HealthStatus.UNKNOWN.value
        else:
            return current

        status_expr = case(
            (Provider.enabled.is_(True), target),
            else_=HealthStatus.DISABLED.value,
        )
        await self._update_columns(provider_id, health_status=status_expr)
        logger.info("Provider maintenance changed", provider_id=provider_id, maintenance=maintenance)
        return await self.get(provider_id)

    async def replace_models(self, provider_id: str, models: List[str]) -> ProviderRecord:
        """Overwrite a provider's model list."""
        if not models:
            raise ValidationError(["models: must not be empty"])
        await self._update_columns(provider_id, models=list(models))
        return await self.get(provider_id)

    async def delete(self, provider_id: str) -> None:
        """
        Remove a provider record.

        Usage history is kept; it carries its own name and type snapshots.
        """
        async with self.session_factory() as session:
            result = await session.execute(delete(Provider).where(Provider.id == provider_id))
            if result.rowcount == 0:
                raise NotFoundError(provider_id)
            await session.commit()
        logger.info("Provider deleted", provider_id=provider_id)

    async def apply_health(self, result: HealthCheckResult) -> Optional[HealthStatus]:
        """
        Write a probe outcome back onto the provider record.

        The status is resolved inside the UPDATE itself, so a provider that
        was disabled (or put into maintenance) while its probe was in flight
        keeps that status.

        Returns:
            Status actually stored, or None if the provider no longer exists
        """
        status_expr = case(
            (Provider.enabled.is_(False), HealthStatus.DISABLED.value),
            (Provider.health_status == HealthStatus.MAINTENANCE.value, HealthStatus.MAINTENANCE.value),
            else_=result.status.value,
        )
        async with self.session_factory() as session:
            await session.execute(
                update(Provider)
                .where(Provider.id == result.provider_id)
                .values(
                    health_status=status_expr,
                    last_health_check_at=result.checked_at,
                    last_health_error=result.error_message,
                    last_response_time_ms=result.response_time_ms,
                )
            )
            stored = (
                await session.execute(
                    select(Provider.health_status).where(Provider.id == result.provider_id)
                )
            ).scalar_one_or_none()
            await session.commit()

        return HealthStatus(stored) if stored is not None else None

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def default_provider_configs(self) -> List[Dict[str, Any]]:
        """Default provider set with startup credentials applied."""
        configs = []
        for default in DEFAULT_PROVIDERS:
            config = dict(default, enabled=False, models=list(default["models"]))
            credential = self.startup_credentials.get(config["type"])
            if credential is not None:
                config["credential"] = credential.get_secret_value()
            if config["type"] == "ollama" and self.ollama_base_url:
                config["endpoint"] = self.ollama_base_url.rstrip("/")
            configs.append(config)
        return configs

    async def seed_defaults(self) -> int:
        """
        Insert the default providers unless any provider already exists.

        The existence check and the insert run under one lock and one
        transaction; provider names are unique, so a concurrent seeder in
        another process fails its insert instead of duplicating the set.

        Returns:
            Number of providers stored afterwards
        """
        async with self._seed_lock:
            async with self.session_factory() as session:
                existing = (await session.execute(select(func.count(Provider.id)))).scalar_one()
                if existing > 0:
                    logger.info("Providers already present, skipping seed", count=existing)
                    return existing

                now = self.clock()
                for config in self.default_provider_configs():
                    session.add(Provider(
                        **config,
                        health_status=HealthStatus.DISABLED.value,
                        created_at=now,
                        updated_at=now,
                    ))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.warning("Concurrent seeding detected, keeping existing providers")
                    return await self.count()

        logger.info("Default providers seeded", count=len(DEFAULT_PROVIDERS))
        return len(DEFAULT_PROVIDERS)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _update_columns(self, provider_id: str, **values: Any) -> None:
        values["updated_at"] = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                update(Provider).where(Provider.id == provider_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(provider_id)
            await session.commit()
