"""
Pytest configuration and shared fixtures
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio

from orchestrator.core.database import Database
from orchestrator.services.analytics import AnalyticsAggregator
from orchestrator.services.health_check import HealthChecker, HealthScheduler
from orchestrator.services.ledger import UsageLedger
from orchestrator.services.rate_limiter import SlidingWindowRateLimiter
from orchestrator.services.registry import ProviderRegistry
from orchestrator.services.selector import ProviderSelector


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProviderAPI:
    """
    Stands in for every provider backend behind ``httpx.MockTransport``.

    Responses are keyed by host; unknown hosts answer 404. Every outbound
    request is kept in ``calls``.
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self._routes: Dict[str, Union[Exception, Tuple[int, Any]]] = {}

    def respond(self, host: str, status_code: int = 200, json: Any = None) -> None:
        self._routes[host] = (status_code, json if json is not None else {})

    def fail(self, host: str, error: Exception) -> None:
        self._routes[host] = error

    def calls_to(self, host: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self._routes.get(request.url.host)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(route, Exception):
            raise route
        status_code, body = route
        return httpx.Response(status_code, json=body)


def _keyed_config(name: str, priority: int = 1, host: Optional[str] = None, **overrides) -> Dict[str, Any]:
    """Valid OpenAI-compatible provider configuration."""
    config = {
        "name": name,
        "type": "openai",
        "priority": priority,
        "models": ["gpt-4o", "gpt-4o-mini"],
        "credential": f"sk-{name}-secret",
    }
    if host:
        config["endpoint"] = f"https://{host}/v1"
    config.update(overrides)
    return config


def _ollama_config(name: str = "Local", priority: int = 1, **overrides) -> Dict[str, Any]:
    config = {
        "name": name,
        "type": "ollama",
        "priority": priority,
        "models": ["llama3.1:8b"],
        "endpoint": "http://ollama.test:11434",
        "max_cost_per_day_usd": 0.0,
    }
    config.update(overrides)
    return config


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, 0))


@pytest.fixture
def provider_api():
    return FakeProviderAPI()


@pytest_asyncio.fixture
async def probe_client(provider_api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider_api.handler))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def database(tmp_path):
    """Temporary SQLite database file with all tables created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def session_factory(database):
    return database.session_factory


@pytest.fixture
def registry(session_factory, clock):
    return ProviderRegistry(session_factory, clock=clock)


@pytest.fixture
def ledger(session_factory, registry, clock):
    return UsageLedger(
        session_factory,
        registry,
        rate_limiter=SlidingWindowRateLimiter(60, clock),
        clock=clock,
    )


@pytest.fixture
def checker(registry, probe_client, clock):
    return HealthChecker(registry, probe_client, clock=clock, timeout_cap_ms=2000)


@pytest.fixture
def scheduler(checker, registry, clock):
    return HealthScheduler(checker, registry, tick_seconds=0.01, clock=clock)


@pytest.fixture
def selector(registry, ledger, clock):
    return ProviderSelector(registry, ledger, clock=clock)


@pytest.fixture
def analytics(ledger, registry, clock):
    return AnalyticsAggregator(ledger, registry, clock=clock)


@pytest.fixture
def keyed_config():
    return _keyed_config


@pytest.fixture
def ollama_config():
    return _ollama_config
