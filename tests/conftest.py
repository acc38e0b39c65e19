"""
tests.conftest

Shared fixtures: controllable clock, test settings, a fully wired in-memory bridge, and a
helper that mints realm credentials the way a realm's login flow would.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from realm_bridge.auth.jwt import ClaimNames, DevJwtConfig, issue_credential
from realm_bridge.backend.memory import InMemoryBackendService
from realm_bridge.bridge import Bridge, build_bridge
from realm_bridge.settings import Settings


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


Mint = Callable[..., str]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(env="test")


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryBackendService:
    return InMemoryBackendService(token_lifetime=timedelta(minutes=60), clock=clock)


@pytest_asyncio.fixture
async def bridge(
    settings: Settings, backend: InMemoryBackendService, clock: FakeClock
) -> AsyncIterator[Bridge]:
    b = await build_bridge(settings, backend=backend, clock=clock)
    try:
        yield b
    finally:
        await b.aclose()


@pytest.fixture
def mint(settings: Settings) -> Mint:
    def _mint(subject: str, realm_id: str, *, address: str = "", name: str = "") -> str:
        realm = next(r for r in settings.realms if r.realm_id == realm_id)
        return issue_credential(
            cfg=DevJwtConfig(
                alg=settings.dev_jwt_alg,
                audience=settings.dev_jwt_audience,
                secret=settings.dev_jwt_secret,
            ),
            names=ClaimNames(),
            subject=subject,
            issuer=realm.issuer,
            display_name=name,
            address=address,
        )

    return _mint
