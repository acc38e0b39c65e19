"""
tests.test_calling

Calling-scoped backend tokens: identity reuse, caching margin, single-flight and failures.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from realm_bridge.errors import BackendUnavailable
from realm_bridge.exchange.calling import CallingTokenIssuer
from realm_bridge.identity.cache import IdentityCache
from realm_bridge.tracking.tracker import OperationTracker


@pytest.mark.asyncio
async def test_calling_token_reuses_chat_identity(bridge, backend, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin"))

    chat = await bridge.engine.exchange(alice.credential)
    calling = await bridge.calling.issue(alice)

    assert calling.identity == chat.identity
    assert calling.scopes == ("voip",)
    assert calling.access_token != chat.access_token
    assert backend.calls["create_identity"] == 1
    assert backend.calls["issue_token"] == 2


@pytest.mark.asyncio
async def test_calling_token_is_cached_until_refresh_margin(bridge, backend, clock, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin"))

    first = await bridge.calling.issue(alice)
    clock.advance(timedelta(minutes=54))
    assert await bridge.calling.issue(alice) is first

    clock.advance(timedelta(minutes=2))
    refreshed = await bridge.calling.issue(alice)

    assert refreshed is not first
    assert backend.calls["issue_token"] == 2
    steps = [s.name for s in bridge.tracker.for_subject("alice")[0].steps]
    assert steps == ["CheckCache", "EnsureIdentity", "IssueToken"]


@pytest.mark.asyncio
async def test_concurrent_calling_requests_issue_once(bridge, backend, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin"))

    tokens = await asyncio.gather(*(bridge.calling.issue(alice) for _ in range(10)))

    assert len({t.access_token for t in tokens}) == 1
    assert backend.calls["issue_token"] == 1


@pytest.mark.asyncio
async def test_calling_failure_is_tracked_and_not_cached(
    bridge, backend, mint, monkeypatch
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin"))
    real = backend.issue_token

    async def down(identity, scopes):
        raise BackendUnavailable("identity service down")

    monkeypatch.setattr(backend, "issue_token", down)
    with pytest.raises(BackendUnavailable):
        await bridge.calling.issue(alice)

    op = bridge.tracker.for_subject("alice")[0]
    assert op.type == "CallingToken" and not op.success
    assert op.steps[-1].name == "IssueToken" and not op.steps[-1].success

    monkeypatch.setattr(backend, "issue_token", real)
    assert (await bridge.calling.issue(alice)).access_token


@pytest.mark.asyncio
async def test_slow_issuance_hits_deadline(backend, clock, mint, bridge, monkeypatch) -> None:
    tracker = OperationTracker(clock=clock)
    issuer = CallingTokenIssuer(
        identities=IdentityCache(backend, clock=clock),
        backend=backend,
        tracker=tracker,
        timeout=0.05,
        clock=clock,
    )

    async def slow(identity, scopes):
        await asyncio.sleep(5)

    monkeypatch.setattr(backend, "issue_token", slow)
    with pytest.raises(BackendUnavailable):
        await issuer.issue(bridge.engine.authenticate(mint("alice", "origin")))
    assert not tracker.all()[0].success


def test_empty_scope_set_disables_calling(backend, clock) -> None:
    issuer = CallingTokenIssuer(
        identities=IdentityCache(backend, clock=clock),
        backend=backend,
        tracker=OperationTracker(clock=clock),
        scopes=(),
        clock=clock,
    )
    assert not issuer.enabled
