"""
tests.test_thread_service

Membership & thread state over the in-memory backend and mirror.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from realm_bridge.backend.base import MessageKind
from realm_bridge.backend.http import HttpBackendService
from realm_bridge.bridge import build_bridge
from realm_bridge.errors import BackendUnavailable, DelegationDenied, ThreadNotFound
from realm_bridge.settings import Settings

ALICE = "alice@origin.example"


async def _down(*args, **kwargs):
    raise BackendUnavailable("backend is down")


@pytest.mark.asyncio
async def test_origin_user_creates_thread_and_sends_hello(bridge, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE, name="Alice"))

    thread = await bridge.threads.create_thread("demo", alice)
    await bridge.threads.send_message(thread.id, "hello", alice)
    messages = await bridge.threads.list_messages(thread.id)

    assert thread.topic == "demo"
    assert [p.address for p in thread.participants] == [
        ALICE,
        "host.user@host.example",
        "origin.user@origin.example",
    ]
    assert [p.is_placeholder for p in thread.participants] == [False, True, True]
    assert thread.is_cross_realm

    texts = [m for m in messages if m.kind is MessageKind.text]
    assert len(texts) == 1
    assert texts[0].body == "hello"
    assert texts[0].sender_subject == "alice"
    assert texts[0].sender_realm == "origin"
    assert texts[0].sender_name == "Alice"

    system = [m.body for m in messages if m.kind is MessageKind.system]
    assert system[0] == "Chat thread 'demo' created by Alice (origin)"
    assert any("Cross-realm" in body for body in system)


@pytest.mark.asyncio
async def test_default_placeholder_matching_creator_is_skipped(bridge, mint) -> None:
    creator = bridge.engine.authenticate(
        mint("ouser", "origin", address="Origin.User@origin.example", name="Origin User")
    )

    thread = await bridge.threads.create_thread("demo", creator)

    assert len(thread.participants) == 2
    assert [p.is_placeholder for p in thread.participants] == [False, True]
    assert thread.participants[1].address == "host.user@host.example"


@pytest.mark.asyncio
async def test_create_thread_reuses_current_thread_unless_forced(bridge, backend, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))

    first = await bridge.threads.create_thread("demo", alice)
    again = await bridge.threads.create_thread("demo", alice)
    fresh = await bridge.threads.create_thread("demo", alice, force_new=True)

    assert again.id == first.id
    assert fresh.id != first.id
    assert backend.calls["create_thread"] == 2


@pytest.mark.asyncio
async def test_current_thread_expires_but_membership_still_answers(bridge, clock, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    assert await bridge.threads.current_thread(alice) is None

    thread = await bridge.threads.create_thread("demo", alice)
    clock.advance(timedelta(hours=3))

    current = await bridge.threads.current_thread(alice)
    assert current is not None and current.id == thread.id


@pytest.mark.asyncio
async def test_list_messages_is_a_pure_projection(bridge, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    await bridge.threads.send_message(thread.id, "hello", alice)

    first = await bridge.threads.list_messages(thread.id)
    second = await bridge.threads.list_messages(thread.id)
    third = await bridge.threads.list_messages(thread.id)

    assert first == second == third
    assert [m.body for m in first if m.kind is MessageKind.text] == ["hello"]


@pytest.mark.asyncio
async def test_placeholder_is_reconciled_when_counterpart_lists_threads(
    bridge, backend, mint
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    host_user = bridge.engine.authenticate(
        mint("huser", "host", address="HOST.USER@host.example", name="Host User")
    )

    listed = await bridge.threads.list_threads_for(host_user)

    assert [t.id for t in listed] == [thread.id]
    participants = listed[0].participants
    assert not any(
        p.is_placeholder and p.address.lower() == "host.user@host.example" for p in participants
    )
    bound = next(p for p in participants if p.subject == "huser")
    assert bound.identity == bridge.identities.peek("huser", "host")
    assert listed[0].is_cross_realm
    assert backend.calls["add_participant"] == 1

    # A second pass finds nothing left to bind.
    await bridge.threads.list_threads_for(host_user)
    assert backend.calls["add_participant"] == 1
    op = bridge.tracker.for_subject("huser")[0]
    assert op.type == "Reconcile"


@pytest.mark.asyncio
async def test_listing_is_membership_filtered_by_default(bridge, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    await bridge.threads.create_thread("demo", alice)
    stranger = bridge.engine.authenticate(mint("carol", "host", address="carol@host.example"))

    assert await bridge.threads.list_threads_for(stranger) == []
    assert len(await bridge.threads.list_threads_for(stranger, include_all=True)) == 1


@pytest.mark.asyncio
async def test_unrestricted_listing_can_be_enabled_by_settings(backend, clock, mint) -> None:
    bridge = await build_bridge(
        Settings(env="test", list_all_threads=True), backend=backend, clock=clock
    )
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    await bridge.threads.create_thread("demo", alice)
    stranger = bridge.engine.authenticate(mint("carol", "host", address="carol@host.example"))

    assert len(await bridge.threads.list_threads_for(stranger)) == 1
    await bridge.aclose()


@pytest.mark.asyncio
async def test_failed_backend_join_keeps_placeholder_for_retry(
    bridge, backend, mint, monkeypatch
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    host_user = bridge.engine.authenticate(mint("huser", "host", address="host.user@host.example"))

    real = backend.add_participant
    monkeypatch.setattr(backend, "add_participant", _down)
    listed = await bridge.threads.list_threads_for(host_user)

    assert [t.id for t in listed] == [thread.id]
    assert any(p.is_placeholder for p in listed[0].participants)
    op = bridge.tracker.for_subject("huser")[0]
    assert op.success
    assert any(s.name == "JoinBackendThread" and not s.success for s in op.steps)

    monkeypatch.setattr(backend, "add_participant", real)
    listed = await bridge.threads.list_threads_for(host_user)
    assert any(p.subject == "huser" and not p.is_placeholder for p in listed[0].participants)


@pytest.mark.asyncio
async def test_backend_threads_missing_from_mirror_are_adopted(bridge, backend, mint) -> None:
    bob = bridge.engine.authenticate(mint("bob", "host", address="bob@host.example"))
    identity = await bridge.identities.get_or_create("bob", "host")
    remote = await backend.create_thread("made elsewhere", [identity])

    listed = await bridge.threads.list_threads_for(bob)

    assert [t.id for t in listed] == [remote.id]
    assert listed[0].participants[0].subject == "bob"
    assert await bridge.store.get(remote.id) is not None


@pytest.mark.asyncio
async def test_add_participant_appends_and_announces_once(bridge, backend, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE, name="Alice"))
    thread = await bridge.threads.create_thread("demo", alice)
    carol = bridge.engine.authenticate(
        mint("carol", "host", address="carol@host.example", name="Carol")
    )

    updated = await bridge.threads.add_participant(thread.id, carol)
    again = await bridge.threads.add_participant(thread.id, carol)

    assert [p.subject for p in updated.participants].count("carol") == 1
    assert again == updated
    assert backend.calls["add_participant"] == 1
    bodies = [m.body for m in await bridge.threads.list_messages(thread.id)]
    assert bodies.count("Carol from host joined the chat") == 1


@pytest.mark.asyncio
async def test_add_participant_binds_matching_placeholder(bridge, mint) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    ouser = bridge.engine.authenticate(
        mint("ouser", "origin", address="origin.user@origin.example", name="Origin User")
    )

    updated = await bridge.threads.add_participant(thread.id, ouser)

    assert len(updated.participants) == len(thread.participants)
    bound = updated.participant_by_address("origin.user@origin.example")
    assert bound is not None and bound.subject == "ouser" and not bound.is_placeholder
    bodies = [m.body for m in await bridge.threads.list_messages(thread.id)]
    assert "Origin User from origin joined the chat (cross-realm user from origin)" in bodies


@pytest.mark.asyncio
async def test_add_participant_to_unknown_thread(bridge, mint) -> None:
    bob = bridge.engine.authenticate(mint("bob", "host"))
    with pytest.raises(ThreadNotFound):
        await bridge.threads.add_participant("thread_missing", bob)


@pytest.mark.asyncio
async def test_list_messages_falls_back_to_mirror(bridge, backend, mint, monkeypatch) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    await bridge.threads.send_message(thread.id, "hello", alice)
    live = await bridge.threads.list_messages(thread.id)

    monkeypatch.setattr(backend, "list_messages", _down)
    mirrored = await bridge.threads.list_messages(thread.id)

    assert [m.id for m in mirrored] == [m.id for m in live]
    with pytest.raises(BackendUnavailable):
        await bridge.threads.list_messages("thread_unknown")


@pytest.mark.asyncio
async def test_list_messages_for_unknown_thread(bridge) -> None:
    with pytest.raises(ThreadNotFound):
        await bridge.threads.list_messages("thread_unknown")


@pytest.mark.asyncio
async def test_send_failure_surfaces_and_is_tracked(bridge, backend, mint, monkeypatch) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)

    monkeypatch.setattr(backend, "send_message", _down)
    with pytest.raises(BackendUnavailable):
        await bridge.threads.send_message(thread.id, "hello", alice)

    op = next(o for o in bridge.tracker.for_subject("alice") if o.type == "MessageSend")
    assert not op.success and op.error == "backend is down"
    mirrored = await bridge.store.messages(thread.id)
    assert all(m.kind is MessageKind.system for m in mirrored)


@pytest.mark.asyncio
async def test_slow_backend_hits_deadline(backend, clock, mint, monkeypatch) -> None:
    bridge = await build_bridge(
        Settings(env="test", backend_timeout_seconds=0.05), backend=backend, clock=clock
    )
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))

    async def slow(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(backend, "create_thread", slow)
    with pytest.raises(BackendUnavailable):
        await bridge.threads.create_thread("demo", alice)
    assert await bridge.store.all() == []
    await bridge.aclose()


@pytest.mark.asyncio
async def test_garbled_backend_read_falls_back_to_mirror(
    bridge, backend, mint, monkeypatch
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    await bridge.threads.send_message(thread.id, "hello", alice)

    def garbled(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"value": [{"content": "x"}]})

    remote = HttpBackendService(
        http=httpx.AsyncClient(transport=httpx.MockTransport(garbled), base_url="https://b.test"),
        access_key="k",
    )
    monkeypatch.setattr(backend, "list_messages", remote.list_messages)

    mirrored = await bridge.threads.list_messages(thread.id)

    assert [m.body for m in mirrored if m.kind is MessageKind.text] == ["hello"]
    await remote.aclose()


@pytest.mark.asyncio
async def test_rejected_sender_token_is_dropped_so_next_send_recovers(
    bridge, backend, mint
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    assert backend.calls["issue_token"] == 1

    # Backend restart: every token it issued before is now unknown to it.
    backend._tokens.clear()
    with pytest.raises(DelegationDenied):
        await bridge.threads.send_message(thread.id, "lost", alice)
    assert bridge.engine.cached("alice", "origin") is None

    sent = await bridge.threads.send_message(thread.id, "hello", alice)

    assert sent.body == "hello"
    assert backend.calls["issue_token"] == 2
    failed = next(o for o in bridge.tracker.for_subject("alice") if not o.success)
    assert failed.type == "MessageSend"
    assert any(s.name == "DeliverMessage" and not s.success for s in failed.steps)


@pytest.mark.asyncio
async def test_failed_welcome_does_not_duplicate_thread_on_retry(
    bridge, backend, mint, monkeypatch
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    monkeypatch.setattr(backend, "send_message", _down)

    first = await bridge.threads.create_thread("demo", alice)
    again = await bridge.threads.create_thread("demo", alice)

    assert again.id == first.id
    assert backend.calls["create_thread"] == 1
    assert len(await bridge.store.all()) == 1
    reused, created = [o for o in bridge.tracker.for_subject("alice") if o.type == "ThreadCreation"]
    assert created.success and reused.success
    assert any(s.name == "SystemMessage" and not s.success for s in created.steps)
    assert [s.name for s in reused.steps] == ["CheckCurrentThread"]


@pytest.mark.asyncio
async def test_failed_join_announcement_keeps_participant(
    bridge, backend, mint, monkeypatch
) -> None:
    alice = bridge.engine.authenticate(mint("alice", "origin", address=ALICE))
    thread = await bridge.threads.create_thread("demo", alice)
    carol = bridge.engine.authenticate(mint("carol", "host", address="carol@host.example"))
    monkeypatch.setattr(backend, "send_message", _down)

    updated = await bridge.threads.add_participant(thread.id, carol)

    assert any(p.subject == "carol" for p in updated.participants)
    assert any(p.subject == "carol" for p in (await bridge.store.get(thread.id)).participants)
