"""
realm_bridge.threads.reconcile

Placeholder reconciliation as a pure function.

Responsibilities:
- Bind placeholder participants to a principal whose address matches (case-insensitive).
- Report which threads changed so the caller can persist them and join the backend.

No I/O and no mutation of the inputs; running it twice yields no further changes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from realm_bridge.auth.models import Principal
from realm_bridge.threads.models import Participant, Thread


@dataclass(frozen=True, slots=True)
class Reconciliation:
    threads: tuple[Thread, ...]
    changed: frozenset[str]

    def changed_threads(self) -> list[Thread]:
        return [t for t in self.threads if t.id in self.changed]


def bind_participant(
    placeholder: Participant, principal: Principal, identity: str | None
) -> Participant:
    return replace(
        placeholder,
        subject=principal.subject,
        display_name=principal.display_name or placeholder.display_name,
        realm_id=principal.realm_id,
        is_external=principal.is_external,
        identity=identity if identity is not None else placeholder.identity,
    )


def reconcile_membership(
    threads: Iterable[Thread],
    principal: Principal,
    identity: str | None = None,
) -> Reconciliation:
    out: list[Thread] = []
    changed: set[str] = set()
    for thread in threads:
        if not principal.address:
            out.append(thread)
            continue
        rewritten = tuple(
            bind_participant(p, principal, identity)
            if p.is_placeholder and p.matches_address(principal.address)
            else p
            for p in thread.participants
        )
        if rewritten != thread.participants:
            thread = replace(thread, participants=rewritten)
            changed.add(thread.id)
        out.append(thread)
    return Reconciliation(threads=tuple(out), changed=frozenset(changed))


# --- Module Notes -----------------------------------------------------------
# `is_cross_realm` is derived from participants, so a bound external principal flips the
# thread's flag without any extra bookkeeping.
