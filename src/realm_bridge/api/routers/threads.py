"""
realm_bridge.api.routers.threads

Thread and message endpoints for authenticated principals from any configured realm.

Responsibilities:
- Create threads, list the caller's threads, fetch the caller's current thread.
- Join a thread, send messages as the caller, and read messages.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from starlette.status import HTTP_201_CREATED, HTTP_404_NOT_FOUND

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.deps import get_principal
from realm_bridge.auth.models import Principal
from realm_bridge.bridge import Bridge
from realm_bridge.threads.models import ChatMessage, Thread

router = APIRouter(prefix="/v1/threads", tags=["threads"])


class CreateThreadRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=512)
    # Bypass the "current thread" reuse and always create a fresh thread.
    force_new: bool = False


class SendMessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=28 * 1024)


class ParticipantResponse(BaseModel):
    subject: str
    display_name: str
    address: str
    realm_id: str
    is_external: bool
    is_placeholder: bool


class ThreadResponse(BaseModel):
    id: str
    topic: str
    created_by: str
    created_at: datetime
    is_cross_realm: bool
    participants: list[ParticipantResponse]

    @classmethod
    def of(cls, thread: Thread) -> ThreadResponse:
        return cls(
            id=thread.id,
            topic=thread.topic,
            created_by=thread.created_by,
            created_at=thread.created_at,
            is_cross_realm=thread.is_cross_realm,
            participants=[
                ParticipantResponse(
                    subject=p.subject,
                    display_name=p.display_name,
                    address=p.address,
                    realm_id=p.realm_id,
                    is_external=p.is_external,
                    is_placeholder=p.is_placeholder,
                )
                for p in thread.participants
            ],
        )


class MessageResponse(BaseModel):
    id: str
    thread_id: str
    body: str
    kind: str
    sender_id: str
    sender_name: str
    sender_subject: str | None
    sender_realm: str | None
    sent_at: datetime

    @classmethod
    def of(cls, m: ChatMessage) -> MessageResponse:
        return cls(
            id=m.id,
            thread_id=m.thread_id,
            body=m.body,
            kind=m.kind.value,
            sender_id=m.sender_id,
            sender_name=m.sender_name,
            sender_subject=m.sender_subject,
            sender_realm=m.sender_realm,
            sent_at=m.sent_at,
        )


@router.post("", response_model=ThreadResponse, status_code=HTTP_201_CREATED)
async def create_thread(
    body: CreateThreadRequest,
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> ThreadResponse:
    thread = await bridge.threads.create_thread(body.topic, principal, force_new=body.force_new)
    return ThreadResponse.of(thread)


@router.get("", response_model=list[ThreadResponse])
async def list_threads(
    include_all: bool = Query(default=False, alias="all"),
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> list[ThreadResponse]:
    threads = await bridge.threads.list_threads_for(principal, include_all=include_all)
    return [ThreadResponse.of(t) for t in threads]


@router.get("/current", response_model=ThreadResponse)
async def current_thread(
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> ThreadResponse:
    thread = await bridge.threads.current_thread(principal)
    if thread is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="No current thread")
    return ThreadResponse.of(thread)


@router.post("/{thread_id}/participants", response_model=ThreadResponse)
async def join_thread(
    thread_id: str,
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> ThreadResponse:
    thread = await bridge.threads.add_participant(thread_id, principal)
    return ThreadResponse.of(thread)


@router.post(
    "/{thread_id}/messages", response_model=MessageResponse, status_code=HTTP_201_CREATED
)
async def send_message(
    thread_id: str,
    body: SendMessageRequest,
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> MessageResponse:
    message = await bridge.threads.send_message(thread_id, body.body, principal)
    return MessageResponse.of(message)


@router.get(
    "/{thread_id}/messages",
    response_model=list[MessageResponse],
    dependencies=[Depends(get_principal)],
)
async def list_messages(
    thread_id: str,
    bridge: Bridge = Depends(bridge_dep),
) -> list[MessageResponse]:
    return [MessageResponse.of(m) for m in await bridge.threads.list_messages(thread_id)]
