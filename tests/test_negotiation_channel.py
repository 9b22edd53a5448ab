"""
tests.test_negotiation_channel
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

NegotiationChannel 订阅/退订与按序派发测试。
"""
from __future__ import annotations

import json
from typing import Any

import pytest

from meshroom.client.negotiation_channel import NegotiationChannel
from meshroom.schemas.signaling import AddPeerPayload, JoinPayload, RemovePeerPayload, SignalEvent
from tests.conftest import FakeTransport


def _frame(event: str, data: dict[str, Any] | None = None) -> str:
    return json.dumps({"event": event, "data": data or {}})


class TestSubscriptions:
    """测试 on / off 的配对语义。"""

    def test_duplicate_on_is_ignored(self, channel: NegotiationChannel) -> None:
        """同一 handler 重复订阅只算一次。"""
        async def handler(payload: Any) -> None: ...

        channel.on(SignalEvent.ADD_PEER, handler)
        channel.on(SignalEvent.ADD_PEER, handler)

        assert channel.handler_count(SignalEvent.ADD_PEER) == 1

    def test_off_unknown_is_noop(self, channel: NegotiationChannel) -> None:
        """退订未订阅的 handler 不报错。"""
        channel.off(SignalEvent.ADD_PEER, lambda payload: None)

        assert channel.handler_count(SignalEvent.ADD_PEER) == 0

    def test_on_off_balanced(self, channel: NegotiationChannel) -> None:
        """订阅与退订成对出现后不残留 handler。"""
        handler = lambda payload: None  # noqa: E731
        for _ in range(3):
            channel.on(SignalEvent.REMOVE_PEER, handler)
            channel.off(SignalEvent.REMOVE_PEER, handler)

        assert channel.handler_count(SignalEvent.REMOVE_PEER) == 0


class TestSendAndDispatch:
    """测试发送与接收派发。"""

    @pytest.mark.asyncio
    async def test_send_encodes_frame(self, channel: NegotiationChannel, transport: FakeTransport) -> None:
        """send 把模型编码为 {event, data} 帧。"""
        await channel.send(SignalEvent.JOIN, JoinPayload(id="room"))
        await channel.send(SignalEvent.LEAVE)

        assert transport.sent == [
            {"event": "join", "data": {"id": "room"}},
            {"event": "leave", "data": {}},
        ]

    @pytest.mark.asyncio
    async def test_run_dispatches_in_order(self) -> None:
        """run 按到达顺序派发已校验的载荷，并跳过无效帧。"""
        transport = FakeTransport([
            _frame("add-peer", {"peerID": "a", "createOffer": True}),
            "garbage",
            _frame("add-peer", {"peerID": "b"}),
            _frame("remove-peer", {"peerID": "a"}),
        ])
        channel = NegotiationChannel(transport)
        seen: list[Any] = []

        async def on_add(payload: AddPeerPayload) -> None:
            seen.append(("add", payload.peer_id, payload.create_offer))

        def on_remove(payload: RemovePeerPayload) -> None:
            seen.append(("remove", payload.peer_id))

        channel.on(SignalEvent.ADD_PEER, on_add)
        channel.on(SignalEvent.REMOVE_PEER, on_remove)
        await channel.run()

        assert seen == [("add", "a", True), ("remove", "a")]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_others(self, channel: NegotiationChannel) -> None:
        """某个 handler 抛异常时，其余 handler 照常收到事件。"""
        received: list[str] = []

        def broken(payload: Any) -> None:
            raise RuntimeError("boom")

        async def healthy(payload: RemovePeerPayload) -> None:
            received.append(payload.peer_id)

        channel.on(SignalEvent.REMOVE_PEER, broken)
        channel.on(SignalEvent.REMOVE_PEER, healthy)
        await channel.dispatch(SignalEvent.REMOVE_PEER, RemovePeerPayload(peer_id="x"))

        assert received == ["x"]

    @pytest.mark.asyncio
    async def test_unsubscribed_event_is_ignored(self, channel: NegotiationChannel) -> None:
        """无订阅者的事件直接忽略。"""
        await channel.dispatch(SignalEvent.SHARE_ROOMS, None)

    @pytest.mark.asyncio
    async def test_close_closes_transport(self, channel: NegotiationChannel, transport: FakeTransport) -> None:
        """close 关闭底层传输。"""
        await channel.close()

        assert transport.closed
