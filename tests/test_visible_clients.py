"""
tests.test_visible_clients
~~~~~~~~~~~~~~~~~~~~~~~~~~

VisibleClientList 延迟挂载（渲染槽就绪后才执行副作用）测试。
"""
from __future__ import annotations

import pytest

from meshroom.client.visible_clients import LOCAL_VIDEO, MediaSink, VisibleClientList
from tests.conftest import FakeTrack, RecordingSink


class TestDeferredAttachment:
    """测试“条目确认存在后再执行副作用”。"""

    @pytest.mark.asyncio
    async def test_effect_waits_for_sink(self) -> None:
        """渲染槽未提供前副作用排队，提供后立即执行。"""
        clients = VisibleClientList()
        track = FakeTrack("video")

        async def attach(sink: MediaSink) -> None:
            await sink.attach(track)

        await clients.add(LOCAL_VIDEO, attach)
        assert clients.clients == [LOCAL_VIDEO]
        assert clients.sink_of(LOCAL_VIDEO) is None

        sink = RecordingSink()
        await clients.provide_sink(LOCAL_VIDEO, sink)

        assert sink.tracks == [track]

    @pytest.mark.asyncio
    async def test_effect_runs_immediately_when_sink_present(self) -> None:
        """渲染槽已存在时副作用立即执行。"""
        clients = VisibleClientList()
        sink = RecordingSink()
        await clients.add("peer")
        await clients.provide_sink("peer", sink)

        track = FakeTrack("audio")
        await clients.add("peer", lambda s: s.attach(track))

        assert sink.tracks == [track]
        assert clients.clients == ["peer"]

    @pytest.mark.asyncio
    async def test_sink_factory_provisions_sinks(self, recording_clients: VisibleClientList) -> None:
        """配置了 sink_factory 时，新 ID 自动获得渲染槽。"""
        track = FakeTrack("video")
        await recording_clients.add("peer", lambda s: s.attach(track))

        sink = recording_clients.sink_of("peer")
        assert sink is not None
        assert sink.tracks == [track]

    @pytest.mark.asyncio
    async def test_sink_for_unknown_id_ignored(self) -> None:
        """不在列表中的 ID 提供渲染槽时忽略。"""
        clients = VisibleClientList()
        await clients.provide_sink("ghost", RecordingSink())

        assert clients.sink_of("ghost") is None


class TestRemoval:
    """测试移除与清空。"""

    @pytest.mark.asyncio
    async def test_remove_closes_sink_and_drops_pending(self) -> None:
        """移除 ID 时关闭渲染槽，排队中的副作用被丢弃。"""
        clients = VisibleClientList()
        sink = RecordingSink()
        await clients.add("a")
        await clients.provide_sink("a", sink)
        await clients.add("b", lambda s: s.attach(FakeTrack("video")))

        await clients.remove("a")
        await clients.remove("b")
        await clients.add("b")
        late = RecordingSink()
        await clients.provide_sink("b", late)

        assert sink.closed
        assert late.tracks == []
        assert clients.clients == ["b"]

    @pytest.mark.asyncio
    async def test_clear(self, recording_clients: VisibleClientList) -> None:
        """clear 移除全部条目。"""
        await recording_clients.add(LOCAL_VIDEO)
        await recording_clients.add("peer")

        await recording_clients.clear()

        assert len(recording_clients) == 0
