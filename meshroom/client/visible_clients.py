"""
meshroom.client.visible_clients
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

可见客户端列表 —— 本地预览与每个远端 peer 各占一项，每项绑定一个渲染槽（sink）。

媒体就绪时，对应的渲染槽可能还不存在（界面尚未挂载该项）。
``add()`` 带的副作用会按 ID 排队，等 ``provide_sink()`` 提供渲染槽后再执行；
渲染槽已存在则立即执行。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole

from meshroom.core.logging import get_logger

logger = get_logger(__name__)

LOCAL_VIDEO = "LOCAL_VIDEO"


class MediaSink(Protocol):
    """一个渲染槽：接收若干轨道并负责消费它们。"""

    async def attach(self, track: MediaStreamTrack) -> None: ...

    async def close(self) -> None: ...


ReadyEffect = Callable[[MediaSink], Awaitable[None]]
SinkFactory = Callable[[str], MediaSink]


class BlackholeSink:
    """无界面环境下的默认渲染槽：持续消费并丢弃帧，保证远端轨道不会堆积。"""

    def __init__(self) -> None:
        self._hole = MediaBlackhole()
        self.tracks: list[MediaStreamTrack] = []

    async def attach(self, track: MediaStreamTrack) -> None:
        self.tracks.append(track)
        self._hole.addTrack(track)
        await self._hole.start()

    async def close(self) -> None:
        await self._hole.stop()
        self.tracks.clear()


class VisibleClientList:
    """有序的可见客户端 ID 列表，以及按 ID 排队的“就绪后执行”副作用。

    Attributes:
        sink_factory: 若提供，新加入的 ID 会自动获得一个渲染槽（无界面时使用）。
    """

    def __init__(self, sink_factory: SinkFactory | None = None) -> None:
        self.sink_factory = sink_factory
        self._ids: list[str] = []
        self._sinks: dict[str, MediaSink] = {}
        self._pending: dict[str, list[ReadyEffect]] = {}

    @property
    def clients(self) -> list[str]:
        return list(self._ids)

    def sink_of(self, client_id: str) -> MediaSink | None:
        return self._sinks.get(client_id)

    async def add(self, client_id: str, on_ready: ReadyEffect | None = None) -> None:
        """加入一个 ID（已存在则保持原位），并在其渲染槽就绪后执行 ``on_ready``。"""
        if client_id not in self._ids:
            self._ids.append(client_id)

        if on_ready is not None:
            sink = self._sinks.get(client_id)
            if sink is not None:
                await on_ready(sink)
            else:
                self._pending.setdefault(client_id, []).append(on_ready)

        if self.sink_factory is not None and client_id not in self._sinks:
            await self.provide_sink(client_id, self.sink_factory(client_id))

    async def provide_sink(self, client_id: str, sink: MediaSink) -> None:
        """为已在列表中的 ID 提供渲染槽，并执行排队中的副作用。"""
        if client_id not in self._ids:
            logger.debug("渲染槽对应的 ID 不在列表中，忽略 | id=%s", client_id)
            return

        previous = self._sinks.get(client_id)
        if previous is not None and previous is not sink:
            await previous.close()
        self._sinks[client_id] = sink

        for effect in self._pending.pop(client_id, []):
            await effect(sink)

    async def remove(self, client_id: str) -> None:
        """移除 ID，连同其渲染槽绑定与排队中的副作用。"""
        if client_id in self._ids:
            self._ids.remove(client_id)
        self._pending.pop(client_id, None)
        sink = self._sinks.pop(client_id, None)
        if sink is not None:
            await sink.close()

    async def clear(self) -> None:
        for client_id in list(self._ids):
            await self.remove(client_id)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
