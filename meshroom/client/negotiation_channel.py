"""
meshroom.client.negotiation_channel
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

信令通道 —— 对双向消息通道（``websockets`` 客户端连接）的一层薄封装。

对外只暴露三个原语:

- ``send(event, payload)`` —— 发送一个命名事件
- ``on(event, handler)``   —— 订阅事件（同一 handler 重复订阅无效果）
- ``off(event, handler)``  —— 取消订阅（未订阅时无效果）

本身不做重试，也不做重排：顺序与送达保证完全继承自底层传输。
``run()`` 按到达顺序逐帧派发，异步 handler 会被 await 完毕后才处理下一帧。
"""
from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import BaseModel
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from meshroom.core.errors import FrameError
from meshroom.core.logging import get_logger
from meshroom.core.settings import settings
from meshroom.schemas.signaling import SignalEvent, decode_frame, encode_frame, parse_payload

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


class Transport(Protocol):
    """底层传输：可靠、有序、全双工的文本消息通道。"""

    async def send(self, message: str) -> None: ...

    def __aiter__(self) -> Any: ...

    async def close(self) -> None: ...


class NegotiationChannel:
    """类型化的信令收发通道。

    handler 收到的是已校验的载荷模型（如 ``AddPeerPayload``），LEAVE 之类无载荷事件收到 None。

    Attributes:
        transport: 底层传输连接。
    """

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self._handlers: dict[SignalEvent, list[Handler]] = {}

    @classmethod
    async def connect(cls, url: str | None = None) -> NegotiationChannel:
        """连接信令中继（默认使用 ``settings.SIGNALING_URL``）。"""
        target = url or settings.SIGNALING_URL
        transport = await connect(target)
        logger.info("已连接信令中继 | url=%s", target)
        return cls(transport)

    # ── 收发原语 ──────────────────────────────────────────────────────

    async def send(self, event: SignalEvent, payload: BaseModel | dict[str, Any] | None = None) -> None:
        await self.transport.send(encode_frame(event, payload))

    def on(self, event: SignalEvent, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: SignalEvent, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    def handler_count(self, event: SignalEvent) -> int:
        """某事件当前的订阅数。"""
        return len(self._handlers.get(event, ()))

    # ── 接收循环 ──────────────────────────────────────────────────────

    async def run(self) -> None:
        """按到达顺序接收并派发，直到传输关闭。"""
        try:
            async for raw in self.transport:
                try:
                    event, data = decode_frame(raw)
                    payload = parse_payload(event, data)
                except FrameError as e:
                    logger.warning("丢弃无效信令帧: %s", e)
                    continue
                await self.dispatch(event, payload)
        except ConnectionClosed as e:
            logger.warning("信令连接已关闭: %s", e)

    async def dispatch(self, event: SignalEvent, payload: Any) -> None:
        """把一个事件依次交给全部订阅者；单个 handler 出错不影响其他 handler。"""
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("信令 handler 异常 | event=%s | %s", event.value, e, exc_info=True)

    async def close(self) -> None:
        await self.transport.close()
