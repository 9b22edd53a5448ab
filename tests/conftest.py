"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存假对象替换真实传输、aiortc 连接与本地采集设备，
使单元测试无需网络、摄像头或麦克风即可运行。
"""
from __future__ import annotations

import asyncio
import json
import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from aiortc import RTCSessionDescription  # noqa: E402

from meshroom.client.negotiation_channel import NegotiationChannel  # noqa: E402
from meshroom.client.visible_clients import VisibleClientList  # noqa: E402
from meshroom.services.room_registry import RoomRegistry  # noqa: E402
from meshroom.services.signaling_relay import SignalingRelay  # noqa: E402

ROOM_V4: str = "3fa85f64-5717-4562-b3fc-2c963f66afa6"

# 两个 m-line，共 3 个候选（audio 1 个，video 2 个）
FAKE_SDP: str = "\r\n".join([
    "v=0",
    "o=- 1 1 IN IP4 0.0.0.0",
    "s=-",
    "t=0 0",
    "a=group:BUNDLE 0 1",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "c=IN IP4 0.0.0.0",
    "a=mid:0",
    "a=candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
    "m=video 9 UDP/TLS/RTP/SAVPF 96",
    "c=IN IP4 0.0.0.0",
    "a=mid:1",
    "a=candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
    "a=candidate:2 1 udp 1694498815 203.0.113.7 50000 typ srflx raddr 192.168.1.2 rport 50000",
    "",
])


# ── 中继侧 ────────────────────────────────────────────────────────────

class RecordingSocket:
    """记录中继投递给某个连接的全部帧。"""

    def __init__(self) -> None:
        self.frames: list[tuple[str, dict[str, Any]]] = []

    async def send(self, text: str) -> None:
        frame = json.loads(text)
        self.frames.append((frame["event"], frame["data"]))

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.frames if name == event]

    def clear(self) -> None:
        self.frames.clear()


class YieldingSocket(RecordingSocket):
    """每次投递前让出一次事件循环，模拟真实网络写入时其它连接的处理函数插入执行。"""

    async def send(self, text: str) -> None:
        await asyncio.sleep(0)
        await super().send(text)


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def relay(registry: RoomRegistry) -> SignalingRelay:
    return SignalingRelay(registry)


# ── 客户端侧 ──────────────────────────────────────────────────────────

class FakeTransport:
    """内存传输：记录发出的帧，按给定顺序吐出收到的帧。"""

    def __init__(self, incoming: list[str] | None = None) -> None:
        self.incoming = list(incoming or [])
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_send = False

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("transport closed")
        self.sent.append(json.loads(message))

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for message in self.incoming:
            yield message

    async def close(self) -> None:
        self.closed = True

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [frame["data"] for frame in self.sent if frame["event"] == event]


class FakeTrack:
    """最小的媒体轨道替身。"""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakePeerConnection:
    """aiortc ``RTCPeerConnection`` 的内存替身。"""

    def __init__(self) -> None:
        self.handlers: dict[str, Any] = {}
        self.added_tracks: list[Any] = []
        self.candidates: list[Any] = []
        self.localDescription: RTCSessionDescription | None = None
        self.remoteDescription: RTCSessionDescription | None = None
        self.connectionState = "new"
        self.iceConnectionState = "new"
        self.reject_remote = False
        self.closed = False

    def on(self, event: str) -> Any:
        def decorator(fn: Any) -> Any:
            self.handlers[event] = fn
            return fn
        return decorator

    async def emit(self, event: str, *args: Any) -> None:
        await self.handlers[event](*args)

    async def set_connection_state(self, state: str) -> None:
        self.connectionState = state
        await self.emit("connectionstatechange")

    def addTrack(self, track: Any) -> None:
        self.added_tracks.append(track)

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=FAKE_SDP, type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=FAKE_SDP, type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        if self.reject_remote:
            raise ValueError("remote description rejected")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate: Any) -> None:
        self.candidates.append(candidate)

    async def close(self) -> None:
        self.closed = True


class FakeMediaSession:
    """``LocalMediaSession`` 的替身：固定一条音频 + 一条视频。"""

    def __init__(self) -> None:
        self.tracks = [FakeTrack("audio"), FakeTrack("video")]
        self.stopped = False
        self.stop_calls = 0

    def subscribe(self) -> list[FakeTrack]:
        return [FakeTrack(t.kind) for t in self.tracks]

    def subscribe_preview(self) -> FakeTrack:
        return FakeTrack("video")

    def stop(self) -> None:
        self.stop_calls += 1
        self.stopped = True


class RecordingSink:
    """记录挂载轨道的渲染槽。"""

    def __init__(self) -> None:
        self.tracks: list[Any] = []
        self.closed = False

    async def attach(self, track: Any) -> None:
        self.tracks.append(track)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def channel(transport: FakeTransport) -> NegotiationChannel:
    return NegotiationChannel(transport)


@pytest.fixture()
def recording_clients() -> VisibleClientList:
    return VisibleClientList(sink_factory=lambda _id: RecordingSink())
