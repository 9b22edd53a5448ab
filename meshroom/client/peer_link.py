"""
meshroom.client.peer_link
~~~~~~~~~~~~~~~~~~~~~~~~~

PeerLink —— 本地客户端针对单个远端参与者的协商状态机。

状态只会前进: ``new → negotiating → connected``，``closed`` 为终态。
``negotiating`` 期间的角色（offering / answering）记录在 ``role`` 上。

同一 PeerLink 任意时刻最多只有一个本地描述操作在进行（``_op_lock``），
不会出现重叠的 setLocalDescription。协商步骤本身没有超时：
卡住的连接只会被 REMOVE_PEER 或本地离开清理。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from meshroom.core.logging import get_logger
from meshroom.core.settings import settings
from meshroom.schemas.signaling import IceCandidateData, SessionDescriptionData

logger = get_logger(__name__)

TrackCallback = Callable[[str, MediaStreamTrack], Awaitable[None]]


class LinkState(str, Enum):
    NEW = "new"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class LinkRole(str, Enum):
    OFFERING = "offering"
    ANSWERING = "answering"


_STATE_ORDER: dict[LinkState, int] = {
    LinkState.NEW: 0,
    LinkState.NEGOTIATING: 1,
    LinkState.CONNECTED: 2,
    LinkState.CLOSED: 3,
}


def default_peer_connection() -> RTCPeerConnection:
    """按 ``settings.ICE_SERVERS`` 创建一个 aiortc 连接。"""
    return RTCPeerConnection(
        RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in settings.ICE_SERVERS]),
    )


def extract_candidates(sdp: str) -> list[IceCandidateData]:
    """从一份 SDP 中取出全部 ``a=candidate`` 行，带上所属 m-line 的 mid 与序号。"""
    sections: list[tuple[str | None, list[str]]] = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append((None, []))
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1] = (line[len("a=mid:"):], sections[-1][1])
        elif line.startswith("a=candidate:"):
            sections[-1][1].append(line[len("a="):])

    return [
        IceCandidateData(candidate=candidate, sdp_mid=mid, sdp_mline_index=index)
        for index, (mid, candidates) in enumerate(sections)
        for candidate in candidates
    ]


class PeerLink:
    """与一个远端 peer 的连接及其协商状态。

    Attributes:
        peer_id: 远端连接 ID（由中继分配）。
        connection: 底层 ``RTCPeerConnection``。
        state: 当前协商状态。
        role: 协商角色（进入 negotiating 后确定）。
        failed: 底层连接是否进入过 failed 状态；只记录，不自动重试或拆除。
        tracks: 已挂到连接上的本地轨道副本。
    """

    def __init__(
        self,
        peer_id: str,
        connection: RTCPeerConnection,
        on_track: TrackCallback | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.connection = connection
        self.state = LinkState.NEW
        self.role: LinkRole | None = None
        self.failed = False
        self.tracks: list[MediaStreamTrack] = []
        self._on_track = on_track
        self._op_lock = asyncio.Lock()
        self._announced: set[tuple[str | None, str]] = set()
        self._wire_observers()

    def _wire_observers(self) -> None:
        connection = self.connection

        @connection.on("iceconnectionstatechange")
        async def on_ice_state() -> None:
            logger.debug("ICE 状态变化 | peer=%s | %s", self.peer_id, connection.iceConnectionState)
            if connection.iceConnectionState == "failed":
                logger.warning("ICE 连接失败 | peer=%s", self.peer_id)

        @connection.on("connectionstatechange")
        async def on_connection_state() -> None:
            logger.debug("连接状态变化 | peer=%s | %s", self.peer_id, connection.connectionState)
            if connection.connectionState == "connected":
                self._advance(LinkState.CONNECTED)
            elif connection.connectionState == "failed":
                self.failed = True
                logger.error("连接失败 | peer=%s", self.peer_id)

        @connection.on("track")
        async def on_track(track: MediaStreamTrack) -> None:
            logger.info("收到远端轨道 | peer=%s | kind=%s", self.peer_id, track.kind)
            if self._on_track is not None and self.state is not LinkState.CLOSED:
                await self._on_track(self.peer_id, track)

    @property
    def closed(self) -> bool:
        return self.state is LinkState.CLOSED

    def _advance(self, state: LinkState) -> None:
        """只允许向前迁移；closed 之后不再变化。"""
        if self.closed or _STATE_ORDER[state] <= _STATE_ORDER[self.state]:
            return
        logger.debug("PeerLink 状态 | peer=%s | %s → %s", self.peer_id, self.state.value, state.value)
        self.state = state

    def _begin(self, role: LinkRole) -> None:
        if self.role is None:
            self.role = role
        self._advance(LinkState.NEGOTIATING)

    # ── 协商 ──────────────────────────────────────────────────────────

    def attach_tracks(self, tracks: list[MediaStreamTrack]) -> None:
        """把本地轨道挂到连接上（必须在生成 offer / answer 之前）。"""
        for track in tracks:
            self.connection.addTrack(track)
            self.tracks.append(track)

    async def create_offer(self) -> SessionDescriptionData | None:
        """生成本地 offer 并设为本地描述。链路已关闭时返回 None。"""
        async with self._op_lock:
            if self.closed:
                return None
            self._begin(LinkRole.OFFERING)
            offer = await self.connection.createOffer()
            await self.connection.setLocalDescription(offer)
            local = self.connection.localDescription
            return SessionDescriptionData(type=local.type, sdp=local.sdp)

    async def apply_remote_description(
        self, description: SessionDescriptionData,
    ) -> SessionDescriptionData | None:
        """应用远端描述；若为 offer，则生成并返回 answer，否则返回 None。

        远端描述被拒绝时只记录日志并标记 ``failed``，不抛出。
        """
        async with self._op_lock:
            if self.closed:
                return None
            self._begin(LinkRole.ANSWERING if description.type == "offer" else LinkRole.OFFERING)
            try:
                await self.connection.setRemoteDescription(
                    RTCSessionDescription(sdp=description.sdp, type=description.type),
                )
                logger.debug("已设置远端描述 | peer=%s | type=%s", self.peer_id, description.type)
                if description.type != "offer":
                    return None

                answer = await self.connection.createAnswer()
                await self.connection.setLocalDescription(answer)
            except Exception as e:
                self.failed = True
                logger.error("应用远端描述失败 | peer=%s | %s", self.peer_id, e, exc_info=True)
                return None

            local = self.connection.localDescription
            return SessionDescriptionData(type=local.type, sdp=local.sdp)

    async def add_ice_candidate(self, data: IceCandidateData) -> None:
        """应用一个远端 ICE 候选；end-of-candidates（空字符串）直接忽略。"""
        if not data.candidate:
            return
        raw = data.candidate.split(":", 1)[1] if data.candidate.startswith("candidate:") else data.candidate
        try:
            candidate = candidate_from_sdp(raw)
        # candidate_from_sdp 用 assert 校验字段数
        except (AssertionError, ValueError, IndexError) as e:
            logger.warning("无法解析 ICE 候选 | peer=%s | %s", self.peer_id, e)
            return
        candidate.sdpMid = data.sdp_mid
        candidate.sdpMLineIndex = data.sdp_mline_index

        async with self._op_lock:
            if self.closed:
                return
            try:
                await self.connection.addIceCandidate(candidate)
            except Exception as e:
                logger.warning("添加 ICE 候选失败 | peer=%s | %s", self.peer_id, e)

    def pending_local_candidates(self) -> list[IceCandidateData]:
        """本地描述中尚未通告过的 ICE 候选。

        aiortc 在 setLocalDescription 返回前就完成候选收集，候选都写在 SDP 里；
        这里把它们逐个取出，供以 RELAY_ICE 单独通告给浏览器端。
        """
        local = self.connection.localDescription
        if local is None or self.closed:
            return []
        fresh = [
            c for c in extract_candidates(local.sdp)
            if (c.sdp_mid, c.candidate) not in self._announced
        ]
        self._announced.update((c.sdp_mid, c.candidate) for c in fresh)
        return fresh

    async def close(self) -> None:
        """关闭底层连接；幂等。"""
        if self.closed:
            return
        self.state = LinkState.CLOSED
        for track in self.tracks:
            track.stop()
        await self.connection.close()
        logger.info("PeerLink 已关闭 | peer=%s", self.peer_id)
