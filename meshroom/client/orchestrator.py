"""
meshroom.client.orchestrator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

对等网格编排器 —— 每个房间一个实例，完全由信令消息驱动。

为房间内每个远端参与者维护一个 ``PeerLink``:

- ADD_PEER            → 建立连接并挂上本地轨道；``createOffer`` 为真时发起 offer
- SESSION_DESCRIPTION → 应用远端描述；收到 offer 时回 answer
- ICE_CANDIDATE       → 应用远端候选
- REMOVE_PEER         → 关闭连接，解除渲染槽绑定，从可见列表移除

本地媒体就绪是进入房间的前提：采集失败不会发送 JOIN，也不会创建任何连接。
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from aiortc import MediaStreamTrack, RTCPeerConnection
from pydantic import ValidationError

from meshroom.client.media import LocalMediaSession
from meshroom.client.negotiation_channel import NegotiationChannel
from meshroom.client.peer_link import LinkState, PeerLink, default_peer_connection
from meshroom.client.visible_clients import LOCAL_VIDEO, BlackholeSink, MediaSink, VisibleClientList
from meshroom.core.errors import MediaAcquisitionError
from meshroom.core.logging import get_logger
from meshroom.schemas.signaling import (
    AddPeerPayload,
    IceCandidateData,
    IceCandidatePayload,
    JoinPayload,
    RelayIcePayload,
    RelaySdpPayload,
    RemovePeerPayload,
    SessionDescriptionData,
    SessionDescriptionPayload,
    SignalEvent,
)

logger = get_logger(__name__)


class PeerMeshOrchestrator:
    """一个房间内的全网状连接编排器。

    也可作为异步上下文管理器使用，``async with`` 的进出分别对应 ``enter()`` / ``leave()``。

    Attributes:
        room_id: 房间 ID。
        channel: 信令通道。
        links: 远端连接 ID → PeerLink。
        clients: 可见客户端列表（本地预览 + 远端 peer）。
        media: 本地音视频会话（进入房间后才有）。
    """

    def __init__(
        self,
        room_id: str,
        channel: NegotiationChannel,
        *,
        media_factory: Callable[[], LocalMediaSession] = LocalMediaSession.acquire,
        connection_factory: Callable[[], RTCPeerConnection] = default_peer_connection,
        clients: VisibleClientList | None = None,
    ) -> None:
        self.room_id = room_id
        self.channel = channel
        self.links: dict[str, PeerLink] = {}
        self.clients = clients if clients is not None else VisibleClientList(
            sink_factory=lambda _id: BlackholeSink(),
        )
        self.media: LocalMediaSession | None = None
        self._media_factory = media_factory
        self._connection_factory = connection_factory
        self._joined = False
        self._left = False
        self._subscriptions: list[tuple[SignalEvent, Callable[[Any], Any]]] = [
            (SignalEvent.ADD_PEER, self.handle_add_peer),
            (SignalEvent.SESSION_DESCRIPTION, self.handle_session_description),
            (SignalEvent.ICE_CANDIDATE, self.handle_ice_candidate),
            (SignalEvent.REMOVE_PEER, self.handle_remove_peer),
        ]

    # ── 房间生命周期 ──────────────────────────────────────────────────

    async def enter(self) -> None:
        """采集本地媒体 → 订阅信令 → 挂载本地预览 → 发送 JOIN。

        Raises:
            MediaAcquisitionError: 本地采集失败（此时不会发送 JOIN）。
        """
        try:
            self.media = self._media_factory()
        except MediaAcquisitionError as e:
            logger.error("获取本地媒体失败，无法进入房间 | room=%s | %s", self.room_id, e)
            raise

        for event, handler in self._subscriptions:
            self.channel.on(event, handler)

        try:
            preview = self.media.subscribe_preview()
            if preview is not None:
                await self.clients.add(LOCAL_VIDEO, lambda sink: sink.attach(preview))
            else:
                await self.clients.add(LOCAL_VIDEO)

            logger.info("加入房间 | room=%s", self.room_id)
            await self.channel.send(SignalEvent.JOIN, JoinPayload(id=self.room_id))
            self._joined = True
        except Exception:
            await self.leave()
            raise

    async def leave(self) -> None:
        """离开房间：停止本地采集，退订信令，发送 LEAVE，并在本地拆除全部连接。幂等。

        不依赖服务端随后下发的 REMOVE_PEER：传输可能已经在关闭。
        """
        if self._left:
            return
        self._left = True

        if self.media is not None:
            self.media.stop()

        for event, handler in self._subscriptions:
            self.channel.off(event, handler)

        if self._joined:
            logger.info("离开房间 | room=%s", self.room_id)
            try:
                await self.channel.send(SignalEvent.LEAVE)
            except Exception as e:
                logger.warning("LEAVE 发送失败（传输可能已关闭）| %s", e)

        for peer_id in list(self.links):
            await self._discard_link(peer_id)
        await self.clients.clear()

    async def __aenter__(self) -> PeerMeshOrchestrator:
        await self.enter()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.leave()

    # ── 信令处理 ──────────────────────────────────────────────────────

    async def handle_add_peer(self, payload: AddPeerPayload) -> None:
        peer_id = payload.peer_id
        if peer_id in self.links:
            logger.warning("peer 已存在，忽略重复 ADD_PEER | peer=%s", peer_id)
            return
        if self.media is None or self._left:
            return

        logger.info("新增 peer | peer=%s | createOffer=%s", peer_id, payload.create_offer)
        link = PeerLink(peer_id, self._connection_factory(), on_track=self._on_remote_track)
        self.links[peer_id] = link
        link.attach_tracks(self.media.subscribe())

        if payload.create_offer:
            offer = await link.create_offer()
            if offer is not None:
                await self._relay_description(link, offer)

    async def handle_session_description(self, payload: SessionDescriptionPayload) -> None:
        link = self.links.get(payload.peer_id)
        if link is None:
            return
        try:
            description = SessionDescriptionData.model_validate(payload.session_description)
        except ValidationError as e:
            logger.warning("SDP 格式不合法，丢弃 | peer=%s | %s", payload.peer_id, e)
            return

        answer = await link.apply_remote_description(description)
        if answer is not None:
            await self._relay_description(link, answer)

    async def handle_ice_candidate(self, payload: IceCandidatePayload) -> None:
        link = self.links.get(payload.peer_id)
        if link is None:
            return
        try:
            candidate = IceCandidateData.model_validate(payload.ice_candidate)
        except ValidationError as e:
            logger.warning("ICE 候选格式不合法，丢弃 | peer=%s | %s", payload.peer_id, e)
            return
        await link.add_ice_candidate(candidate)

    async def handle_remove_peer(self, payload: RemovePeerPayload) -> None:
        logger.info("移除 peer | peer=%s", payload.peer_id)
        await self._discard_link(payload.peer_id)

    # ── 查询 ──────────────────────────────────────────────────────────

    def state_of(self, peer_id: str) -> LinkState | None:
        link = self.links.get(peer_id)
        return link.state if link is not None else None

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _relay_description(self, link: PeerLink, description: SessionDescriptionData) -> None:
        """先转发 SDP，再逐个通告其中的本地 ICE 候选。链路已被替换或关闭时放弃。"""
        if self.links.get(link.peer_id) is not link:
            return
        await self.channel.send(
            SignalEvent.RELAY_SDP,
            RelaySdpPayload(peer_id=link.peer_id, session_description=description.model_dump()),
        )
        for candidate in link.pending_local_candidates():
            await self.channel.send(
                SignalEvent.RELAY_ICE,
                RelayIcePayload(
                    peer_id=link.peer_id,
                    ice_candidate=candidate.model_dump(by_alias=True),
                ),
            )

    async def _on_remote_track(self, peer_id: str, track: MediaStreamTrack) -> None:
        if peer_id not in self.links:
            return

        async def attach(sink: MediaSink) -> None:
            await sink.attach(track)

        await self.clients.add(peer_id, attach)

    async def _discard_link(self, peer_id: str) -> None:
        link = self.links.pop(peer_id, None)
        if link is not None:
            await link.close()
        await self.clients.remove(peer_id)
