"""
meshroom.services.signaling_relay
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

信令中继 —— 基于 ``RoomRegistry`` 的事件路由器。

把客户端的生命周期事件与协商消息转换为定向投递:

- JOIN       → 更新登记表，广播房间列表，向新老成员分别下发 ADD_PEER
- LEAVE/断开 → 向前室友下发 REMOVE_PEER，更新登记表，广播房间列表
- RELAY_SDP  → 以 SESSION_DESCRIPTION 原样转发给目标连接
- RELAY_ICE  → 以 ICE_CANDIDATE 原样转发给目标连接

新加入者总是向每个已有成员发起 offer，已有成员从不向新加入者发起，
因此同一对连接之间不会出现双向 offer。

所有处理函数在同一个事件循环中执行，且在第一次 ``await`` 之前完成登记表修改，
逐对下发 ADD_PEER 前会重新确认双方仍在该房间，
因此并发的离开或断开不会留下指向已离开成员的 ADD_PEER。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from meshroom.core.errors import FrameError
from meshroom.core.logging import get_logger
from meshroom.schemas.signaling import (
    AddPeerPayload,
    JoinPayload,
    RelayIcePayload,
    RelaySdpPayload,
    RemovePeerPayload,
    ShareRoomsPayload,
    SignalEvent,
    encode_frame,
    parse_payload,
)
from meshroom.services.room_registry import RoomRegistry

logger = get_logger(__name__)

SendText = Callable[[str], Awaitable[None]]


class ConnectionSession:
    """单个传输连接的会话对象，连接建立时创建、断开时释放。

    Attributes:
        connection_id: 中继分配的唯一 ID，连接存续期间有效，不会复用。
        room_id: 当前所在房间（不在房间时为 None）。
        closed: 连接是否已断开（断开后不再向其投递）。
    """

    def __init__(self, connection_id: str, send: SendText) -> None:
        self.connection_id = connection_id
        self.room_id: str | None = None
        self.closed = False
        self._send = send
        self._send_lock = asyncio.Lock()

    async def emit(self, event: SignalEvent, payload: Any = None) -> None:
        """向本连接发送一个事件。发送失败只记日志：中继是尽力而为的。"""
        if self.closed:
            return
        frame = encode_frame(event, payload)
        try:
            async with self._send_lock:
                await self._send(frame)
        except Exception as e:
            logger.warning(
                "投递失败 | to=%s | event=%s | %s", self.connection_id, event.value, e,
            )

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.connection_id} room={self.room_id}>"


class SignalingRelay:
    """信令事件路由器，每个服务进程一个实例。

    Attributes:
        registry: 房间成员登记表（唯一的成员关系数据源）。
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry
        self._sessions: dict[str, ConnectionSession] = {}
        self._handlers: dict[SignalEvent, Callable[[ConnectionSession, Any], Awaitable[None]]] = {
            SignalEvent.JOIN: self.handle_join,
            SignalEvent.LEAVE: self.handle_leave,
            SignalEvent.RELAY_SDP: self.handle_relay_sdp,
            SignalEvent.RELAY_ICE: self.handle_relay_ice,
        }

    # ── 连接生命周期 ──────────────────────────────────────────────────

    async def connect(self, send: SendText) -> ConnectionSession:
        """登记新连接，并立即告知它当前的公开房间列表。"""
        session = ConnectionSession(uuid.uuid4().hex, send)
        self._sessions[session.connection_id] = session
        logger.info("用户已连接 | id=%s | 在线: %d", session.connection_id, len(self._sessions))
        await session.emit(SignalEvent.SHARE_ROOMS, self._rooms_payload())
        return session

    async def disconnect(self, session: ConnectionSession) -> None:
        """连接断开：执行与 LEAVE 相同的清理，然后注销会话。可重复调用。"""
        if self._sessions.pop(session.connection_id, None) is None:
            return
        session.closed = True
        if await self._leave_room(session):
            await self.share_rooms()
        logger.info("用户已断开 | id=%s | 在线: %d", session.connection_id, len(self._sessions))

    async def dispatch(self, session: ConnectionSession, event: SignalEvent, data: dict[str, Any]) -> None:
        """把一个入站事件交给对应的处理函数。

        Raises:
            FrameError: 事件不是客户端可发送的类型，或载荷校验失败。
        """
        handler = self._handlers.get(event)
        if handler is None:
            raise FrameError(f"客户端不能发送事件 {event.value}")
        await handler(session, parse_payload(event, data))

    # ── 事件处理 ──────────────────────────────────────────────────────

    async def handle_join(self, session: ConnectionSession, payload: JoinPayload) -> None:
        room_id = payload.id
        if session.room_id == room_id:
            logger.debug("重复 JOIN，忽略 | room=%s", room_id)
            await self.share_rooms()
            return

        # 一个连接同时只属于一个房间：先完整离开旧房间
        if session.room_id is not None:
            await self._leave_room(session)

        self.registry.join(session.connection_id, room_id)
        session.room_id = room_id
        others = [m for m in self.registry.members_of(room_id) if m != session.connection_id]
        logger.info("加入房间 | room=%s | 已有成员=%s", room_id, others)

        await self.share_rooms()
        for member_id in others:
            # 每次投递都可能让出事件循环：期间任何一方离开，就不再为这一对下发 ADD_PEER
            if not self._in_room(session, room_id):
                break
            member = self._sessions.get(member_id)
            if member is None or not self._in_room(member, room_id):
                continue
            await session.emit(
                SignalEvent.ADD_PEER,
                AddPeerPayload(peer_id=member_id, create_offer=True),
            )
            if not (self._in_room(session, room_id) and self._in_room(member, room_id)):
                continue
            await member.emit(
                SignalEvent.ADD_PEER,
                AddPeerPayload(peer_id=session.connection_id, create_offer=False),
            )

    async def handle_leave(self, session: ConnectionSession, payload: None = None) -> None:
        if await self._leave_room(session):
            await self.share_rooms()

    async def handle_relay_sdp(self, session: ConnectionSession, payload: RelaySdpPayload) -> None:
        target = self._sessions.get(payload.peer_id)
        if target is None:
            logger.debug("SDP 目标已不在线，丢弃 | to=%s", payload.peer_id)
            return
        await target.emit(SignalEvent.SESSION_DESCRIPTION, {
            "peerID": session.connection_id,
            "sessionDescription": payload.session_description,
        })

    async def handle_relay_ice(self, session: ConnectionSession, payload: RelayIcePayload) -> None:
        target = self._sessions.get(payload.peer_id)
        if target is None:
            logger.debug("ICE 目标已不在线，丢弃 | to=%s", payload.peer_id)
            return
        await target.emit(SignalEvent.ICE_CANDIDATE, {
            "peerID": session.connection_id,
            "iceCandidate": payload.ice_candidate,
        })

    # ── 广播 ──────────────────────────────────────────────────────────

    async def share_rooms(self) -> None:
        """向所有在线连接广播当前的公开房间列表。"""
        payload = self._rooms_payload()
        await asyncio.gather(
            *(s.emit(SignalEvent.SHARE_ROOMS, payload) for s in list(self._sessions.values())),
        )

    def rooms_snapshot(self) -> list[str]:
        """当前公开房间列表（供 REST 接口使用）。"""
        return self.registry.list_advertisable_rooms()

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self._sessions)

    def session(self, connection_id: str) -> ConnectionSession | None:
        return self._sessions.get(connection_id)

    # ── 内部 ──────────────────────────────────────────────────────────

    def _rooms_payload(self) -> ShareRoomsPayload:
        return ShareRoomsPayload(rooms=self.registry.list_advertisable_rooms())

    async def _leave_room(self, session: ConnectionSession) -> bool:
        """让连接离开当前房间并通知双方拆除连接。返回是否确实离开了某个房间。"""
        room_id = session.room_id
        if room_id is None:
            return False

        others = [m for m in self.registry.members_of(room_id) if m != session.connection_id]
        self.registry.leave(session.connection_id, room_id)
        session.room_id = None
        logger.info("离开房间 | room=%s | 通知成员=%s", room_id, others)

        for member_id in others:
            member = self._sessions.get(member_id)
            if member is not None:
                await member.emit(
                    SignalEvent.REMOVE_PEER, RemovePeerPayload(peer_id=session.connection_id),
                )
            await session.emit(SignalEvent.REMOVE_PEER, RemovePeerPayload(peer_id=member_id))
        return True

    def _in_room(self, session: ConnectionSession, room_id: str) -> bool:
        return not session.closed and session.room_id == room_id
