"""
meshroom.schemas.signaling
~~~~~~~~~~~~~~~~~~~~~~~~~~

信令协议的事件名与载荷模型。

每一帧是一个 JSON 对象 ``{"event": <事件名>, "data": <载荷>}``。
载荷字段沿用浏览器端的驼峰命名（``peerID`` / ``createOffer`` 等），
模型同时接受字段名与别名，输出时统一使用别名。
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from meshroom.core.errors import FrameError


class SignalEvent(str, Enum):
    """客户端 ↔ 中继之间的全部事件。"""

    JOIN = "join"                                    # C→S 加入/切换房间
    LEAVE = "leave"                                  # C→S 离开当前房间
    SHARE_ROOMS = "share-rooms"                      # S→C 广播可公开的房间列表
    ADD_PEER = "add-peer"                            # S→C 建立与 peerID 的连接
    REMOVE_PEER = "remove-peer"                      # S→C 拆除与 peerID 的连接
    RELAY_SDP = "relay-sdp"                          # C→S 请求转发 SDP
    RELAY_ICE = "relay-ice"                          # C→S 请求转发 ICE 候选
    SESSION_DESCRIPTION = "session-description"      # S→C 转发来的 SDP
    ICE_CANDIDATE = "ice-candidate"                  # S→C 转发来的 ICE 候选


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── 协商数据 ──────────────────────────────────────────────────────────

class SessionDescriptionData(_Payload):
    """一份 SDP（offer / answer），与浏览器 ``RTCSessionDescriptionInit`` 同构。"""

    type: Literal["offer", "answer", "pranswer", "rollback"] = Field(..., description="SDP 类型")
    sdp: str = Field(default="", description="SDP 正文")


class IceCandidateData(_Payload):
    """一个 ICE 候选，与浏览器 ``RTCIceCandidateInit`` 同构。

    ``candidate`` 为空字符串表示候选收集结束（end-of-candidates）。
    """

    candidate: str = Field(default="", description="a=candidate 行（含 candidate: 前缀）")
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")


# ── 事件载荷 ──────────────────────────────────────────────────────────

class JoinPayload(_Payload):
    id: str = Field(..., min_length=1, description="房间 ID，任意字符串；仅 v4 UUID 会被公开")


class ShareRoomsPayload(_Payload):
    rooms: list[str] = Field(default_factory=list, description="可公开的房间 ID 列表")


class AddPeerPayload(_Payload):
    peer_id: str = Field(..., alias="peerID")
    create_offer: bool = Field(..., alias="createOffer", description="接收方是否作为 offer 发起方")


class RemovePeerPayload(_Payload):
    peer_id: str = Field(..., alias="peerID")


class RelaySdpPayload(_Payload):
    """中继对 SDP 内容不做校验，原样转发。"""

    peer_id: str = Field(..., alias="peerID")
    session_description: dict[str, Any] = Field(..., alias="sessionDescription")


class SessionDescriptionPayload(RelaySdpPayload):
    pass


class RelayIcePayload(_Payload):
    """中继对候选内容不做校验，原样转发。"""

    peer_id: str = Field(..., alias="peerID")
    ice_candidate: dict[str, Any] = Field(..., alias="iceCandidate")


class IceCandidatePayload(RelayIcePayload):
    pass


# LEAVE 不带载荷
PAYLOAD_MODELS: dict[SignalEvent, type[_Payload] | None] = {
    SignalEvent.JOIN: JoinPayload,
    SignalEvent.LEAVE: None,
    SignalEvent.SHARE_ROOMS: ShareRoomsPayload,
    SignalEvent.ADD_PEER: AddPeerPayload,
    SignalEvent.REMOVE_PEER: RemovePeerPayload,
    SignalEvent.RELAY_SDP: RelaySdpPayload,
    SignalEvent.RELAY_ICE: RelayIcePayload,
    SignalEvent.SESSION_DESCRIPTION: SessionDescriptionPayload,
    SignalEvent.ICE_CANDIDATE: IceCandidatePayload,
}


# ── 编解码 ────────────────────────────────────────────────────────────

def encode_frame(event: SignalEvent, payload: BaseModel | dict[str, Any] | None = None) -> str:
    """把事件与载荷编码为一帧 JSON 文本。"""
    if isinstance(payload, BaseModel):
        data: dict[str, Any] = payload.model_dump(by_alias=True)
    else:
        data = payload or {}
    return json.dumps({"event": event.value, "data": data})


def decode_frame(raw: str | bytes) -> tuple[SignalEvent, dict[str, Any]]:
    """把一帧 JSON 文本解码为 ``(事件, 载荷字典)``。

    Raises:
        FrameError: 非 JSON、结构不对或事件名未知。
    """
    try:
        frame = json.loads(raw)
    except ValueError as e:
        raise FrameError(f"帧不是合法 JSON: {e}") from e

    if not isinstance(frame, dict):
        raise FrameError("帧必须是 JSON 对象")

    try:
        event = SignalEvent(frame.get("event"))
    except ValueError as e:
        raise FrameError(f"未知事件: {frame.get('event')!r}") from e

    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrameError(f"事件 {event.value} 的载荷必须是 JSON 对象")
    return event, data


def parse_payload(event: SignalEvent, data: dict[str, Any]) -> _Payload | None:
    """按事件类型校验载荷，返回对应模型实例（LEAVE 返回 None）。

    Raises:
        FrameError: 载荷校验失败。
    """
    model = PAYLOAD_MODELS[event]
    if model is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise FrameError(f"事件 {event.value} 的载荷不合法: {e.error_count()} 处错误") from e
