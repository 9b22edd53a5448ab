"""
meshroom.api.signaling_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

信令 WebSocket 端点。

每个浏览器/客户端保持一条 ``/ws/signaling`` 连接。帧按到达顺序逐个处理：
上一帧的登记表修改与全部投递完成后，才读取同一连接的下一帧。

无效帧（非 JSON、未知事件、载荷不合法）只记日志并丢弃，不会断开连接。
无论连接以何种方式结束（包括处理任务被取消），都会执行一次与 LEAVE 相同的清理。
"""
from __future__ import annotations

import anyio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from meshroom.core.errors import FrameError
from meshroom.core.logging import connection_id_ctx_var, get_logger
from meshroom.schemas.signaling import decode_frame
from meshroom.services.signaling_relay import SignalingRelay

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """信令中继端点。

    协议: 每帧为 ``{"event": <事件名>, "data": <载荷>}``，事件见
    ``meshroom.schemas.signaling.SignalEvent``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    relay: SignalingRelay = websocket.app.state.relay

    await websocket.accept()
    session = await relay.connect(websocket.send_text)
    token = connection_id_ctx_var.set(session.connection_id)

    try:
        while True:
            raw: str = await websocket.receive_text()
            try:
                event, data = decode_frame(raw)
                await relay.dispatch(session, event, data)
            except FrameError as e:
                logger.warning("丢弃无效信令帧: %s", e)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("信令连接异常: %s", e, exc_info=True)
    finally:
        # 处理任务被取消后，REMOVE_PEER 仍须投递给室友
        with anyio.CancelScope(shield=True):
            await relay.disconnect(session)
        connection_id_ctx_var.reset(token)
