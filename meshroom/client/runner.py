"""
meshroom.client.runner
~~~~~~~~~~~~~~~~~~~~~~

无界面客户端：连接信令中继，进入指定房间（未指定则新建一个 v4 UUID 房间），
一直运行到被取消或信令连接关闭；任何退出路径都会离开房间。
"""
from __future__ import annotations

import asyncio
import uuid

from meshroom.client.negotiation_channel import NegotiationChannel
from meshroom.client.orchestrator import PeerMeshOrchestrator
from meshroom.core.logging import get_logger
from meshroom.schemas.signaling import ShareRoomsPayload, SignalEvent

logger = get_logger(__name__)


def _log_rooms(payload: ShareRoomsPayload) -> None:
    logger.info("可加入的房间: %s", payload.rooms)


async def run_client(room_id: str | None = None, url: str | None = None) -> None:
    """运行一个加入 ``room_id`` 的网格客户端。"""
    room_id = room_id or str(uuid.uuid4())
    channel = await NegotiationChannel.connect(url)
    channel.on(SignalEvent.SHARE_ROOMS, _log_rooms)
    receiver = asyncio.create_task(channel.run())

    try:
        async with PeerMeshOrchestrator(room_id, channel):
            await receiver
    finally:
        channel.off(SignalEvent.SHARE_ROOMS, _log_rooms)
        receiver.cancel()
        try:
            await receiver
        except asyncio.CancelledError:
            pass
        await channel.close()
