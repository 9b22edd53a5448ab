"""
meshroom.api.rooms
~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 供页面在连上信令之前渲染“可加入房间”列表。

端点:
  - ``GET /rooms`` → 当前公开的房间列表（与 SHARE_ROOMS 广播内容一致）
"""
from fastapi import APIRouter, Depends, Request

from meshroom.api.deps import get_relay
from meshroom.core.rate_limit import limiter
from meshroom.core.settings import settings
from meshroom.schemas.api_response import ApiResponse
from meshroom.schemas.signaling import ShareRoomsPayload
from meshroom.services.signaling_relay import SignalingRelay

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取公开房间列表")
@limiter.limit(settings.ROOMS_RATE_LIMIT)
async def list_rooms(
    request: Request,
    relay: SignalingRelay = Depends(get_relay),
) -> ApiResponse[ShareRoomsPayload]:
    """返回所有 ID 为 v4 UUID 且至少有一名成员的房间。"""
    return ApiResponse.ok(data=ShareRoomsPayload(rooms=relay.rooms_snapshot()))
