"""
meshroom.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间成员登记表 —— 纯内存的成员关系簿记：哪些连接在哪个房间里。

房间在第一次 JOIN 时隐式创建，成员集合为空时立即删除。
一个连接同一时刻最多属于一个房间。

登记表由 FastAPI lifespan 创建并挂在 ``app.state`` 上，
只通过 ``SignalingRelay`` 的事件处理函数修改。
"""
from __future__ import annotations

import uuid

from meshroom.core.logging import get_logger

logger = get_logger(__name__)


def is_advertisable_room_id(room_id: str) -> bool:
    """房间 ID 是否为合法的 v4 UUID（只有这类房间会出现在公开列表中）。"""
    try:
        parsed = uuid.UUID(room_id)
    except (ValueError, TypeError, AttributeError):
        return False
    # uuid.UUID 也接受 "{...}" / "urn:uuid:" / 无连字符写法，这里只认标准格式
    return parsed.version == 4 and str(parsed) == room_id.lower()


class RoomRegistry:
    """房间 → 成员连接 ID 集合的映射。

    Attributes:
        _rooms: room_id → 成员连接 ID 集合。
        _membership: connection_id → 所在 room_id（反向索引）。
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[str]] = {}
        self._membership: dict[str, str] = {}

    def join(self, connection_id: str, room_id: str) -> None:
        """把连接加入房间；若已在其他房间，先从旧房间移除。已是成员时幂等。"""
        previous = self._membership.get(connection_id)
        if previous == room_id:
            return
        if previous is not None:
            self.leave(connection_id, previous)

        self._rooms.setdefault(room_id, set()).add(connection_id)
        self._membership[connection_id] = room_id

    def leave(self, connection_id: str, room_id: str) -> None:
        """把连接移出房间；不是成员时无操作。房间空了就删除。"""
        members = self._rooms.get(room_id)
        if members is None or connection_id not in members:
            return

        members.discard(connection_id)
        if self._membership.get(connection_id) == room_id:
            del self._membership[connection_id]
        if not members:
            del self._rooms[room_id]
            logger.debug("房间已清空并移除 | room=%s", room_id)

    def members_of(self, room_id: str) -> list[str]:
        """返回房间当前成员的快照（顺序无意义），房间不存在时返回空列表。"""
        return list(self._rooms.get(room_id, ()))

    def room_of(self, connection_id: str) -> str | None:
        """连接当前所在的房间。"""
        return self._membership.get(connection_id)

    def list_advertisable_rooms(self) -> list[str]:
        """所有 ID 为 v4 UUID 的现存房间，即对外公开的“可加入房间”列表。"""
        return [room_id for room_id in self._rooms if is_advertisable_room_id(room_id)]

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
