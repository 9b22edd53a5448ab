"""
meshroom.client.media
~~~~~~~~~~~~~~~~~~~~~

本地音视频会话 —— 在房间内期间持有本机采集的轨道。

- 采集通过 aiortc ``MediaPlayer`` 打开 ``settings.MEDIA_SOURCE``
- 每个 PeerLink 通过 ``MediaRelay.subscribe()`` 拿到只读副本，互不抢帧
- ``stop()`` 恰好释放一次采集轨道，重复调用无效果
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay

from meshroom.core.errors import MediaAcquisitionError
from meshroom.core.logging import get_logger
from meshroom.core.settings import settings

logger = get_logger(__name__)

# 返回一个带 ``audio`` / ``video`` 属性的采集源（MediaPlayer 或同构对象）
PlayerFactory = Callable[[], Any]


def default_player() -> MediaPlayer:
    """按配置打开本地采集设备。"""
    return MediaPlayer(
        settings.MEDIA_SOURCE,
        format=settings.MEDIA_FORMAT,
        options=settings.MEDIA_OPTIONS,
    )


class LocalMediaSession:
    """本地采集的音视频轨道。

    Attributes:
        tracks: 采集源轨道（音频在前，视频在后；缺失的类型不出现）。
        stopped: 是否已释放。
    """

    def __init__(self, tracks: list[MediaStreamTrack]) -> None:
        self.tracks = tracks
        self.stopped = False
        self._relay = MediaRelay()

    @classmethod
    def acquire(cls, player_factory: PlayerFactory | None = None) -> LocalMediaSession:
        """打开本地音视频采集。

        Raises:
            MediaAcquisitionError: 设备不可用、无权限，或采集源没有任何轨道。
        """
        try:
            player = (player_factory or default_player)()
        except Exception as e:
            raise MediaAcquisitionError(f"无法打开本地采集设备: {e}") from e

        tracks = [t for t in (player.audio, player.video) if t is not None]
        if not tracks:
            raise MediaAcquisitionError("本地采集源没有可用的音视频轨道")

        logger.debug("本地轨道: %s", [t.kind for t in tracks])
        return cls(tracks)

    def subscribe(self) -> list[MediaStreamTrack]:
        """为一个 PeerLink 生成全部轨道的只读副本。"""
        return [self._relay.subscribe(track) for track in self.tracks]

    def subscribe_preview(self) -> MediaStreamTrack | None:
        """本地预览用的视频副本（无视频时为 None）。"""
        for track in self.tracks:
            if track.kind == "video":
                return self._relay.subscribe(track)
        return None

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            track.stop()
        logger.info("本地采集已停止")
