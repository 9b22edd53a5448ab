"""
meshroom.core.errors
~~~~~~~~~~~~~~~~~~~~

项目内的异常类型。

信令层的各种异常（未知 peer、重复 ADD_PEER、过期消息）按设计静默处理，
不在此定义；这里只保留需要向上层报告的错误。
"""
from __future__ import annotations


class MeshroomError(Exception):
    """所有 meshroom 异常的基类。"""


class MediaAcquisitionError(MeshroomError):
    """本地音视频采集失败（无设备 / 无权限 / 无可用轨道）。

    进入房间前发生，对本次会话是致命的：不会发送 JOIN，也不会创建任何 PeerLink。
    """


class FrameError(MeshroomError):
    """信令帧无法解析（非 JSON、未知事件或载荷校验失败）。"""
