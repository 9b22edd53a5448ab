"""
meshroom
~~~~~~~~

全网状（full-mesh）WebRTC 房间：FastAPI 信令中继 + aiortc 对等网格客户端。
"""
__version__ = "0.1.0"
