"""
meshroom.client
~~~~~~~~~~~~~~~

对等网格客户端：信令通道 + 每个房间一个 ``PeerMeshOrchestrator``。
"""
from meshroom.client.media import LocalMediaSession
from meshroom.client.negotiation_channel import NegotiationChannel
from meshroom.client.orchestrator import PeerMeshOrchestrator
from meshroom.client.peer_link import LinkState, PeerLink
from meshroom.client.visible_clients import LOCAL_VIDEO, VisibleClientList
