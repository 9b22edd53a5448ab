"""
meshroom.schemas
~~~~~~~~~~~~~~~~
Pydantic schemas: REST 应答体与信令协议载荷。
"""
from meshroom.schemas.api_response import ApiResponse
from meshroom.schemas.signaling import (
    AddPeerPayload,
    IceCandidateData,
    IceCandidatePayload,
    JoinPayload,
    RelayIcePayload,
    RelaySdpPayload,
    RemovePeerPayload,
    SessionDescriptionData,
    SessionDescriptionPayload,
    ShareRoomsPayload,
    SignalEvent,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
