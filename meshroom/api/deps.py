from fastapi import Request

from meshroom.services.signaling_relay import SignalingRelay


def get_relay(request: Request) -> SignalingRelay:
    return request.app.state.relay
