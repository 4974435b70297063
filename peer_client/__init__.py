from peer_client.client import SignalingClient
from peer_client.events import ClientObserver
from peer_client.media import LocalMedia, MediaConstraints
from peer_client.negotiation import PeerNegotiator, PeerState

__all__ = [
    "SignalingClient",
    "ClientObserver",
    "LocalMedia",
    "MediaConstraints",
    "PeerNegotiator",
    "PeerState",
]
