class ClientObserver:
    """Receives events from a SignalingClient. Override the methods you need."""

    def on_client_id(self, client_id):
        pass

    def on_track(self, client_id, track):
        pass

    def on_leave(self, client_id):
        pass

    def on_peer_state(self, client_id, state):
        pass

    def on_negotiation_failed(self, client_id, error):
        pass

    def on_error(self, payload):
        pass
