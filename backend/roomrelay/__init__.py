"""Room Relay: two-person WebSocket chat rooms with short history replay."""
