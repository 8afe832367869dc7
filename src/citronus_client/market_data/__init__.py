"""Market metadata, WebSocket channels and local channel state."""
