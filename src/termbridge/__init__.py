"""termbridge: shell sessions on a pseudo-terminal, streamed over WebSocket."""

__version__ = "0.1.0"
