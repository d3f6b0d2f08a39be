"""WebSocket server: bridges each incoming connection to its own PTY session."""

import asyncio
import logging
from pathlib import Path

import websockets
from websockets.asyncio.server import Server, ServerConnection

from termbridge.config import Config
from termbridge.session import TerminalSession
from termbridge.tls import create_server_ssl_context

logger = logging.getLogger("termbridge.server")


class TerminalServer:
    """Accepts connections and starts a TerminalSession for each.

    Sessions are independent; the server keeps no handle on them beyond
    a live count used for logging.
    """

    def __init__(self, config: Config):
        self.config = config
        self.sc = config.server
        self._active_sessions: int = 0

    @property
    def active_sessions(self) -> int:
        return self._active_sessions

    async def _handle_connection(self, ws: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        remote = ws.remote_address[0] if ws.remote_address else "unknown"
        self._active_sessions += 1
        logger.info(
            "Connection from %s (%d active)", remote, self._active_sessions
        )

        session = TerminalSession(ws, self.sc)
        try:
            await session.run()
        except Exception:
            # One session's failure must never reach the listener
            logger.exception("Session for %s failed", remote)
        finally:
            self._active_sessions -= 1
            logger.info(
                "Session ended for %s (%s)",
                remote,
                session.close_reason.value if session.close_reason else "unknown",
            )

    async def start(self) -> Server:
        """Bind the listening socket and return the running server."""
        ssl_ctx = None
        if self.config.tls_enabled:
            ssl_ctx = create_server_ssl_context(
                Path(self.sc.tls_cert), Path(self.sc.tls_key)
            )

        server = await websockets.serve(
            self._handle_connection,
            self.sc.host,
            self.sc.port,
            ssl=ssl_ctx,
            max_size=self.sc.max_message_size,
            ping_interval=self.sc.ping_interval,
            ping_timeout=self.sc.ping_timeout,
        )
        logger.info(
            "Terminal WebSocket server running on %s://%s:%d",
            "wss" if ssl_ctx else "ws",
            self.sc.host,
            self.sc.port,
        )
        logger.info("Shell: %s", self.sc.shell or "$SHELL (fallback sh)")
        return server

    async def serve(self) -> None:
        """Start the WebSocket server and run forever."""
        server = await self.start()
        async with server:
            logger.info("Server is ready. Waiting for connections...")
            await asyncio.Future()  # Run forever
