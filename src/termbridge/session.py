"""Terminal sessions: one shell process bound to one WebSocket connection."""

import asyncio
import codecs
import logging
from enum import Enum

import websockets
from websockets.asyncio.server import ServerConnection

from termbridge import protocol
from termbridge.config import ServerConfig
from termbridge.process import PtyProcess, SpawnError

logger = logging.getLogger("termbridge.session")

SPAWN_FAILED_TEMPLATE = "\x1b[31mFailed to start shell: {error}\x1b[0m\r\n"


class SessionState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    CLOSED = "closed"


class CloseReason(str, Enum):
    CLIENT_CLOSED = "client_closed"
    PROCESS_EXITED = "process_exited"
    SPAWN_FAILED = "spawn_failed"
    ERROR = "error"


class TerminalSession:
    """Pairs a single connection with a single PTY process.

    The session owns both handles. Whichever side ends first tears down
    the other; ``on_close`` runs its body exactly once.
    """

    def __init__(self, ws: ServerConnection, config: ServerConfig):
        self.ws = ws
        self.config = config
        self.process: PtyProcess | None = None
        self.state = SessionState.STARTING
        self.close_reason: CloseReason | None = None
        self._tasks: list[asyncio.Task] = []
        self._closing = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def run(self) -> None:
        """Run the session until the connection or the process ends."""
        if not await self.on_open():
            return

        self._tasks = [
            asyncio.create_task(self._pump_output(), name="pty->ws"),
            asyncio.create_task(self._pump_input(), name="ws->pty"),
            asyncio.create_task(self._watch_exit(), name="exit"),
        ]
        reason = CloseReason.ERROR
        try:
            done, _ = await asyncio.wait(
                self._tasks, return_when=asyncio.FIRST_COMPLETED
            )
            finished = done.pop()
            if finished.cancelled():
                # on_close was already called from outside the session
                pass
            elif finished.exception() is None:
                reason = finished.result()
            else:
                logger.error(
                    "Session task %s failed",
                    finished.get_name(),
                    exc_info=finished.exception(),
                )
        finally:
            await self.on_close(reason)

    async def on_open(self) -> bool:
        """Spawn the shell. Returns False if the session could not start."""
        try:
            self.process = await PtyProcess.spawn(
                shell=self.config.shell or None,
                cwd=self.config.cwd or None,
                cols=self.config.cols,
                rows=self.config.rows,
                term=self.config.term,
            )
        except SpawnError as e:
            logger.warning("Spawn failed: %s", e)
            try:
                await self.ws.send(protocol.output_msg(
                    SPAWN_FAILED_TEMPLATE.format(error=e)
                ))
            except websockets.ConnectionClosed:
                pass
            await self.on_close(CloseReason.SPAWN_FAILED)
            return False

        self.state = SessionState.RUNNING
        return True

    def on_input(self, msg: protocol.Input) -> None:
        if self.process is not None:
            self.process.write(msg.data.encode("utf-8", errors="replace"))

    def on_resize(self, msg: protocol.Resize) -> None:
        if self.process is not None:
            self.process.resize(msg.cols, msg.rows)

    async def on_close(self, reason: CloseReason) -> None:
        """Tear the session down. Only the first call does anything."""
        if self._closing:
            return
        self._closing = True
        self.close_reason = reason

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Session task %s failed", task.get_name())

        if self.process is not None:
            await self.process.terminate(self.config.kill_grace_seconds)

        await self.ws.close()
        self.state = SessionState.CLOSED
        logger.info(
            "Session closed (%s), exit status %s",
            reason.value,
            self.process.returncode if self.process else None,
        )

    async def _pump_output(self) -> CloseReason:
        """Forward PTY output to the connection as output frames."""
        if self.process is None:
            return CloseReason.ERROR
        try:
            async for chunk in self.process.read():
                text = self._decoder.decode(chunk)
                if text:
                    await self.ws.send(protocol.output_msg(text))
            tail = self._decoder.decode(b"", final=True)
            if tail:
                await self.ws.send(protocol.output_msg(tail))
        except websockets.ConnectionClosed:
            return CloseReason.CLIENT_CLOSED
        return CloseReason.PROCESS_EXITED

    async def _pump_input(self) -> CloseReason:
        """Dispatch frames from the connection to the PTY."""
        try:
            async for raw in self.ws:
                msg = protocol.decode(raw)
                if isinstance(msg, protocol.Input):
                    self.on_input(msg)
                elif isinstance(msg, protocol.Resize):
                    self.on_resize(msg)
                elif isinstance(msg, protocol.Unrecognized):
                    logger.debug("Dropping frame: %s", msg.reason)
                else:
                    logger.debug("Dropping %s frame from client", type(msg).__name__)
        except websockets.ConnectionClosed:
            pass
        return CloseReason.CLIENT_CLOSED

    async def _watch_exit(self) -> CloseReason:
        """Wait for the shell to exit, then let buffered output drain."""
        if self.process is None:
            return CloseReason.ERROR
        status = await self.process.wait()
        logger.debug("pid %d exited with %s", self.process.pid, status)
        output_task = self._tasks[0]
        try:
            await asyncio.wait_for(
                asyncio.shield(output_task), self.config.exit_drain_seconds
            )
        except asyncio.TimeoutError:
            pass
        except websockets.ConnectionClosed:
            return CloseReason.CLIENT_CLOSED
        return CloseReason.PROCESS_EXITED
