"""Client bridge: connects a terminal emulator to a termbridge server."""

import asyncio
import codecs
import logging
import os
import signal
import ssl
import sys
import termios
import tty
from abc import ABC, abstractmethod
from enum import Enum
from typing import BinaryIO, Callable

import websockets

from termbridge import protocol

logger = logging.getLogger("termbridge.client")

CONNECT_FAILED = "\x1b[31mCould not connect to terminal backend.\x1b[0m"
CONNECTION_LOST = "\x1b[31mTerminal connection lost.\x1b[0m"
CONNECTION_CLOSED = "\x1b[31mTerminal connection closed.\x1b[0m"

DataCallback = Callable[[str], None]
ResizeCallback = Callable[[], None]


class BridgeState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class Emulator(ABC):
    """The terminal widget a bridge renders into and reads keystrokes from."""

    @abstractmethod
    def write(self, data: str) -> None:
        """Render output exactly as received."""

    def writeln(self, data: str) -> None:
        self.write(data + "\r\n")

    def focus(self) -> None:
        pass

    @abstractmethod
    def size(self) -> tuple[int, int]:
        """Current viewport as (cols, rows)."""

    @abstractmethod
    def on_data(self, callback: DataCallback) -> None:
        """Register the callback receiving keystrokes and pastes."""

    def add_resize_listener(self, callback: ResizeCallback) -> None:
        pass

    def remove_resize_listener(self, callback: ResizeCallback) -> None:
        pass

    def dispose(self) -> None:
        pass

    async def wait_closed(self) -> None:
        """Resolve when the user detaches from the emulator."""
        await asyncio.Future()


class TerminalBridge:
    """Bridges one emulator to one server-side terminal session.

    States go IDLE -> CONNECTING -> OPEN -> CLOSED or ERRORED. There is
    no reconnect; a new session needs a new bridge.
    """

    def __init__(
        self,
        url: str,
        emulator: Emulator,
        on_ready: Callable[["TerminalBridge"], None] | None = None,
        initial_resize_delay: float = 0.1,
        ssl_context: ssl.SSLContext | None = None,
    ):
        self.url = url
        self.emulator = emulator
        self.on_ready = on_ready
        self.initial_resize_delay = initial_resize_delay
        self.ssl_context = ssl_context
        self.state = BridgeState.IDLE
        self._ws: websockets.ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._sender: asyncio.Task | None = None
        self._receiver: asyncio.Task | None = None
        self._initial_resize: asyncio.TimerHandle | None = None
        self._listening = False
        self._disposed = False

    async def __aenter__(self) -> "TerminalBridge":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> bool:
        """Connect to the server. Returns False if the bridge errored."""
        self.state = BridgeState.CONNECTING
        ssl_ctx = self.ssl_context if self.url.startswith("wss://") else None
        try:
            self._ws = await websockets.connect(self.url, ssl=ssl_ctx)
        except (
            websockets.InvalidURI,
            websockets.InvalidHandshake,
            OSError,
            asyncio.TimeoutError,
            ValueError,
        ) as e:
            logger.info("Could not connect to %s: %s", self.url, e)
            self._finish(BridgeState.ERRORED, CONNECT_FAILED)
            return False

        self.state = BridgeState.OPEN
        self.emulator.focus()
        self.emulator.on_data(self.send_input)
        self.emulator.add_resize_listener(self.sync_size)
        self._listening = True
        self._sender = asyncio.create_task(self._send_loop())
        self._receiver = asyncio.create_task(self._receive_loop())

        # Give the emulator a moment to measure itself before the first resize
        loop = asyncio.get_running_loop()
        self._initial_resize = loop.call_later(
            self.initial_resize_delay, self.sync_size
        )

        if self.on_ready is not None:
            self.on_ready(self)
        return True

    def send_input(self, data: str) -> None:
        """Send keystrokes or injected text. Dropped unless the bridge is open."""
        if self.state is not BridgeState.OPEN or not data:
            return
        self._outbox.put_nowait(protocol.input_msg(data))

    def sync_size(self) -> None:
        """Send the emulator's current size. Dropped unless the bridge is open."""
        if self.state is not BridgeState.OPEN:
            return
        cols, rows = self.emulator.size()
        self._outbox.put_nowait(protocol.resize_msg(cols, rows))

    async def wait_closed(self) -> BridgeState:
        """Wait until the server side of the connection is gone."""
        if self._receiver is not None:
            await asyncio.shield(self._receiver)
        return self.state

    async def run(self) -> BridgeState:
        """Open, pump output until either end goes away, then clean up."""
        try:
            if not await self.open():
                return self.state
            closed = asyncio.create_task(self.wait_closed())
            detached = asyncio.create_task(self.emulator.wait_closed())
            await asyncio.wait(
                {closed, detached}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in (closed, detached):
                if not task.done():
                    task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Bridge wait failed")
        finally:
            await self.close()
        return self.state

    async def close(self) -> None:
        """Release the emulator and the connection, whatever the state."""
        if self._disposed:
            return
        self._disposed = True

        try:
            if self._initial_resize is not None:
                self._initial_resize.cancel()
            for task in (self._sender, self._receiver):
                if task is None:
                    continue
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Bridge task %s failed", task.get_name())
            if self._listening:
                self._listening = False
                self.emulator.remove_resize_listener(self.sync_size)
        finally:
            try:
                if self._ws is not None:
                    await self._ws.close()
            finally:
                if self.state in (BridgeState.IDLE, BridgeState.CONNECTING, BridgeState.OPEN):
                    self.state = BridgeState.CLOSED
                self.emulator.dispose()

    async def _receive_loop(self) -> None:
        """Write output frames to the emulator until the connection ends."""
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                msg = protocol.decode(raw)
                if isinstance(msg, protocol.Output):
                    self.emulator.write(msg.data)
        except websockets.ConnectionClosedError as e:
            logger.info("Connection to %s lost: %s", self.url, e)
            self._finish(BridgeState.ERRORED, CONNECTION_LOST)
            return
        except Exception:
            # A broken emulator has nowhere to render a diagnostic
            logger.exception("Emulator failed while rendering output")
            self.state = BridgeState.ERRORED
            return
        self._finish(BridgeState.CLOSED, CONNECTION_CLOSED)

    async def _send_loop(self) -> None:
        """Send queued frames one at a time, in order."""
        if self._ws is None:
            return
        try:
            while True:
                frame = await self._outbox.get()
                await self._ws.send(frame)
        except websockets.ConnectionClosed:
            pass

    def _finish(self, state: BridgeState, diagnostic: str) -> None:
        self.state = state
        self.emulator.writeln(diagnostic)


class LocalTerminal(Emulator):
    """Emulator backed by the local TTY.

    Puts stdin in raw mode on focus and forwards SIGWINCH as viewport
    resizes. Ctrl+] (0x1d) detaches.
    """

    DETACH_KEY = b"\x1d"

    def __init__(self, stdin_fd: int | None = None, stdout: BinaryIO | None = None):
        self._stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self._stdout = stdout or sys.stdout.buffer
        self._old_settings: list | None = None
        self._callback: DataCallback | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._detached = asyncio.Event()
        self._reading = False

    def write(self, data: str) -> None:
        self._stdout.write(data.encode("utf-8", errors="replace"))
        self._stdout.flush()

    def focus(self) -> None:
        if self._reading:
            return
        self._old_settings = termios.tcgetattr(self._stdin_fd)
        tty.setraw(self._stdin_fd)
        asyncio.get_running_loop().add_reader(self._stdin_fd, self._on_stdin_readable)
        self._reading = True

    def size(self) -> tuple[int, int]:
        try:
            size = os.get_terminal_size(self._stdout.fileno())
        except (OSError, ValueError):
            return 80, 24
        return size.columns, size.lines

    def on_data(self, callback: DataCallback) -> None:
        self._callback = callback

    def add_resize_listener(self, callback: ResizeCallback) -> None:
        asyncio.get_running_loop().add_signal_handler(signal.SIGWINCH, callback)

    def remove_resize_listener(self, callback: ResizeCallback) -> None:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGWINCH)

    def dispose(self) -> None:
        if self._reading:
            try:
                asyncio.get_running_loop().remove_reader(self._stdin_fd)
            except (ValueError, OSError, RuntimeError):
                pass
            self._reading = False
        if self._old_settings is not None:
            termios.tcsetattr(self._stdin_fd, termios.TCSAFLUSH, self._old_settings)
            self._old_settings = None
        self._callback = None

    async def wait_closed(self) -> None:
        await self._detached.wait()

    def _on_stdin_readable(self) -> None:
        try:
            data = os.read(self._stdin_fd, 4096)
        except OSError:
            data = b""
        if not data or self.DETACH_KEY in data:
            asyncio.get_running_loop().remove_reader(self._stdin_fd)
            self._reading = False
            self._detached.set()
            return
        text = self._decoder.decode(data)
        if text and self._callback is not None:
            self._callback(text)
