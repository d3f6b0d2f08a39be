"""Shared fixtures: a live server on an ephemeral port running /bin/sh."""

import asyncio
import re
import time

import pytest
import pytest_asyncio
import websockets

from termbridge import protocol
from termbridge.client import Emulator
from termbridge.config import Config
from termbridge.server import TerminalServer


def make_config(tmp_path, **server_overrides) -> Config:
    config = Config()
    config.server.host = "127.0.0.1"
    config.server.port = 0
    config.server.shell = "/bin/sh"
    config.server.cwd = str(tmp_path)
    config.server.kill_grace_seconds = 1.0
    for key, value in server_overrides.items():
        setattr(config.server, key, value)
    return config


async def start_server(config: Config):
    server = await TerminalServer(config).start()
    port = next(iter(server.sockets)).getsockname()[1]
    return server, f"ws://127.0.0.1:{port}"


@pytest.fixture()
def config(tmp_path):
    return make_config(tmp_path)


@pytest_asyncio.fixture()
async def server_url(config):
    server, url = await start_server(config)
    try:
        yield url
    finally:
        server.close()
        await server.wait_closed()


async def read_output_until(ws, needle: str, timeout: float = 5.0) -> str:
    """Collect output frames until ``needle`` shows up; return all output."""
    output = ""
    deadline = time.monotonic() + timeout
    while needle not in output:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"{needle!r} not seen in output: {output!r}")
        raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
        msg = protocol.decode(raw)
        if isinstance(msg, protocol.Output):
            output += msg.data
    return output


async def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


async def recv_until_closed(ws, timeout: float = 5.0) -> str:
    """Drain output until the server closes the connection."""
    output = ""
    deadline = time.monotonic() + timeout
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AssertionError("connection was not closed by the server")
            raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
            msg = protocol.decode(raw)
            if isinstance(msg, protocol.Output):
                output += msg.data
    except websockets.ConnectionClosedOK:
        return output


async def read_output_match(ws, pattern: str, timeout: float = 5.0) -> re.Match:
    """Collect output frames until ``pattern`` matches; return the match."""
    output = ""
    deadline = time.monotonic() + timeout
    while True:
        match = re.search(pattern, output)
        if match:
            return match
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"{pattern!r} not matched in output: {output!r}")
        raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
        msg = protocol.decode(raw)
        if isinstance(msg, protocol.Output):
            output += msg.data


class FakeEmulator(Emulator):
    """Records everything the bridge does to it."""

    def __init__(self, cols: int = 100, rows: int = 40):
        self.cols = cols
        self.rows = rows
        self.written: list[str] = []
        self.focused = 0
        self.disposed = False
        self.callback = None
        self.resize_listeners: list = []
        self.detached = asyncio.Event()

    def write(self, data: str) -> None:
        self.written.append(data)

    def text(self) -> str:
        return "".join(self.written)

    def focus(self) -> None:
        self.focused += 1

    def size(self) -> tuple[int, int]:
        return self.cols, self.rows

    def on_data(self, callback) -> None:
        self.callback = callback

    def type(self, data: str) -> None:
        self.callback(data)

    def add_resize_listener(self, callback) -> None:
        self.resize_listeners.append(callback)

    def remove_resize_listener(self, callback) -> None:
        self.resize_listeners.remove(callback)

    def fire_resize(self) -> None:
        for listener in list(self.resize_listeners):
            listener()

    def dispose(self) -> None:
        self.disposed = True

    async def wait_closed(self) -> None:
        await self.detached.wait()


