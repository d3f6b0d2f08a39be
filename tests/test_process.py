"""Tests for PTY process management."""

import asyncio
import os

import pytest

from termbridge.process import PtyProcess, SpawnError, resolve_shell


async def read_until(process: PtyProcess, needle: bytes, timeout: float = 5.0) -> bytes:
    output = b""

    async def _collect() -> None:
        nonlocal output
        async for chunk in process.read():
            output += chunk
            if needle in output:
                return

    await asyncio.wait_for(_collect(), timeout)
    return output


@pytest.mark.asyncio
async def test_spawn_and_read(tmp_path):
    process = await PtyProcess.spawn("sh -c 'echo hello-test'", cwd=tmp_path)
    output = b""
    async for chunk in process.read():
        output += chunk
    assert await process.wait() == 0
    process.close()
    assert b"hello-test" in output


@pytest.mark.asyncio
async def test_write():
    process = await PtyProcess.spawn("cat")
    process.write(b"ping\n")
    output = await read_until(process, b"ping\r\nping")
    await process.terminate(grace=1.0)
    assert b"ping" in output


@pytest.mark.asyncio
async def test_shell_sees_a_terminal(tmp_path):
    process = await PtyProcess.spawn("/bin/sh", cwd=tmp_path)
    process.write(b"[ -t 0 ] && echo IS-A-TTY; pwd\n")
    output = await read_until(process, str(tmp_path).encode())
    await process.terminate(grace=1.0)
    assert b"IS-A-TTY" in output


@pytest.mark.asyncio
async def test_initial_window_size():
    process = await PtyProcess.spawn("sleep 5", cols=132, rows=50)
    assert process.window_size() == (132, 50)
    await process.terminate(grace=1.0)


@pytest.mark.asyncio
async def test_resize():
    process = await PtyProcess.spawn("sleep 5")
    assert process.resize(120, 40) is True
    assert process.window_size() == (120, 40)
    # Same size again is a no-op
    assert process.resize(120, 40) is False
    assert process.window_size() == (120, 40)
    await process.terminate(grace=1.0)


@pytest.mark.asyncio
async def test_terminate_is_idempotent():
    process = await PtyProcess.spawn("sleep 30")
    assert process.is_alive()
    await process.terminate(grace=1.0)
    assert not process.is_alive()
    assert process.returncode is not None
    await process.terminate(grace=1.0)
    with pytest.raises(ProcessLookupError):
        os.kill(process.pid, 0)


@pytest.mark.asyncio
async def test_terminate_escalates_when_hangup_is_ignored():
    process = await PtyProcess.spawn("sh -c 'trap \"\" HUP; sleep 30'")
    await asyncio.sleep(0.2)
    await process.terminate(grace=0.5)
    assert not process.is_alive()


@pytest.mark.asyncio
async def test_write_after_close_is_dropped():
    process = await PtyProcess.spawn("sleep 5")
    await process.terminate(grace=1.0)
    process.write(b"ignored\n")
    assert process.resize(100, 30) is False


@pytest.mark.asyncio
async def test_spawn_missing_shell():
    with pytest.raises(SpawnError):
        await PtyProcess.spawn("/nonexistent/shell")


@pytest.mark.asyncio
async def test_spawn_bad_cwd(tmp_path):
    with pytest.raises(SpawnError):
        await PtyProcess.spawn("/bin/sh", cwd=tmp_path / "missing")


def test_resolve_shell_explicit():
    assert resolve_shell("bash -l") == ["bash", "-l"]


def test_resolve_shell_from_environment(monkeypatch):
    monkeypatch.setenv("SHELL", "/bin/zsh")
    assert resolve_shell() == ["/bin/zsh"]


def test_resolve_shell_fallback(monkeypatch):
    monkeypatch.delenv("SHELL", raising=False)
    assert resolve_shell() == ["sh"]


def test_resolve_shell_rejects_blank():
    with pytest.raises(SpawnError):
        resolve_shell("   ")
