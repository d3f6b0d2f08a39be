"""PTY process management: spawns a shell attached to a pseudo-terminal."""

import asyncio
import fcntl
import logging
import os
import pty
import shlex
import signal
import struct
import subprocess
import termios
from pathlib import Path
from typing import AsyncIterator, Mapping

logger = logging.getLogger("termbridge.process")

DEFAULT_SHELL = "sh"
DEFAULT_TERM = "xterm-color"
READ_SIZE = 16384


class SpawnError(Exception):
    """Raised when the shell process cannot be started."""


def resolve_shell(shell: str | None = None) -> list[str]:
    """Return the argv for the shell to run.

    Falls back to $SHELL, then to a plain ``sh``.
    """
    command = shell or os.environ.get("SHELL") or DEFAULT_SHELL
    args = shlex.split(command)
    if not args:
        raise SpawnError(f"Invalid shell command: {command!r}")
    return args


def _set_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is already the pty slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


class PtyProcess:
    """A single shell process running on its own pseudo-terminal."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        master_fd: int,
        cols: int,
        rows: int,
    ):
        self._process = process
        self.master_fd = master_fd
        self.cols = cols
        self.rows = rows
        self._pending = bytearray()
        self._writer_registered = False
        self._closed = False

    @classmethod
    async def spawn(
        cls,
        shell: str | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        cols: int = 80,
        rows: int = 24,
        term: str = DEFAULT_TERM,
    ) -> "PtyProcess":
        """Spawn the shell in a new PTY.

        Raises SpawnError if the pty cannot be allocated or the shell
        cannot be executed.
        """
        args = resolve_shell(shell)
        workdir = Path(cwd) if cwd else Path.home()

        child_env = os.environ.copy()
        child_env.update(env or {})
        child_env.setdefault("TERM", term)

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Could not allocate a pseudo-terminal: {e}") from e

        try:
            _set_winsize(slave_fd, cols, rows)
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=str(workdir),
                env=child_env,
                start_new_session=True,
                preexec_fn=_set_controlling_tty,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Could not start {args[0]!r}: {e}") from e
        finally:
            os.close(slave_fd)

        # Make the master non-blocking; reads and writes go through the loop
        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        logger.info(
            "Spawned %s (pid=%d, %dx%d, cwd=%s)",
            args[0], process.pid, cols, rows, workdir,
        )
        return cls(process, master_fd, cols, rows)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def is_alive(self) -> bool:
        """Check if the child process is still running."""
        return self._process.returncode is None

    async def read(self) -> AsyncIterator[bytes]:
        """Yield output chunks from the PTY until the child side closes.

        Uses asyncio's add_reader for event-driven I/O. Chunk boundaries
        carry no meaning.
        """
        if self._closed:
            return

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        fd = self.master_fd

        def _on_readable() -> None:
            try:
                data = os.read(fd, READ_SIZE)
            except BlockingIOError:
                return
            except OSError:
                # EIO once every holder of the slave side is gone
                data = b""
            if not data:
                loop.remove_reader(fd)
                queue.put_nowait(None)
                return
            queue.put_nowait(data)

        loop.add_reader(fd, _on_readable)
        try:
            while True:
                data = await queue.get()
                if data is None:
                    break
                yield data
        finally:
            if not self._closed:
                try:
                    loop.remove_reader(fd)
                except (ValueError, OSError):
                    pass

    def write(self, data: bytes) -> None:
        """Write data to the PTY (sends input to the child process).

        Never blocks: whatever the kernel does not take right away is
        queued and flushed when the master becomes writable again.
        """
        if self._closed or not data:
            return
        if self._pending:
            self._pending += data
            return
        try:
            written = os.write(self.master_fd, data)
        except BlockingIOError:
            written = 0
        except OSError as e:
            logger.debug("Write to pid %d failed: %s", self.pid, e)
            return
        if written < len(data):
            self._pending += data[written:]
            self._watch_writable()

    def _watch_writable(self) -> None:
        if self._writer_registered:
            return
        loop = asyncio.get_running_loop()
        loop.add_writer(self.master_fd, self._flush_pending)
        self._writer_registered = True

    def _unwatch_writable(self) -> None:
        if not self._writer_registered:
            return
        self._writer_registered = False
        try:
            asyncio.get_running_loop().remove_writer(self.master_fd)
        except (ValueError, OSError, RuntimeError):
            pass

    def _flush_pending(self) -> None:
        try:
            written = os.write(self.master_fd, self._pending)
        except BlockingIOError:
            return
        except OSError as e:
            logger.debug("Dropping %d queued bytes: %s", len(self._pending), e)
            self._pending.clear()
            self._unwatch_writable()
            return
        del self._pending[:written]
        if not self._pending:
            self._unwatch_writable()

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the PTY terminal.

        Returns False when the size is unchanged and nothing was done. The
        kernel delivers SIGWINCH to the foreground job on a real change.
        """
        if self._closed:
            return False
        if (cols, rows) == (self.cols, self.rows):
            return False
        _set_winsize(self.master_fd, cols, rows)
        self.cols, self.rows = cols, rows
        logger.debug("Resized pid %d to %dx%d", self.pid, cols, rows)
        return True

    def window_size(self) -> tuple[int, int]:
        """Read the window size back from the OS as (cols, rows)."""
        packed = fcntl.ioctl(self.master_fd, termios.TIOCGWINSZ, b"\0" * 8)
        rows, cols, _, _ = struct.unpack("HHHH", packed)
        return cols, rows

    async def wait(self) -> int:
        """Wait for the child to exit and return its exit status."""
        return await self._process.wait()

    def _signal_group(self, signum: int) -> None:
        # start_new_session made the shell its own process group leader
        try:
            os.killpg(self.pid, signum)
        except (ProcessLookupError, PermissionError):
            pass

    async def terminate(self, grace: float = 2.0) -> None:
        """Terminate the session and clean up.

        Hangs up the shell's process group, the way closing a real
        terminal does, then force kills it if it outlives ``grace``.
        """
        if self.is_alive():
            self._signal_group(signal.SIGHUP)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.info("pid %d ignored SIGHUP, killing", self.pid)
                self._signal_group(signal.SIGKILL)
                await self._process.wait()
        self.close()

    def close(self) -> None:
        """Release the master fd. Safe to call more than once."""
        if self._closed:
            return
        self._unwatch_writable()
        self._pending.clear()
        self._closed = True
        try:
            asyncio.get_running_loop().remove_reader(self.master_fd)
        except (ValueError, OSError, RuntimeError):
            pass
        try:
            os.close(self.master_fd)
        except OSError:
            pass
