"""Spawn, observe, cancel and reap external shell commands."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import re
import shutil
import signal as signal_module
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

from loguru import logger

try:
    import pty
except ImportError:  # Windows has no pseudo-terminal module.
    pty = None  # type: ignore[assignment]

IS_WINDOWS = sys.platform == "win32"
READ_CHUNK_SIZE = 4096
BINARY_SNIFF_BYTES = 4096
DRAIN_TIMEOUT_SECONDS = 1.0
DEFAULT_KILL_GRACE_SECONDS = 0.2
_ANSI_RE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)|[@-Z\\-_])")

StreamName: TypeAlias = Literal["stdout", "stderr"]


@dataclass(frozen=True)
class OutputChunkEvent:
    stream: StreamName
    chunk: str


@dataclass(frozen=True)
class BinaryDetectedEvent:
    """Emitted once; decoding stops after it."""


OutputEvent: TypeAlias = OutputChunkEvent | BinaryDetectedEvent
OutputListener: TypeAlias = Callable[[OutputEvent], None]


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int | None
    signal: str | None
    output: str
    error: BaseException | None
    aborted: bool
    pid: int | None = None
    stdout: str = ""
    stderr: str = ""
    binary_detected: bool = False

    @property
    def clean_exit(self) -> bool:
        return self.exit_code == 0 and self.signal is None


@dataclass
class ProcessHandle:
    """One spawned process; ``result`` resolves once it is fully reaped."""

    pid: int | None
    cwd: str
    use_pty: bool
    result: asyncio.Future[ProcessResult]
    on_output_event: OutputListener | None = None
    cancel_signal: asyncio.Event | None = field(default=None, repr=False)


def pty_available() -> bool:
    return pty is not None and not IS_WINDOWS


def default_shell_argv(command: str, shell: str | None = None) -> list[str]:
    if IS_WINDOWS:
        return [shell or "cmd.exe", "/c", command]
    return [shell or shutil.which("bash") or "/bin/sh", "-c", command]


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text).replace("\r", "")


def _signal_name(returncode: int) -> str:
    try:
        return signal_module.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def _kill_process_group(process: asyncio.subprocess.Process, *, force: bool) -> None:
    """Signal the whole process group so shell-spawned descendants go too."""
    if process.returncode is not None:
        return
    if IS_WINDOWS:
        subprocess.run(  # noqa: S603
            ["taskkill", "/pid", str(process.pid), "/t", "/f"],
            capture_output=True,
            check=False,
        )
        return

    sig = signal_module.SIGKILL if force else signal_module.SIGTERM
    try:
        os.killpg(process.pid, sig)
    except (ProcessLookupError, PermissionError, OSError):
        with contextlib.suppress(ProcessLookupError, OSError):
            if force:
                process.kill()
            else:
                process.terminate()


class PipeBackend:
    """Plain stdout/stderr pipes."""

    name = "pipe"

    def __init__(self) -> None:
        self._process: asyncio.subprocess.Process | None = None

    @property
    def process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise RuntimeError(f"{self.name} backend has not spawned a process")
        return self._process

    async def spawn(self, argv: list[str], cwd: str, env: dict[str, str] | None) -> None:
        self._process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=not IS_WINDOWS,
        )

    async def read(self, on_data: Callable[[StreamName, bytes], None]) -> None:
        async def _pump(name: StreamName, stream: asyncio.StreamReader | None) -> None:
            if stream is None:
                return
            while data := await stream.read(READ_CHUNK_SIZE):
                on_data(name, data)

        await asyncio.gather(_pump("stdout", self.process.stdout), _pump("stderr", self.process.stderr))

    async def wait(self) -> int:
        return await self.process.wait()

    def close(self) -> None:
        pass


class PtyBackend:
    """Pseudo-terminal; stdout and stderr arrive interleaved on one stream."""

    name = "pty"

    def __init__(self) -> None:
        self._process: asyncio.subprocess.Process | None = None
        self._master_fd: int | None = None

    @property
    def process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise RuntimeError(f"{self.name} backend has not spawned a process")
        return self._process

    async def spawn(self, argv: list[str], cwd: str, env: dict[str, str] | None) -> None:
        if pty is None:
            raise RuntimeError("pty is not available on this platform")
        master_fd, slave_fd = pty.openpty()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)
        os.set_blocking(master_fd, False)
        self._master_fd = master_fd

    async def read(self, on_data: Callable[[StreamName, bytes], None]) -> None:
        fd = self._master_fd
        if fd is None:
            raise RuntimeError("pty backend has not spawned a process")
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue()

        def _on_readable() -> None:
            try:
                data = os.read(fd, READ_CHUNK_SIZE)
            except BlockingIOError:
                return
            except OSError:
                # EIO once every slave descriptor is closed.
                data = b""
            if not data:
                loop.remove_reader(fd)
            queue.put_nowait(data)

        loop.add_reader(fd, _on_readable)
        try:
            while data := await queue.get():
                on_data("stdout", data)
        finally:
            loop.remove_reader(fd)

    async def wait(self) -> int:
        return await self.process.wait()

    def close(self) -> None:
        if self._master_fd is not None:
            with contextlib.suppress(OSError):
                os.close(self._master_fd)
            self._master_fd = None


Backend: TypeAlias = PipeBackend | PtyBackend


class _OutputCollector:
    """Decodes raw chunks, detects binary output and notifies the listener."""

    def __init__(self, listener: OutputListener | None) -> None:
        self._listener = listener
        self._decoders = {
            "stdout": codecs.getincrementaldecoder("utf-8")(errors="replace"),
            "stderr": codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }
        self._texts: dict[StreamName, list[str]] = {"stdout": [], "stderr": []}
        self._sniffed = bytearray()
        self.binary_detected = False
        self.total_bytes = 0

    def feed(self, stream: StreamName, data: bytes) -> None:
        self.total_bytes += len(data)
        if self.binary_detected:
            return
        if len(self._sniffed) < BINARY_SNIFF_BYTES:
            self._sniffed.extend(data[: BINARY_SNIFF_BYTES - len(self._sniffed)])
            if b"\x00" in self._sniffed:
                self.binary_detected = True
                self._emit(BinaryDetectedEvent())
                return
        self._append(stream, self._decoders[stream].decode(data))

    def finish(self) -> None:
        if self.binary_detected:
            return
        for stream in ("stdout", "stderr"):
            self._append(stream, self._decoders[stream].decode(b"", final=True))

    def text(self, stream: StreamName) -> str:
        return "".join(self._texts[stream])

    def output(self) -> str:
        stdout = strip_ansi(self.text("stdout"))
        stderr = strip_ansi(self.text("stderr"))
        if not stderr:
            return stdout
        if stdout and not stdout.endswith("\n"):
            stdout += "\n"
        return stdout + stderr

    def _append(self, stream: StreamName, text: str) -> None:
        if not text:
            return
        self._texts[stream].append(text)
        self._emit(OutputChunkEvent(stream, text))

    def _emit(self, event: OutputEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            logger.exception("process.listener.error event={}", type(event).__name__)


class ProcessExecutor:
    """Runs one shell command per ``execute`` call."""

    def __init__(
        self,
        *,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        shell: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._kill_grace_seconds = kill_grace_seconds
        self._shell = shell
        self._env = env
        self._supervisors: set[asyncio.Task[None]] = set()

    async def execute(
        self,
        command: str,
        cwd: str | os.PathLike[str],
        on_output_event: OutputListener | None = None,
        cancel_signal: asyncio.Event | None = None,
        use_pty: bool = False,
    ) -> ProcessHandle:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ProcessResult] = loop.create_future()
        working_dir = os.fspath(cwd)
        if use_pty and not pty_available():
            logger.warning("process.pty.unavailable falling back to pipes")
            use_pty = False

        backend: Backend = PtyBackend() if use_pty else PipeBackend()
        argv = default_shell_argv(command, self._shell)
        try:
            await backend.spawn(argv, working_dir, self._env)
        except (OSError, ValueError) as exc:
            logger.warning("process.spawn.error command={!r} cwd={} error={}", command, working_dir, exc)
            future.set_result(
                ProcessResult(
                    exit_code=None,
                    signal=None,
                    output="",
                    error=exc,
                    aborted=cancel_signal is not None and cancel_signal.is_set(),
                )
            )
            return ProcessHandle(None, working_dir, use_pty, future, on_output_event, cancel_signal)

        pid = backend.process.pid
        logger.info("process.spawn pid={} backend={} cwd={} command={!r}", pid, backend.name, working_dir, command)
        supervisor = asyncio.create_task(self._supervise(backend, on_output_event, cancel_signal, future))
        self._supervisors.add(supervisor)
        supervisor.add_done_callback(self._supervisors.discard)
        return ProcessHandle(pid, working_dir, use_pty, future, on_output_event, cancel_signal)

    async def _supervise(
        self,
        backend: Backend,
        listener: OutputListener | None,
        cancel_signal: asyncio.Event | None,
        future: asyncio.Future[ProcessResult],
    ) -> None:
        collector = _OutputCollector(listener)
        reader = asyncio.create_task(backend.read(collector.feed))
        waiter = asyncio.create_task(backend.wait())
        cancel_waiter = asyncio.create_task(cancel_signal.wait()) if cancel_signal is not None else None
        aborted = False
        try:
            if cancel_waiter is not None:
                await asyncio.wait({waiter, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if cancel_waiter.done():
                    aborted = True
                    await self._terminate(backend, waiter)
            returncode = await waiter
            if cancel_signal is not None and cancel_signal.is_set():
                aborted = True
            try:
                await asyncio.wait_for(reader, timeout=DRAIN_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.debug("process.drain.timeout pid={}", backend.process.pid)
            collector.finish()
        except BaseException as exc:
            _kill_process_group(backend.process, force=True)
            if not future.done():
                if isinstance(exc, asyncio.CancelledError):
                    future.cancel()
                else:
                    future.set_exception(exc)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            reader.cancel()
            backend.close()

        exit_code = returncode if returncode >= 0 else None
        signal_name = _signal_name(returncode) if returncode < 0 else None
        result = ProcessResult(
            exit_code=exit_code,
            signal=signal_name,
            output=collector.output(),
            error=None,
            aborted=aborted,
            pid=backend.process.pid,
            stdout=collector.text("stdout"),
            stderr=collector.text("stderr"),
            binary_detected=collector.binary_detected,
        )
        logger.info(
            "process.exit pid={} exit_code={} signal={} aborted={} bytes={}",
            result.pid,
            exit_code,
            signal_name,
            aborted,
            collector.total_bytes,
        )
        if not future.done():
            future.set_result(result)

    async def _terminate(self, backend: Backend, waiter: asyncio.Task[int]) -> None:
        pid = backend.process.pid
        logger.info("process.abort pid={}", pid)
        _kill_process_group(backend.process, force=False)
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=self._kill_grace_seconds)
        except TimeoutError:
            logger.warning("process.abort.escalate pid={}", pid)
            _kill_process_group(backend.process, force=True)
