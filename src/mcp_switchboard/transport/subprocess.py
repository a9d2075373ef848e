"""
Transport to an MCP server running as a child process, speaking newline-delimited
JSON-RPC over its stdin/stdout.
"""
import asyncio
import os

from ..config import MCPClientConfig
from ..exceptions import MCPConnectionError, MCPTransportError, TransportErrorKind
from ..models.common import TransportKind
from ..models.mcp import SubprocessConnection
from .base import Transport

# How long close() waits at each step (stdin EOF, SIGTERM) before escalating.
_SHUTDOWN_GRACE_SECONDS = 2.0


class SubprocessTransport(Transport):
    """
    Spawns ``command`` with ``args`` and exchanges one compact JSON frame per line.
    stdout lines feed the inbound queue; stderr is drained into the debug log.
    """

    kind = TransportKind.SUBPROCESS

    def __init__(self, connection: SubprocessConnection, client_config: MCPClientConfig, name: str):
        super().__init__(client_config, name)
        self.connection = connection
        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self.logger = self.logger.bind(command=connection.command)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def _start(self) -> None:
        env = {**os.environ, **self.connection.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.connection.command,
                *self.connection.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.connection.cwd,
                limit=self.client_config.max_line_bytes,
            )
        except OSError as e: # FileNotFoundError, PermissionError, NotADirectoryError
            self.logger.error("Failed to launch server process.", error=str(e), error_type=type(e).__name__)
            raise MCPConnectionError(f"Failed to launch '{self.connection.command}': {e}") from e

        self.logger = self.logger.bind(pid=self._process.pid)
        self._stdout_task = asyncio.create_task(self._read_stdout(), name=f"mcp-stdout-{self.name}")
        self._stderr_task = asyncio.create_task(self._drain_stderr(), name=f"mcp-stderr-{self.name}")

        if self.client_config.startup_delay_seconds > 0:
            await asyncio.sleep(self.client_config.startup_delay_seconds)

        if self._process.returncode is not None or self._terminal_error is not None:
            returncode = self._process.returncode
            raise MCPConnectionError(
                f"Server process '{self.connection.command}' exited during startup (exit code {returncode})"
            )
        self.logger.debug("Server process started.")

    async def _send(self, frame: str) -> None:
        assert self._process is not None
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise MCPTransportError("Server process stdin is closed", kind=TransportErrorKind.PROCESS_TERMINATED)
        try:
            stdin.write(frame.encode("utf-8") + b"\n")
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise MCPTransportError(f"Server process is gone: {e}", kind=TransportErrorKind.PROCESS_TERMINATED) from e
        return None

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                await self._publish(text)
        except ValueError as e: # line longer than max_line_bytes
            self.logger.error("Oversized frame from server process.", error=str(e), limit=self.client_config.max_line_bytes)
            self._fail(MCPTransportError(f"Frame exceeds {self.client_config.max_line_bytes} bytes", kind=TransportErrorKind.DISCONNECTED))
            return

        self._fail(MCPTransportError(
            f"Server process terminated (exit code {self._process.returncode})",
            kind=TransportErrorKind.PROCESS_TERMINATED,
        ))

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue # over-long stderr line; the stream keeps going
            if not line:
                return
            self.logger.debug("Server stderr.", line=line.decode("utf-8", errors="replace").rstrip())

    async def _close(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in (self._stdout_task, self._stderr_task) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        process = self._process
        if process is None or process.returncode is not None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=_SHUTDOWN_GRACE_SECONDS)
            return
        except TimeoutError:
            pass

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except ProcessLookupError:
            return
        except TimeoutError:
            self.logger.warning("Server process ignored SIGTERM, killing.")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
