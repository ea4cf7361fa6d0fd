# langpad/worker.py
"""
Background worker processes and the handshake that starts them.

A worker is a ``python -m langpad.language_server`` subprocess. The only
link between it and the orchestrator is a pair of pipes carrying framed
JSON messages (see :mod:`langpad.protocol`); nothing is shared in memory.
"""

import asyncio
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence

from .disposable import Disposable
from .errors import WorkerError, WorkerStartError
from .protocol import (
    LS_STARTED,
    START_DEFINITION,
    START_WITH_GRAMMAR,
    WORKER_ERROR,
    encode_message,
    read_message,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKER_MODULE = "langpad.language_server"
TERMINATE_GRACE_SECONDS = 1.0

NotificationListener = Callable[[str, Any], None]


def worker_command(config: Optional[Dict[str, Any]] = None) -> List[str]:
    """Builds the argv used to start a worker from the ``[worker]`` config section."""
    worker_cfg = (config or {}).get("worker", {})
    python = worker_cfg.get("python") or sys.executable
    module = worker_cfg.get("module") or DEFAULT_WORKER_MODULE
    return [python, "-m", module]


class WorkerHandle:
    """
    Owns one running worker process and its message channel.

    Incoming traffic is demultiplexed by a reader task: handshake replies
    settle the ``ready`` future, JSON-RPC responses settle pending requests,
    and notifications go to the registered listeners.
    """

    def __init__(self, process: asyncio.subprocess.Process, name: str = "worker"):
        self.name = name
        self._process = process
        self._loop = asyncio.get_running_loop()
        self._ready: asyncio.Future = self._loop.create_future()
        self._pending: Dict[int, asyncio.Future] = {}
        self._listeners: List[NotificationListener] = []
        self._exit_callbacks: List[Callable[["WorkerHandle"], None]] = []
        self._seq_id = 0
        self._closed = False
        self._terminated = False

        self._reader_task = self._loop.create_task(self._reader_loop(), name=f"{name}-stdout")
        self._stderr_task = self._loop.create_task(self._drain_stderr(), name=f"{name}-stderr")

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        return not self._closed and self._process.returncode is None

    @property
    def terminated(self) -> bool:
        return self._terminated

    # --- outgoing ---

    def post(self, message: Dict[str, Any]) -> None:
        """Writes one message without waiting for the pipe to drain."""
        stdin = self._process.stdin
        if self._closed or stdin is None or stdin.is_closing():
            raise WorkerError(f"Worker {self.name} is not accepting messages")
        try:
            stdin.write(encode_message(message))
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            raise WorkerError(f"Worker {self.name} channel is broken: {exc}") from exc

    def notify(self, method: str, params: Any = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        self.post(payload)

    async def request(self, method: str, params: Any = None) -> Any:
        """
        Sends a JSON-RPC request and waits for its response.

        Raises:
            WorkerError: If the worker answers with an error or goes away first.
        """
        self._seq_id += 1
        request_id = self._seq_id
        future = self._loop.create_future()
        self._pending[request_id] = future
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params
        try:
            self.post(payload)
            return await future
        finally:
            self._pending.pop(request_id, None)

    # --- subscriptions ---

    def add_listener(self, listener: NotificationListener) -> Disposable:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(_remove)

    def on_exit(self, callback: Callable[["WorkerHandle"], None]) -> Disposable:
        self._exit_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._exit_callbacks:
                self._exit_callbacks.remove(callback)

        return Disposable(_remove)

    # --- lifecycle ---

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """
        Waits for the worker's handshake acknowledgment.

        Raises:
            WorkerStartError: If the worker reports an error, exits first, or
                the optional timeout expires.
        """
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError as exc:
            raise WorkerStartError(
                f"Worker {self.name} did not finish starting within {timeout}s"
            ) from exc

    async def terminate(self) -> None:
        """
        Stops the worker process. Idempotent, and safe on a worker that never
        finished its handshake.
        """
        if self._terminated:
            return
        self._terminated = True
        self._close(f"Worker {self.name} was terminated")

        process = self._process
        if process.returncode is None:
            try:
                if process.stdin is not None and not process.stdin.is_closing():
                    process.stdin.close()
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Worker %s (pid %s) ignored SIGTERM, killing it", self.name, process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        current = asyncio.current_task()
        tasks = [t for t in (self._reader_task, self._stderr_task) if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Worker %s (pid %s) terminated with code %s", self.name, process.pid, process.returncode)

    # --- internals ---

    def _close(self, reason: str) -> None:
        """Fails everything still waiting on the channel. Runs once."""
        if self._closed:
            return
        self._closed = True
        if not self._ready.done():
            self._ready.set_exception(WorkerStartError(reason))
            # Nobody may be waiting on the handshake any more.
            self._ready.exception()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(WorkerError(reason))
        self._pending.clear()
        for callback in list(self._exit_callbacks):
            try:
                callback(self)
            except Exception:
                logger.exception("Exit callback for worker %s failed", self.name)

    async def _reader_loop(self) -> None:
        stdout = self._process.stdout
        assert stdout is not None
        while True:
            try:
                message = await read_message(stdout)
            except ValueError as exc:
                logger.error("Worker %s sent a malformed message: %s", self.name, exc)
                break
            if message is None:
                break
            self._dispatch(message)

        returncode = await self._process.wait()
        logger.info("Worker %s (pid %s) exited with code %s", self.name, self._process.pid, returncode)
        self._close(f"Worker {self.name} exited with code {returncode}")

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            line = await stderr.readline()
            if not line:
                return
            logger.debug("[%s] %s", self.name, line.decode("utf-8", "replace").rstrip())

    def _dispatch(self, message: Dict[str, Any]) -> None:
        message_type = message.get("type")
        if message_type is not None:
            self._handle_handshake(message_type, message)
            return

        if "id" in message and ("result" in message or "error" in message):
            future = self._pending.get(message["id"])
            if future is None or future.done():
                logger.debug("Worker %s: response for unknown request %r", self.name, message["id"])
                return
            error = message.get("error")
            if error:
                future.set_exception(WorkerError(f"{error.get('code')}: {error.get('message')}"))
            else:
                future.set_result(message.get("result"))
            return

        method = message.get("method")
        if method is None:
            logger.debug("Worker %s: ignoring message without method: %r", self.name, message)
            return
        for listener in list(self._listeners):
            try:
                listener(method, message.get("params"))
            except Exception:
                logger.exception("Worker %s: listener for %r failed", self.name, method)

    def _handle_handshake(self, message_type: str, message: Dict[str, Any]) -> None:
        if self._ready.done():
            logger.warning("Worker %s: unexpected %r after handshake", self.name, message_type)
            return
        if message_type == LS_STARTED:
            self._ready.set_result(None)
        elif message_type == WORKER_ERROR:
            self._ready.set_exception(
                WorkerStartError(message.get("message") or f"Worker {self.name} failed to start")
            )
        else:
            logger.debug("Worker %s: ignoring handshake message %r", self.name, message_type)


async def _start_worker(
        start_message: Dict[str, Any],
        *,
        name: str,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
) -> WorkerHandle:
    argv = list(command or worker_command())
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise WorkerStartError(f"Failed to spawn worker {argv[0]!r}: {exc}") from exc

    worker = WorkerHandle(process, name=name)
    logger.info("Spawned worker %s with PID %s", name, process.pid)
    try:
        worker.post(start_message)
        await worker.wait_ready(timeout)
    except WorkerError as exc:
        await worker.terminate()
        if isinstance(exc, WorkerStartError):
            raise
        raise WorkerStartError(str(exc)) from exc
    except BaseException:
        await worker.terminate()
        raise
    logger.debug("Worker %s is ready", name)
    return worker


async def spawn_session(
        grammar_source: str,
        *,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
) -> WorkerHandle:
    """
    Starts a worker serving the language described by ``grammar_source``.

    The coroutine resolves only once the worker confirmed it is ready. On any
    failure the half-started process is terminated before WorkerStartError is
    raised, so the caller never holds a partially started worker.

    Args:
        grammar_source: Grammar text the worker compiles during the handshake.
        command: Worker argv; defaults to :func:`worker_command`.
        timeout: Optional bound on the handshake, in seconds. None waits forever.
    """
    return await _start_worker(
        {"type": START_WITH_GRAMMAR, "grammar": grammar_source},
        name="sample-worker",
        command=command,
        timeout=timeout,
    )


async def spawn_definition_session(
        *,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
) -> WorkerHandle:
    """Starts a worker serving the grammar language itself."""
    return await _start_worker(
        {"type": START_DEFINITION},
        name="definition-worker",
        command=command,
        timeout=timeout,
    )
