"""Control-side channel to the overlay display context."""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import multiprocessing as mp
from abc import ABC, abstractmethod
from multiprocessing.connection import Listener
from typing import Any, Dict, Optional

from copilot.config import Config
from copilot.errors import OverlayUnavailable
from copilot.overlay import protocol
from copilot.overlay.display import HeadlessRenderer, OverlayDisplay, OverlayRenderer
from copilot.overlay.process import run_overlay_proc

logger = logging.getLogger(__name__)


class OverlayTransport(ABC):
    """Request/response plus one-way push to the display context."""

    @abstractmethod
    async def request(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and wait for the display's reply.

        Raises:
            OverlayUnavailable: The display context did not answer.
        """
        pass

    @abstractmethod
    def push(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Fire-and-forget message. Returns False if it could not be delivered."""
        pass

    @property
    def alive(self) -> bool:
        """False once the display context has gone away."""
        return True

    async def close(self) -> None:
        pass


class LocalTransport(OverlayTransport):
    """In-process display; messages are deep-copied so nothing is shared by reference."""

    def __init__(self, renderer: Optional[OverlayRenderer] = None):
        self.display = OverlayDisplay(renderer or HeadlessRenderer())

    async def request(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        _, _, kind, payload = protocol.request(0, kind, copy.deepcopy(payload))
        return copy.deepcopy(self.display.handle(kind, payload))

    def push(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        _, kind, payload = protocol.push(kind, copy.deepcopy(payload))
        if kind != protocol.SHUTDOWN:
            self.display.handle(kind, payload)
        return True

    async def close(self) -> None:
        self.display.handle(protocol.STOP_OVERLAY)


class ProcessTransport(OverlayTransport):
    """
    Runs the display in a spawned process and talks to it over a
    multiprocessing Connection. The process is started on first use.
    """

    def __init__(self, renderer_name: Optional[str] = None, timeout: Optional[float] = None):
        self.renderer_name = renderer_name or Config.OVERLAY_RENDERER
        self.timeout = timeout or Config.OVERLAY_REQUEST_TIMEOUT

        self._ctx = mp.get_context("spawn")
        self._listener: Optional[Listener] = None
        self._proc: Optional[mp.Process] = None
        self._conn = None
        self._ids = itertools.count(1)
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop = None

    def _request_lock(self) -> asyncio.Lock:
        # The app (and this transport) is built before the server's loop exists
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @property
    def alive(self) -> bool:
        return self._conn is not None and self._proc is not None and self._proc.is_alive()

    async def _ensure_started(self) -> None:
        if self.alive:
            return
        self._teardown()

        self._listener = Listener(("127.0.0.1", 0), authkey=protocol.AUTHKEY)
        host, port = self._listener.address
        self._proc = self._ctx.Process(
            target=run_overlay_proc,
            args=(host, port, self.renderer_name, Config.LOG_LEVEL),
            daemon=True,
        )
        self._proc.start()

        # Accept (blocking) in a thread so the event loop stays responsive
        loop = asyncio.get_running_loop()
        try:
            self._conn = await asyncio.wait_for(
                loop.run_in_executor(None, self._listener.accept),
                timeout=self.timeout * 2,
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.error("Overlay process did not connect: %s", e)
            self._teardown()
            raise OverlayUnavailable() from e
        logger.info("Overlay process started (pid=%s, renderer=%s)", self._proc.pid, self.renderer_name)

    def _recv_reply(self, request_id: int) -> Dict[str, Any]:
        while True:
            if not self._conn.poll(self.timeout):
                raise TimeoutError(f"No reply to overlay request {request_id}")
            msg = self._conn.recv()
            if msg[0] == "res" and msg[1] == request_id:
                return msg[2]
            logger.debug("Discarding stale overlay message %r", msg[:2])

    async def request(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with self._request_lock():
            await self._ensure_started()
            request_id = next(self._ids)
            try:
                self._conn.send(protocol.request(request_id, kind, payload))
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, self._recv_reply, request_id)
            except (TimeoutError, EOFError, BrokenPipeError, ConnectionResetError, OSError) as e:
                logger.error("Overlay request %s failed: %r", kind, e)
                self._teardown()
                raise OverlayUnavailable() from e

        if not result.get("success", False) and "error" in result:
            logger.warning("Overlay rejected %s: %s", kind, result["error"])
        return result

    def push(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        message = protocol.push(kind, payload)
        if not self.alive:
            logger.debug("Dropping %s push: overlay process not running", kind)
            return False
        try:
            self._conn.send(message)
        except (BrokenPipeError, ConnectionResetError, OSError) as e:
            logger.warning("Dropping %s push: %r", kind, e)
            return False
        return True

    def _teardown(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except OSError:
                pass
            self._conn = None
        if self._proc is not None and self._proc.is_alive():
            self._proc.terminate()
        self._proc = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    async def close(self) -> None:
        proc = self._proc
        if self.alive:
            self.push(protocol.SHUTDOWN)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, proc.join, self.timeout)
        self._teardown()
        logger.info("Overlay transport closed")
