"""
Readiness gate for the bound storage engine.

Schema creation runs once, in the background, the first time the gate is
started. Callers await ``wait_ready()`` before touching the backend: it
returns once the gate is READY and raises ``StorageError`` when
initialization FAILED.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from quizboard.errors import StorageError

logger = logging.getLogger(__name__)


class BackendState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ReadinessGate:
    def __init__(self, initializer: Callable[[], Awaitable[None]], name: str = "backend"):
        self._initializer = initializer
        self.name = name
        self.state = BackendState.UNINITIALIZED
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> Optional[asyncio.Task]:
        """Schedule initialization if it has not been scheduled yet."""
        if self.state is BackendState.UNINITIALIZED:
            self.state = BackendState.INITIALIZING
            logger.info("Initializing %s schema", self.name)
            self._task = asyncio.ensure_future(self._run())
        return self._task

    async def _run(self) -> None:
        try:
            await self._initializer()
        except Exception as exc:
            self.error = exc
            self.state = BackendState.FAILED
            logger.error("Initialization of %s failed: %s", self.name, exc)
            return
        self.state = BackendState.READY
        logger.info("%s ready", self.name)

    async def wait_ready(self) -> None:
        if self.state is BackendState.READY:
            return
        if self.state is BackendState.FAILED:
            raise self._failure() from self.error
        task = self.start()
        # A cancelled request must not cancel schema creation for everyone.
        await asyncio.shield(task)
        if self.state is not BackendState.READY:
            raise self._failure() from self.error

    def _failure(self) -> StorageError:
        return StorageError(f"{self.name} is unavailable: {self.error}")
