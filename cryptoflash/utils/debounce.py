"""Отложенный вызов с переназначением (debounce).

Состояния: ``idle`` -> ``pending`` (есть срок срабатывания) -> ``fired``.
Новый ``schedule()`` в состоянии pending переносит срок, ``cancel()``
возвращает в idle без вызова.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Awaitable, Callable

from loguru import logger


class DebounceState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    FIRED = "fired"


class Debouncer:
    def __init__(
        self,
        action: Callable[[], Awaitable[None]],
        delay: float,
        *,
        name: str = "debounce",
    ) -> None:
        self._action = action
        self._delay = delay
        self._name = name
        self._state = DebounceState.IDLE
        self._deadline: float | None = None
        self._timer: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def deadline(self) -> float | None:
        """Момент срабатывания по часам event loop (только в pending)."""

        return self._deadline

    @property
    def pending(self) -> bool:
        return self._state is DebounceState.PENDING

    def schedule(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._deadline = loop.time() + self._delay
        self._state = DebounceState.PENDING
        self._timer = loop.create_task(self._wait_and_fire(), name=f"{self._name}-timer")

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._deadline = None
        if self._state is DebounceState.PENDING:
            self._state = DebounceState.IDLE

    async def flush(self) -> None:
        """Срабатывает немедленно, если вызов ожидается."""

        if self._state is not DebounceState.PENDING:
            return
        self.cancel()
        await self._fire()

    async def wait(self) -> None:
        """Дожидается ожидаемого и уже начатого вызова (для тестов и shutdown)."""

        while self.pending:
            task = self._timer
            if task is None or task.done():
                break
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if task.cancelled():
                    continue
                raise
        await self._idle.wait()

    async def _wait_and_fire(self) -> None:
        deadline = self._deadline
        delay = deadline - asyncio.get_running_loop().time() if deadline is not None else 0
        if delay > 0:
            await asyncio.sleep(delay)
        self._timer = None
        self._deadline = None
        await self._fire()

    async def _fire(self) -> None:
        self._state = DebounceState.FIRED
        self._idle.clear()
        try:
            await self._action()
        except Exception as exc:  # noqa: BLE001
            logger.exception("{name}: отложенный вызов упал: {error}", name=self._name, error=exc)
        finally:
            self._idle.set()


__all__ = ["DebounceState", "Debouncer"]
