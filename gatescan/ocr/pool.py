"""Bounded pool of pre-initialised OCR engines.

Loading a recognizer (language model, traineddata) is slow and the engines are
not reentrant, so the service keeps a fixed arena of N engine handles and lends
them out one caller at a time:

    UNINITIALIZED -> INITIALIZING -> READY <-> IN_USE
                          |                       |
                        FAILED          TERMINATING -> TERMINATED

Callers queue in FIFO order when every handle is busy. A released handle is
handed straight to the oldest waiter, so a newcomer can never overtake the
queue. Handles that break are terminated and rebuilt in the background with
exponential backoff while the pool runs at reduced capacity.
"""
from __future__ import annotations

import asyncio
import enum
import functools
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from gatescan.ocr.base_ocr import EngineFailure, OCREngine, OCRResult

if TYPE_CHECKING:
    from gatescan.core.config import Settings

logger = logging.getLogger(__name__)


class HandleState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    IN_USE = "in_use"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    FAILED = "failed"


_LIVE_STATES = frozenset({HandleState.READY, HandleState.IN_USE})


class EngineUnavailableError(RuntimeError):
    """No engine could be lent out (timeout, zero capacity or shutdown)."""


class RecognitionTimeoutError(RuntimeError):
    """The engine did not return within the recognition timeout."""


class PoolError(RuntimeError):
    """The pool was used incorrectly, e.g. a handle released twice."""


@dataclass(eq=False)
class EngineHandle:
    index: int
    state: HandleState = HandleState.UNINITIALIZED
    engine: OCREngine | None = None
    uses: int = 0
    error: str | None = None
    # Set while a cancelled caller's recognition is still running in the engine.
    detached: bool = field(default=False, repr=False)


async def _close_quietly(engine: OCREngine | None) -> None:
    if engine is None:
        return
    try:
        await engine.close()
    except Exception:
        logger.warning("engine_close_failed", extra={"engine": engine.name}, exc_info=True)


class EnginePool:
    def __init__(
        self,
        factory: Callable[[], OCREngine],
        size: int = 2,
        *,
        init_attempts: int = 3,
        replace_attempts: int = 5,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 30.0,
    ) -> None:
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self._factory = factory
        self._size = size
        self._init_attempts = init_attempts
        self._replace_attempts = replace_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait

        self._handles: list[EngineHandle] = [EngineHandle(index=i) for i in range(size)]
        self._idle: deque[int] = deque()
        self._waiters: deque[asyncio.Future[int]] = deque()
        self._replacements: dict[int, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()

        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._closing = False
        self._drained = asyncio.Event()
        self._drained.set()

    @classmethod
    def from_settings(cls, settings: Settings, factory: Callable[[], OCREngine]) -> EnginePool:
        return cls(
            factory,
            size=settings.ocr_pool_size,
            init_attempts=settings.ocr_init_attempts,
            replace_attempts=settings.ocr_replace_attempts,
            retry_min_wait=settings.ocr_retry_min_wait,
            retry_max_wait=settings.ocr_retry_max_wait,
        )

    # ------------------------------------------------------------------ #
    #  Introspection                                                       #
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return self._size

    @property
    def handles(self) -> tuple[EngineHandle, ...]:
        return tuple(self._handles)

    @property
    def capacity(self) -> int:
        return sum(1 for h in self._handles if h.state in _LIVE_STATES)

    @property
    def in_use(self) -> int:
        return sum(1 for h in self._handles if h.state is HandleState.IN_USE)

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def ready(self) -> bool:
        return not self._closing and self.capacity > 0

    @property
    def closing(self) -> bool:
        return self._closing

    def stats(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "size": self._size,
            "capacity": self.capacity,
            "in_use": self.in_use,
            "waiting": self.waiting,
            "replacing": len(self._replacements),
        }

    # ------------------------------------------------------------------ #
    #  Startup                                                             #
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """Build and prime every engine. Safe to call more than once.

        A slot that keeps failing after ``init_attempts`` is left FAILED and
        the pool starts with whatever capacity it reached, possibly zero.
        """
        async with self._init_lock:
            if self._initialized:
                return
            if self._closing:
                raise PoolError("engine pool has been shut down")

            for i in range(self._size):
                self._handles[i] = EngineHandle(index=i, state=HandleState.INITIALIZING)
            await asyncio.gather(
                *(self._start_slot(h, self._init_attempts) for h in list(self._handles))
            )
            self._initialized = True

        capacity = self.capacity
        extra = {"capacity": capacity, "size": self._size}
        if capacity == 0:
            logger.error("engine_pool_unavailable", extra=extra)
        elif capacity < self._size:
            logger.warning("engine_pool_degraded", extra=extra)
        else:
            logger.info("engine_pool_ready", extra=extra)

    def _retrying(self, attempts: int) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self._retry_min_wait, min=self._retry_min_wait, max=self._retry_max_wait
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _spawn(self) -> OCREngine:
        engine = self._factory()
        try:
            await engine.load()
        except BaseException:
            await _close_quietly(engine)
            raise
        return engine

    async def _start_slot(self, handle: EngineHandle, attempts: int) -> bool:
        try:
            async for attempt in self._retrying(attempts):
                with attempt:
                    engine = await self._spawn()
        except Exception as exc:
            handle.state = HandleState.FAILED
            handle.error = str(exc) or type(exc).__name__
            logger.error(
                "engine_init_failed",
                extra={"slot": handle.index, "attempts": attempts, "error": handle.error},
            )
            return False

        if self._closing or self._handles[handle.index] is not handle:
            await _close_quietly(engine)
            handle.state = HandleState.TERMINATED
            return False

        handle.engine = engine
        logger.info("engine_initialized", extra={"slot": handle.index, "engine": engine.name})
        self._dispatch(handle)
        return True

    # ------------------------------------------------------------------ #
    #  Acquire / release                                                   #
    # ------------------------------------------------------------------ #

    def _dispatch(self, handle: EngineHandle) -> None:
        """Make ``handle`` available: hand it to the oldest live waiter or park it."""
        handle.state = HandleState.READY
        if not self._closing:
            while self._waiters:
                waiter = self._waiters.popleft()
                if not waiter.done():
                    self._mark_in_use(handle)
                    waiter.set_result(handle.index)
                    return
        self._idle.append(handle.index)
        self._check_drained()

    def _mark_in_use(self, handle: EngineHandle) -> None:
        handle.state = HandleState.IN_USE
        handle.uses += 1
        self._drained.clear()

    def _check_drained(self) -> None:
        if self.in_use == 0:
            self._drained.set()

    def _has_prospects(self) -> bool:
        return any(
            h.state in _LIVE_STATES or h.state is HandleState.INITIALIZING for h in self._handles
        )

    async def acquire(self, timeout: float | None = None) -> EngineHandle:
        """Borrow an engine, waiting up to ``timeout`` seconds for one to free up.

        Raises:
            EngineUnavailableError: on timeout, during shutdown, or when the
                pool has no engine and none is being built.
        """
        if self._closing:
            raise EngineUnavailableError("engine pool is shutting down")
        if not self._initialized:
            await self.initialize()

        if self._idle:
            handle = self._handles[self._idle.popleft()]
            self._mark_in_use(handle)
            return handle

        if not self._has_prospects():
            raise EngineUnavailableError("no OCR engine is available")

        waiter: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("engine_acquire_queued", extra={"waiting": self.waiting})
        try:
            index = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            self._abandon(waiter)
            raise EngineUnavailableError(
                f"no OCR engine became free within {timeout}s"
            ) from None
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise
        return self._handles[index]

    def _abandon(self, waiter: asyncio.Future[int]) -> None:
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            # The hand-off landed just as the caller gave up; pass it on.
            self._dispatch(self._handles[waiter.result()])
        else:
            waiter.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def release(self, handle: EngineHandle) -> None:
        if handle.state is not HandleState.IN_USE or self._handles[handle.index] is not handle:
            raise PoolError(f"engine handle {handle.index} released while {handle.state.value}")
        self._dispatch(handle)

    @asynccontextmanager
    async def lease(self, timeout: float | None = None) -> AsyncIterator[EngineHandle]:
        """``acquire`` + guaranteed ``release`` on every exit path."""
        handle = await self.acquire(timeout)
        try:
            yield handle
        finally:
            if (
                handle.state is HandleState.IN_USE
                and not handle.detached
                and self._handles[handle.index] is handle
            ):
                self.release(handle)

    # ------------------------------------------------------------------ #
    #  Recognition                                                         #
    # ------------------------------------------------------------------ #

    async def recognize(
        self,
        handle: EngineHandle,
        image_bytes: bytes,
        timeout: float | None = None,
    ) -> OCRResult:
        """Run the engine held by ``handle``.

        The engine call itself is never interrupted. If it outlives
        ``timeout`` the handle is written off and rebuilt; if the caller is
        cancelled the handle goes back to the pool once the call returns.
        """
        if handle.state is not HandleState.IN_USE or handle.engine is None:
            raise PoolError(f"engine handle {handle.index} is not leased")

        call = asyncio.ensure_future(handle.engine.extract_text(image_bytes))
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout)
        except asyncio.TimeoutError:
            self.discard(handle, f"recognition exceeded {timeout}s", pending=call)
            raise RecognitionTimeoutError(f"recognition exceeded {timeout}s") from None
        except EngineFailure as exc:
            self.discard(handle, str(exc))
            raise
        except asyncio.CancelledError:
            if not call.done():
                handle.detached = True
                call.add_done_callback(functools.partial(self._settle_detached, handle))
            raise

    def _settle_detached(self, handle: EngineHandle, call: asyncio.Future[OCRResult]) -> None:
        handle.detached = False
        exc = None if call.cancelled() else call.exception()
        if handle.state is not HandleState.IN_USE:
            return
        if isinstance(exc, EngineFailure):
            self.discard(handle, str(exc))
        else:
            self.release(handle)

    # ------------------------------------------------------------------ #
    #  Failure handling                                                    #
    # ------------------------------------------------------------------ #

    def _spawn_background(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def discard(
        self,
        handle: EngineHandle,
        reason: str,
        *,
        pending: asyncio.Future[Any] | None = None,
    ) -> None:
        """Terminate ``handle`` and start building a replacement for its slot."""
        if handle.state in (HandleState.TERMINATING, HandleState.TERMINATED):
            return
        handle.state = HandleState.TERMINATING
        handle.error = reason
        try:
            self._idle.remove(handle.index)
        except ValueError:
            pass

        logger.warning(
            "engine_discarded",
            extra={"slot": handle.index, "reason": reason, "uses": handle.uses},
        )
        self._spawn_background(self._terminate(handle, pending))

        if not self._closing and self._handles[handle.index] is handle:
            replacement = EngineHandle(index=handle.index, state=HandleState.INITIALIZING)
            self._handles[handle.index] = replacement
            task = self._spawn_background(self._replace(replacement))
            self._replacements[handle.index] = task
            task.add_done_callback(functools.partial(self._replacement_done, handle.index))
        self._check_drained()

    def _replacement_done(self, index: int, task: asyncio.Task[None]) -> None:
        if self._replacements.get(index) is task:
            del self._replacements[index]

    async def _terminate(
        self, handle: EngineHandle, pending: asyncio.Future[Any] | None = None
    ) -> None:
        try:
            if pending is not None:
                # Let a running call finish first. Shutdown may cut the wait short.
                await asyncio.wait({pending})
                if not pending.cancelled() and pending.exception() is not None:
                    logger.debug(
                        "orphaned_recognition_failed",
                        extra={"slot": handle.index, "error": str(pending.exception())},
                    )
        finally:
            await _close_quietly(handle.engine)
            handle.state = HandleState.TERMINATED
            logger.info("engine_terminated", extra={"slot": handle.index})

    async def _replace(self, handle: EngineHandle) -> None:
        if await self._start_slot(handle, self._replace_attempts):
            logger.info("engine_replaced", extra={"slot": handle.index})
        else:
            logger.error(
                "engine_replacement_gave_up",
                extra={"slot": handle.index, "capacity": self.capacity},
            )

    # ------------------------------------------------------------------ #
    #  Shutdown                                                            #
    # ------------------------------------------------------------------ #

    async def shutdown(self, drain_timeout: float | None = None) -> None:
        """Refuse new work, wait for in-flight recognitions, close every engine."""
        if self._closing:
            return
        self._closing = True

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(EngineUnavailableError("engine pool is shutting down"))

        if self.in_use:
            logger.info("engine_pool_draining", extra={"in_use": self.in_use})
            try:
                await asyncio.wait_for(self._drained.wait(), drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "engine_pool_drain_timeout",
                    extra={"in_use": self.in_use, "drain_timeout": drain_timeout},
                )

        for task in list(self._replacements.values()):
            task.cancel()
        if self._background:
            _, stuck = await asyncio.wait(set(self._background), timeout=drain_timeout)
            for task in stuck:
                task.cancel()
            await asyncio.gather(*stuck, return_exceptions=True)

        self._idle.clear()
        live = [h for h in self._handles if h.state is not HandleState.TERMINATED]
        for handle in live:
            handle.state = HandleState.TERMINATING
        await asyncio.gather(*(_close_quietly(h.engine) for h in live))
        for handle in live:
            handle.state = HandleState.TERMINATED
        self._drained.set()

        logger.info("engine_pool_shutdown", extra={"closed": len(live)})
