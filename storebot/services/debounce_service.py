"""In-memory debounce of bursty WhatsApp messages.

Fragments sent by the same customer within the debounce window are joined
into one turn. Buffers live in this process only, so the service must run
as a single instance.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from storebot.logging_config import get_logger

logger = get_logger("debounce_service")


@dataclass
class BufferedTurn:
    key: str
    fragments: List[str]
    context: Any

    @property
    def text(self) -> str:
        return "\n".join(self.fragments)


@dataclass
class _Buffer:
    context: Any
    fragments: List[str] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


TurnHandler = Callable[[BufferedTurn], Awaitable[None]]


class MessageDebouncer:
    """Coalesce fragments per key and hand each window to the handler once.

    Must be used from the event loop thread. Dispatches for the same key run
    one after another; different keys run concurrently.
    """

    def __init__(self, handler: TurnHandler, delay_ms: int = 5000):
        self._handler = handler
        self._delay = max(0, delay_ms) / 1000
        self._buffers: Dict[str, _Buffer] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def delay_ms(self) -> int:
        return int(self._delay * 1000)

    def ingest(self, key: str, fragment: str, context: Any) -> int:
        """Add a fragment and restart the key's timer.

        The context of the first fragment in a window is kept; later ones
        are ignored. Returns the number of fragments now buffered.
        """
        loop = asyncio.get_running_loop()
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = _Buffer(context=context)
            self._buffers[key] = buffer
        elif buffer.timer is not None:
            buffer.timer.cancel()

        buffer.fragments.append(fragment)
        buffer.timer = loop.call_later(self._delay, self._fire, key)

        logger.debug(
            f"Buffered fragment {len(buffer.fragments)} for {key}",
            extra={"context": {"buffer_key": key, "delay_ms": self.delay_ms}},
        )
        return len(buffer.fragments)

    def pending_keys(self) -> List[str]:
        return list(self._buffers)

    def in_flight_keys(self) -> List[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    def _fire(self, key: str) -> None:
        buffer = self._buffers.pop(key, None)
        if buffer is None:
            return
        buffer.timer = None
        turn = BufferedTurn(key=key, fragments=buffer.fragments, context=buffer.context)
        logger.info(
            f"Flushing {len(turn.fragments)} fragment(s) for {key}",
            extra={"context": {"buffer_key": key, "fragments": len(turn.fragments)}},
        )
        self._dispatch(turn)

    def _dispatch(self, turn: BufferedTurn) -> asyncio.Task:
        previous = self._tasks.get(turn.key)
        task = asyncio.get_running_loop().create_task(self._run(turn, previous))
        self._tasks[turn.key] = task
        task.add_done_callback(lambda t, key=turn.key: self._forget(key, t))
        return task

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def _run(self, turn: BufferedTurn, previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await self._handler(turn)
        except Exception as e:
            logger.error(
                f"Turn handler failed for {turn.key}: {e}",
                exc_info=True,
                extra={"context": {"buffer_key": turn.key}},
            )

    async def drain(self) -> None:
        """Wait for every dispatched turn to finish."""
        while self._tasks:
            await asyncio.wait(list(self._tasks.values()))

    async def shutdown(self, flush_pending: bool = True) -> None:
        """Stop all timers; flush or drop pending buffers, then drain in-flight turns."""
        keys = list(self._buffers)
        if flush_pending:
            for key in keys:
                buffer = self._buffers.get(key)
                if buffer is not None and buffer.timer is not None:
                    buffer.timer.cancel()
                self._fire(key)
        else:
            for key in keys:
                buffer = self._buffers.pop(key)
                if buffer.timer is not None:
                    buffer.timer.cancel()
            if keys:
                logger.warning(f"Dropped {len(keys)} pending buffer(s) on shutdown")

        await self.drain()
        logger.info(f"Debouncer stopped ({len(keys)} pending buffer(s) at shutdown)")
