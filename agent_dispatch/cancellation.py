"""Cooperative cancellation tokens for running conversations."""

import asyncio
from enum import Enum
from typing import Callable

from agent_dispatch.exceptions import ConversationCancelledError
from agent_dispatch.logging import get_logger

log = get_logger(__name__)


class CancellationState(str, Enum):
    NOT_REQUESTED = "not-requested"
    REQUESTED = "requested"
    ACTED_UPON = "acted-upon"


class CancellationToken:
    """Level-triggered cancellation signal shared by a conversation's readers.

    Once requested, a token stays requested. Listeners registered after the
    request are called immediately.
    """

    def __init__(self) -> None:
        self._state = CancellationState.NOT_REQUESTED
        self._listeners: list[Callable[[], None]] = []
        self._event: asyncio.Event | None = None

    @classmethod
    def none(cls) -> "CancellationToken":
        """A token that is never cancelled."""
        return cls()

    @property
    def state(self) -> CancellationState:
        return self._state

    @property
    def is_cancellation_requested(self) -> bool:
        return self._state is not CancellationState.NOT_REQUESTED

    def on_cancellation_requested(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it again."""
        if self.is_cancellation_requested:
            callback()
            return lambda: None
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        if self.is_cancellation_requested:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def mark_acted_upon(self) -> None:
        if self._state is CancellationState.REQUESTED:
            self._state = CancellationState.ACTED_UPON

    def raise_if_cancellation_requested(self) -> None:
        if self.is_cancellation_requested:
            raise ConversationCancelledError()

    def _request(self) -> None:
        if self.is_cancellation_requested:
            return
        self._state = CancellationState.REQUESTED
        if self._event is not None:
            self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                log.warning("Cancellation listener failed", error=str(e))


class CancellationTokenSource:
    """Owner side of a cancellation token; one per running conversation."""

    def __init__(self) -> None:
        self._token = CancellationToken()
        self._disposed = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def disposed(self) -> bool:
        return self._disposed

    def cancel(self) -> None:
        """Request cancellation. Safe to call repeatedly and after dispose."""
        if self._disposed:
            return
        self._token._request()

    def dispose(self) -> None:
        """Release listeners; the token keeps its final state."""
        self._disposed = True
        self._token._listeners.clear()
