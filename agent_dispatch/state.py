"""Conversation state store.

The store is the single source of truth for conversation records. Records are
frozen; every write builds a new record and swaps it in with one assignment,
so a reader never sees a half-applied update. Components re-read from the
store after every await instead of holding on to a record.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from agent_dispatch.cancellation import CancellationTokenSource
from agent_dispatch.exceptions import ConversationNotFoundError
from agent_dispatch.history import ConversationStatus
from agent_dispatch.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ConversationRecord:
    """A conversation as seen by monitors and callers."""

    id: int
    goal: str
    model_id: str
    max_turns: int
    caller: str | None = None
    title: str | None = None
    status: ConversationStatus = ConversationStatus.STARTED
    current_turn: int = 0
    total_tokens: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    cancelled: bool = False
    error_message: str | None = None
    results: str | None = None
    cancellation_source: CancellationTokenSource | None = field(
        default=None, compare=False, repr=False
    )

    def to_dict(self) -> dict[str, Any]:
        """Plain snapshot for monitors; drops the cancellation handle."""
        return {
            "id": self.id,
            "goal": self.goal,
            "model_id": self.model_id,
            "max_turns": self.max_turns,
            "caller": self.caller,
            "title": self.title,
            "status": self.status.value,
            "current_turn": self.current_turn,
            "total_tokens": self.total_tokens,
            "started_at": self.started_at.isoformat(),
            "cancelled": self.cancelled,
            "error_message": self.error_message,
            "results": self.results,
        }


StoreListener = Callable[[tuple[ConversationRecord, ...]], None]

_IMMUTABLE_FIELDS = {"id", "goal", "model_id", "max_turns", "caller", "title", "started_at"}


class ConversationStore:
    """Keyed registry of conversation records."""

    def __init__(self) -> None:
        self._conversations: dict[int, ConversationRecord] = {}
        self._next_id = 1
        self._listeners: list[StoreListener] = []

    def register(
        self,
        goal: str,
        model_id: str,
        max_turns: int,
        caller: str | None = None,
        title: str | None = None,
    ) -> int:
        """Register a new conversation and return its id."""
        conv_id = self._next_id
        self._next_id += 1
        self._conversations[conv_id] = ConversationRecord(
            id=conv_id,
            goal=goal,
            model_id=model_id,
            max_turns=max_turns,
            caller=caller,
            title=title,
        )
        log.debug("Registered conversation", conv_id=conv_id, model_id=model_id)
        self._notify()
        return conv_id

    def update(self, conv_id: int, **changes: Any) -> ConversationRecord:
        """Merge changes into a conversation record.

        Raises:
            ConversationNotFoundError if the id is unknown
            ValueError when trying to change session-immutable fields
        """
        current = self._require(conv_id)
        frozen = _IMMUTABLE_FIELDS.intersection(changes)
        if frozen:
            raise ValueError(f"Cannot update immutable fields: {sorted(frozen)}")
        updated = dataclasses.replace(current, **changes)
        self._conversations[conv_id] = updated
        self._notify()
        return updated

    def mark_cancelled(self, conv_id: int) -> ConversationRecord:
        """Flag a conversation as cancelled and fire its cancellation token."""
        current = self._require(conv_id)
        if current.cancellation_source is not None:
            current.cancellation_source.cancel()
        updated = dataclasses.replace(
            current,
            cancelled=True,
            status=ConversationStatus.CANCEL_REQUESTED,
        )
        self._conversations[conv_id] = updated
        log.info("Conversation cancel requested", conv_id=conv_id)
        self._notify()
        return updated

    def get(self, conv_id: int) -> ConversationRecord | None:
        return self._conversations.get(conv_id)

    def get_all(self) -> tuple[ConversationRecord, ...]:
        return tuple(self._conversations.values())

    def delete(self, conv_id: int) -> bool:
        """Remove a record; returns False when it was not there."""
        if self._conversations.pop(conv_id, None) is None:
            return False
        self._notify()
        return True

    def subscribe(self, listener: StoreListener) -> None:
        """Call listener with a snapshot of all records after every write."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _require(self, conv_id: int) -> ConversationRecord:
        record = self._conversations.get(conv_id)
        if record is None:
            raise ConversationNotFoundError(conv_id)
        return record

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.get_all()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.warning("Store listener failed", error=str(e))


# Global store
_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    """Get the default conversation store."""
    global _store
    if _store is None:
        _store = ConversationStore()
    return _store


def set_conversation_store(store: ConversationStore) -> None:
    """Replace the default conversation store."""
    global _store
    _store = store
