"""
Bounded conversation history for the shared backend.

Holds the exchanges of the conversation opened by the current wake-word
activation. Each exchange is one user turn (tagged with the speaker that
said it) plus the assistant's reply.

Limits (spec.MAX_CONTEXT_TURNS, spec.MAX_CONTEXT_CHARS) are enforced after
every commit by evicting whole exchanges, oldest first, so a reply is
never kept without the question it answered. The newest exchange always
survives, even when it alone exceeds the character budget.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Literal

from observability.logger import log_event
from spec import MAX_CONTEXT_CHARS, MAX_CONTEXT_TURNS


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str
    turn_id: int
    speaker_id: int | None = None


@dataclass(frozen=True)
class Exchange:
    """A user turn and the reply it received, sharing one turn_id."""
    turn_id: int
    speaker_id: int
    user_text: str
    assistant_text: str

    @property
    def char_count(self) -> int:
        return len(self.user_text) + len(self.assistant_text)

    def as_turns(self) -> tuple[Turn, Turn]:
        return (
            Turn(role="user", text=self.user_text, turn_id=self.turn_id, speaker_id=self.speaker_id),
            Turn(role="assistant", text=self.assistant_text, turn_id=self.turn_id),
        )


class ConversationContext:
    """
    Mutable history owned by the conversational backend.

    turn_ids keep increasing across clear() so log records from different
    conversations never collide.
    """

    def __init__(
        self,
        *,
        max_turns: int = MAX_CONTEXT_TURNS,
        max_chars: int = MAX_CONTEXT_CHARS,
    ) -> None:
        if max_turns < 2:
            raise ValueError("max_turns must leave room for one exchange")
        self._max_turns = max_turns
        self._max_chars = max_chars
        self._exchanges: deque[Exchange] = deque()
        self._chars = 0
        self._next_turn_id = 0

    def add_exchange(self, *, speaker_id: int, user_text: str, assistant_text: str) -> int:
        """Commit one exchange, evict as needed, and return its turn_id."""
        exchange = Exchange(
            turn_id=self._next_turn_id,
            speaker_id=speaker_id,
            user_text=user_text,
            assistant_text=assistant_text,
        )
        self._next_turn_id += 1

        self._exchanges.append(exchange)
        self._chars += exchange.char_count
        self._evict()
        return exchange.turn_id

    def clear(self) -> None:
        if self._exchanges:
            log_event({
                "event_type": "context_cleared",
                "exchanges": len(self._exchanges),
            })
        self._exchanges.clear()
        self._chars = 0

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(t for ex in self._exchanges for t in ex.as_turns())

    @property
    def char_count(self) -> int:
        return self._chars

    def serialize(self) -> list[dict[str, str]]:
        """
        Chat-completion messages for the stored history.

        User messages carry a `name` so the model can tell the people in
        the voice channel apart.
        """
        messages: list[dict[str, str]] = []
        for ex in self._exchanges:
            messages.append({
                "role": "user",
                "content": ex.user_text,
                "name": speaker_name(ex.speaker_id),
            })
            messages.append({"role": "assistant", "content": ex.assistant_text})
        return messages

    def _evict(self) -> None:
        while len(self._exchanges) > 1 and self._over_budget():
            dropped = self._exchanges.popleft()
            self._chars -= dropped.char_count
            log_event({
                "event_type": "context_exchange_dropped",
                "turn_id": dropped.turn_id,
                "speaker_id": dropped.speaker_id,
                "char_count": dropped.char_count,
            })

        if self._over_budget():
            newest = self._exchanges[-1]
            log_event({
                "event_type": "context_exchange_oversized",
                "turn_id": newest.turn_id,
                "char_count": newest.char_count,
            })

    def _over_budget(self) -> bool:
        return 2 * len(self._exchanges) > self._max_turns or self._chars > self._max_chars


def speaker_name(speaker_id: int) -> str:
    """Chat-message participant name for a speaker source id."""
    return f"speaker_{speaker_id}"
