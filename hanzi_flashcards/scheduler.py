"""
Review scheduler: shuffled rounds with no repeats inside a round.

Every character is shown once per round in a random order. When a round ends
the full set is reshuffled; if the new first card equals the card just shown,
positions 0 and 1 are swapped so the same character never appears twice in a row.

States:
- idle: nothing activated, or the activated set is empty
- mid_round: cards left in the deck
- round_boundary: deck empty, next advance starts a new round
"""
import random
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

STATE_IDLE = "idle"
STATE_MID_ROUND = "mid_round"
STATE_ROUND_BOUNDARY = "round_boundary"

NOT_ENOUGH_CHARACTERS = "字库中没有足够的字来切换。"
NEW_ROUND_MESSAGE = "新一轮开始！"


def _identity(card: Any) -> Any:
    """Cards compare by id when they have one (ORM rows or their dicts)."""
    if isinstance(card, dict) and "id" in card:
        return card["id"]
    card_id = getattr(card, "id", None)
    return card_id if card_id is not None else card


@dataclass(frozen=True)
class AdvanceResult:
    ok: bool
    current: Any = None
    round_started: bool = False
    message: Optional[str] = None


class ReviewScheduler:
    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng if rng is not None else random.Random()
        self._characters: List[Any] = []
        self._deck: List[Any] = []
        self._current: Any = None

    @property
    def current(self) -> Any:
        return self._current

    @property
    def deck(self) -> List[Any]:
        return list(self._deck)

    @property
    def remaining(self) -> int:
        return len(self._deck)

    @property
    def size(self) -> int:
        return len(self._characters)

    @property
    def state(self) -> str:
        if self._current is None:
            return STATE_IDLE
        return STATE_MID_ROUND if self._deck else STATE_ROUND_BOUNDARY

    def _shuffled(self) -> List[Any]:
        # random.shuffle is an in-place Fisher-Yates.
        cards = list(self._characters)
        self._rng.shuffle(cards)
        return cards

    def activate(self, characters: Sequence[Any]) -> Any:
        """Start a session over characters; returns the first card (None if empty)."""
        self._characters = list(characters or [])
        if not self._characters:
            self._current = None
            self._deck = []
            return None
        cards = self._shuffled()
        self._current = cards[0]
        self._deck = cards[1:]
        return self._current

    def advance(self) -> AdvanceResult:
        if len(self._characters) < 2:
            return AdvanceResult(ok=False, current=self._current, message=NOT_ENOUGH_CHARACTERS)

        if self._deck:
            self._current = self._deck.pop(0)
            return AdvanceResult(ok=True, current=self._current)

        previous = self._current
        cards = self._shuffled()
        if _identity(cards[0]) == _identity(previous):
            cards[0], cards[1] = cards[1], cards[0]
        self._current = cards[0]
        self._deck = cards[1:]
        return AdvanceResult(ok=True, current=self._current, round_started=True, message=NEW_ROUND_MESSAGE)
