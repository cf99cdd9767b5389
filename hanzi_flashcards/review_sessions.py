"""In-memory review sessions, one ReviewScheduler each. Reset on backend restart."""
import random
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError
from .scheduler import AdvanceResult, ReviewScheduler

SESSION_NOT_FOUND_MESSAGE = '未找到该复习会话，请重新开始。'


@dataclass
class ReviewSession:
    session_id: str
    set_id: int
    scheduler: ReviewScheduler

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'setId': self.set_id,
            'current': self.scheduler.current,
            'remaining': self.scheduler.remaining,
            'size': self.scheduler.size,
            'state': self.scheduler.state,
        }


class ReviewSessionStore:
    """
    Session id -> ReviewSession. A single lock serializes every mutation, so
    concurrent requests on one session never interleave inside the scheduler.
    The oldest sessions are dropped beyond max_sessions.
    """

    def __init__(self, max_sessions: int = 1000, seed: Optional[str] = None):
        self.max_sessions = max_sessions
        self.seed = seed
        self._sessions: "OrderedDict[str, ReviewSession]" = OrderedDict()
        self._lock = threading.Lock()

    def _rng_for(self, session_id: str) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{session_id}")

    def start(self, set_id: int, characters: List[Dict[str, Any]]) -> Dict[str, Any]:
        session_id = str(uuid.uuid4())
        scheduler = ReviewScheduler(rng=self._rng_for(session_id))
        scheduler.activate(characters)
        session = ReviewSession(session_id=session_id, set_id=set_id, scheduler=scheduler)
        with self._lock:
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
            return session.to_dict()

    def get(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
            self._sessions.move_to_end(session_id)
            return session.to_dict()

    def advance(self, session_id: str) -> Tuple[Dict[str, Any], AdvanceResult]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
            self._sessions.move_to_end(session_id)
            result = session.scheduler.advance()
            return session.to_dict(), result

    def end(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self):
        with self._lock:
            return len(self._sessions)
