from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .domain import SessionTypeInvariantViolation, Turn
from .logger_factory import get_logger
from .utils.logfmt import fmt


@dataclass(eq=False)
class Session:
    chat_id: int
    turns: list[Turn] = field(default_factory=list)
    last_activity: float = 0.0
    # Bumped whenever a pending expiry is superseded; an expiry task only
    # deletes the session if the epoch it captured is still current.
    epoch: int = 0
    expiry_task: Optional[asyncio.Task] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.turns)


class SessionStore:
    """Per-chat conversation history that expires after a period of inactivity.

    Each session is armed with one expiry task at a time. Re-arming (or
    clearing) increments the session epoch and cancels the previous task; a
    task that slept through its TTL deletes the session only when the store
    still holds that same session object at the epoch the task was armed
    with. Cancelling an already finished task is a no-op, so re-arming never
    waits on a timer that has fired.

    The map is guarded by a plain lock. Critical sections never await, so the
    store can be shared between the event loop and worker threads.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic, logger=None):
        if ttl_seconds <= 0:
            raise ValueError("session TTL must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._sessions: dict[int, Session] = {}
        self._lock = threading.Lock()
        self.log = logger or get_logger("SessionStore")

    def _checked(self, chat_id: int, value) -> Optional[Session]:
        if value is not None and not isinstance(value, Session):
            raise SessionTypeInvariantViolation(
                f"session store holds {type(value).__name__} for chat {chat_id}, expected Session"
            )
        return value

    @staticmethod
    def _disarm(session: Session) -> None:
        session.epoch += 1
        task, session.expiry_task = session.expiry_task, None
        if task is not None and not task.done():
            task.cancel()

    def get(self, chat_id: int) -> Optional[Session]:
        with self._lock:
            return self._checked(chat_id, self._sessions.get(chat_id))

    def get_or_create(self, chat_id: int) -> Session:
        """Return the live session for ``chat_id``, creating it if absent.

        An existing session has its pending expiry cancelled; callers are
        expected to call :meth:`schedule_expiry` once they are done with it.
        """
        with self._lock:
            session = self._checked(chat_id, self._sessions.get(chat_id))
            created = session is None
            if created:
                session = Session(chat_id=chat_id)
                self._sessions[chat_id] = session
            else:
                self._disarm(session)
            session.last_activity = self._clock()
        self.log.debug(
            f"[session-{'new' if created else 'resume'}] {fmt('chat', chat_id)} "
            f"{fmt('turns', len(session.turns))} {fmt('epoch', session.epoch)}"
        )
        return session

    def schedule_expiry(self, session: Session, ttl_seconds: float | None = None) -> asyncio.Task:
        """Arm a fresh expiry for ``session``, superseding any pending one.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        ttl = self.ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        with self._lock:
            self._disarm(session)
            epoch = session.epoch
            task = loop.create_task(self._expire_after(session, epoch, ttl))
            session.expiry_task = task
        return task

    async def _expire_after(self, session: Session, epoch: int, ttl: float) -> None:
        await asyncio.sleep(ttl)
        with self._lock:
            current = self._sessions.get(session.chat_id)
            if current is not session or session.epoch != epoch:
                stale = True
            else:
                stale = False
                del self._sessions[session.chat_id]
                session.expiry_task = None
        if stale:
            self.log.debug(f"[session-expiry-stale] {fmt('chat', session.chat_id)} {fmt('epoch', epoch)}")
            return
        self.log.debug(
            f"[session-expired] {fmt('chat', session.chat_id)} {fmt('turns', len(session.turns))} {fmt('ttl_s', ttl)}"
        )

    def clear(self, chat_id: int) -> Optional[Session]:
        with self._lock:
            session = self._checked(chat_id, self._sessions.pop(chat_id, None))
            if session is not None:
                self._disarm(session)
        if session is not None:
            self.log.debug(f"[session-cleared] {fmt('chat', chat_id)} {fmt('turns', len(session.turns))}")
        return session

    def append_turn(self, session: Session, turn: Turn) -> None:
        with self._lock:
            session.turns.append(turn)
            session.last_activity = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, chat_id: object) -> bool:
        with self._lock:
            return chat_id in self._sessions

    async def close(self) -> None:
        """Cancel every pending expiry and drop all sessions."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            tasks = [s.expiry_task for s in sessions if s.expiry_task is not None]
            for s in sessions:
                self._disarm(s)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
