from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from datetime import datetime
from typing import Callable, Optional

from .domain import InboundMessage
from .logger_factory import get_logger
from .sender import MessageSender
from .utils.logfmt import fmt
from .utils.time_utils import format_duration, next_utc_midnight, now_utc, seconds_until

OVER_LIMIT = "You have exceeded your daily spending limit: ${limit:.2f}. Limit will reset in {remaining}."


class UsageLedger:
    """Accumulated generation cost per chat with a daily cap.

    Totals reset to zero at every UTC midnight while :meth:`start` has a
    reset loop running.
    """

    def __init__(
        self,
        daily_limit: float,
        sender: Optional[MessageSender] = None,
        *,
        now: Callable[[], datetime] = now_utc,
        logger=None,
    ):
        self.daily_limit = float(daily_limit)
        self.sender = sender
        self._now = now
        self._spent: dict[int, float] = defaultdict(float)
        self._lock = threading.Lock()
        self._reset_task: Optional[asyncio.Task] = None
        self.log = logger or get_logger("UsageLedger")

    def add_cost(self, chat_id: int, cost: float) -> None:
        if cost < 0:
            raise ValueError("cost must be >= 0")
        with self._lock:
            self._spent[chat_id] += float(cost)

    def get_spent(self, chat_id: int) -> float:
        with self._lock:
            return self._spent.get(chat_id, 0.0)

    def reset(self) -> None:
        with self._lock:
            chats = len(self._spent)
            for chat_id in self._spent:
                self._spent[chat_id] = 0.0
        self.log.info(f"[usage-reset] {fmt('chats', chats)}")

    def time_until_reset(self) -> float:
        now = self._now()
        return seconds_until(next_utc_midnight(now), now)

    async def check_limit(
        self,
        chat_id: int,
        message: Optional[InboundMessage] = None,
        sender: Optional[MessageSender] = None,
    ) -> bool:
        """True while the chat's spend is at or below the daily limit.

        Over the limit the chat is told once per call when the limit resets
        (through ``sender`` or the ledger's own sender); a failed notification
        is only logged.
        """
        spent = self.get_spent(chat_id)
        if spent <= self.daily_limit:
            return True
        self.log.info(f"[usage-limit] {fmt('chat', chat_id)} {fmt('spent', spent)} {fmt('limit', self.daily_limit)}")
        notifier = sender or self.sender
        if notifier is not None:
            text = OVER_LIMIT.format(limit=self.daily_limit, remaining=format_duration(self.time_until_reset()))
            target = message or InboundMessage(message_id=0, chat_id=chat_id, username="", text="")
            try:
                await notifier.send_reply(target, text)
            except Exception as e:
                self.log.warning(f"[usage-limit-notify-failed] {fmt('chat', chat_id)} {fmt('error', e)}")
        return False

    async def run_reset_loop(self) -> None:
        while True:
            target = next_utc_midnight(self._now())
            delay = seconds_until(target, self._now())
            self.log.debug(f"[usage-reset-scheduled] {fmt('at', target.isoformat())} {fmt('in_s', int(delay))}")
            await asyncio.sleep(delay)
            self.reset()
            # Step past the boundary so the next target is the following midnight
            await asyncio.sleep(1)

    def start(self) -> asyncio.Task:
        if self._reset_task is None or self._reset_task.done():
            self._reset_task = asyncio.get_running_loop().create_task(self.run_reset_loop())
        return self._reset_task

    async def stop(self) -> None:
        task, self._reset_task = self._reset_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.log.debug("[usage-reset-stopped]")
