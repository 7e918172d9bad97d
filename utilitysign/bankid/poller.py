"""
BankID session status polling.

One polling run owns up to three asyncio tasks tied to the same session:

* the status loop, reading ``check_bankid_status`` every ``poll_interval`` seconds;
* the window watcher, checking every ``window_check_interval`` seconds whether the
  user closed the BankID window, and cancelling the session when they did;
* the deadline, firing once at the earlier of the hard timeout and the signing
  request's ``expires_at``.

Whichever task reaches an outcome first tears the others down. Teardown is
idempotent, the completion trigger fires at most once per run and the session is
cancelled at most once per run.
"""

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from utilitysign.bankid.launcher import WindowOpener
from utilitysign.client.base import SigningRequestClient
from utilitysign.client.schemas import BankIDSessionStatus, BankIDStatusResult
from utilitysign.common.tasks import fire_and_forget, invoke_callback
from utilitysign.config import settings

logger = logging.getLogger(__name__)


class PollOutcome(str, enum.Enum):
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    expired = "expired"
    timed_out = "timed_out"


TERMINAL_OUTCOMES = {
    BankIDSessionStatus.completed: PollOutcome.completed,
    BankIDSessionStatus.failed: PollOutcome.failed,
    BankIDSessionStatus.cancelled: PollOutcome.cancelled,
    BankIDSessionStatus.expired: PollOutcome.expired,
}

OnTerminal = Callable[[PollOutcome], Union[None, Awaitable[None]]]


def seconds_until(moment: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - datetime.now(timezone.utc)).total_seconds()


class BankIDStatusPoller:
    def __init__(
        self,
        client: SigningRequestClient,
        *,
        opener: Optional[WindowOpener] = None,
        poll_interval: Optional[float] = None,
        window_check_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._opener = opener
        self._poll_interval = poll_interval or settings.bankid_poll_interval_seconds
        self._window_check_interval = window_check_interval or settings.bankid_window_check_interval_seconds
        self._timeout = timeout or settings.bankid_poll_timeout_seconds

        self._session_id: Optional[str] = None
        self._request_id: Optional[str] = None
        self._window: Optional[Any] = None
        self._on_terminal: Optional[OnTerminal] = None
        self._outcome: Optional[PollOutcome] = None
        self._done: Optional[asyncio.Future] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._deadline_task: Optional[asyncio.Task] = None
        self._cancel_requested = False

        self.last_result: Optional[BankIDStatusResult] = None
        self.completion_task: Optional[asyncio.Task] = None
        self.cancel_task: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def outcome(self) -> Optional[PollOutcome]:
        return self._outcome

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ── Lifecycle ───────────────────────────────────────────────────────────────

    def start_polling(
        self,
        session_id: str,
        on_terminal: Optional[OnTerminal] = None,
        *,
        request_id: Optional[str] = None,
        window: Optional[Any] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Start tracking ``session_id``. Must be called from a running event loop.

        Starting a new session drops tracking of the previous one.
        """
        if not session_id:
            raise ValueError("A BankID session id is required to poll")
        if self._session_id is not None and self._outcome is None:
            logger.debug("Dropping tracking of BankID session %s for %s", self._session_id, session_id)
            self._cancel_timers()
            self._resolve(None)

        self._session_id = session_id
        self._request_id = request_id
        self._window = window
        self._on_terminal = on_terminal
        self._outcome = None
        self._cancel_requested = False
        self.last_result = None
        self.completion_task = None
        self.cancel_task = None
        self._done = asyncio.get_running_loop().create_future()

        deadline = self._timeout
        if expires_at is not None:
            deadline = max(0.0, min(deadline, seconds_until(expires_at)))

        self._poll_task = asyncio.create_task(self._poll_loop(session_id))
        self._deadline_task = asyncio.create_task(self._expire_after(deadline))
        if window is not None and self._opener is not None:
            self._watch_task = asyncio.create_task(self._watch_window(session_id))
        else:
            self._watch_task = None
        logger.info("Polling BankID session %s (deadline %.0fs)", session_id, deadline)

    async def wait(self) -> Optional[PollOutcome]:
        """Outcome of the current run, or None when it was stopped before one was reached."""
        if self._done is None:
            return None
        return await self._done

    async def stop(self) -> None:
        """Stop every timer of the current run. Safe to call repeatedly."""
        tasks = self._cancel_timers()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._resolve(self._outcome)

    # ── Timers ──────────────────────────────────────────────────────────────────

    async def _poll_loop(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                result = await self._client.check_bankid_status(session_id)
            except Exception:
                logger.exception("BankID status check raised for session %s, polling continues", session_id)
                continue

            self.last_result = result
            if not result.success:
                logger.warning("BankID status read failed for session %s: %s", session_id, result.error)
                continue

            status = result.session_status
            if status is None:
                logger.debug("Ignoring unknown BankID status %r for session %s", result.status, session_id)
                continue
            if status == BankIDSessionStatus.pending:
                continue

            await self._handle_terminal(status)
            return

    async def _watch_window(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self._window_check_interval)
            if self._outcome is not None:
                return
            if self._opener.is_closed(self._window):
                logger.info("BankID window closed before session %s finished", session_id)
                self._request_cancel(session_id)
                return

    async def _expire_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        logger.info("Stopped polling BankID session %s after %.0fs", self._session_id, seconds)
        await self._finish(PollOutcome.timed_out)

    def _cancel_timers(self) -> list[asyncio.Task]:
        current = asyncio.current_task()
        cancelled = []
        for task in (self._poll_task, self._watch_task, self._deadline_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                cancelled.append(task)
        return cancelled

    # ── Outcomes ────────────────────────────────────────────────────────────────

    async def _handle_terminal(self, status: BankIDSessionStatus) -> None:
        if status == BankIDSessionStatus.completed:
            # Stop watching first so closing the window is not read as the user abandoning it.
            if self._watch_task is not None and self._watch_task is not asyncio.current_task():
                self._watch_task.cancel()
            if self._window is not None and self._opener is not None and not self._opener.is_closed(self._window):
                self._opener.close(self._window)
            if self._request_id:
                self.completion_task = fire_and_forget(
                    self._client.trigger_signing_completion(self._request_id),
                    f"completion trigger for signing request {self._request_id}",
                )
        await self._finish(TERMINAL_OUTCOMES[status])

    def _request_cancel(self, session_id: str) -> None:
        if self._cancel_requested:
            return
        self._cancel_requested = True
        self.cancel_task = fire_and_forget(
            self._client.cancel_bankid_session(session_id),
            f"cancellation of BankID session {session_id}",
        )

    async def _finish(self, outcome: PollOutcome) -> None:
        if self._outcome is not None:
            return
        self._outcome = outcome
        self._cancel_timers()
        logger.info("BankID session %s finished: %s", self._session_id, outcome.value)

        error: Optional[BaseException] = None
        if outcome != PollOutcome.timed_out and self._on_terminal is not None:
            try:
                await invoke_callback(self._on_terminal, outcome)
            except Exception as exc:
                error = exc
        if error is not None and self._done is not None and not self._done.done():
            self._done.set_exception(error)
        else:
            self._resolve(outcome)

    def _resolve(self, outcome: Optional[PollOutcome]) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(outcome)
