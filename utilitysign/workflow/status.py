import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from utilitysign.client.base import SigningRequestClient
from utilitysign.client.exceptions import APIError
from utilitysign.client.schemas import SigningRequest, can_transition
from utilitysign.common.tasks import invoke_callback
from utilitysign.config import settings

logger = logging.getLogger(__name__)


def format_time_remaining(expires_at: datetime, now: Optional[datetime] = None) -> str:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = (expires_at - now).total_seconds()
    if seconds <= 0:
        return "Expired"
    hours = int(seconds // 3600)
    minutes = int(seconds % 3600 // 60)
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"


class SigningStatusTracker:
    """Keeps a signing request's server-side status fresh while it is still open."""

    def __init__(
        self,
        client: SigningRequestClient,
        request_id: str,
        *,
        on_status_change: Optional[Callable[[SigningRequest], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        refresh_interval: Optional[float] = None,
        auto_refresh: bool = True,
    ) -> None:
        self._client = client
        self.request_id = request_id
        self._on_status_change = on_status_change
        self._on_error = on_error
        self._refresh_interval = refresh_interval or settings.status_refresh_interval_seconds
        self.auto_refresh = auto_refresh
        self.request: Optional[SigningRequest] = None
        self.error: Optional[str] = None
        self.last_updated: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def is_refreshing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def time_remaining(self) -> Optional[str]:
        if self.request is None:
            return None
        return format_time_remaining(self.request.expires_at)

    async def fetch(self) -> Optional[SigningRequest]:
        try:
            fresh = await self._client.get_signing_status(self.request_id)
        except APIError as exc:
            self.error = exc.user_message or exc.message
            logger.warning("Could not refresh signing request %s: %s", self.request_id, exc.message)
            await invoke_callback(self._on_error, self.error)
            return None

        previous = self.request
        if previous is not None and not can_transition(previous.status, fresh.status):
            logger.warning(
                "Ignoring status %s for signing request %s, already %s",
                fresh.status.value,
                self.request_id,
                previous.status.value,
            )
            return previous

        self.request = fresh
        self.error = None
        self.last_updated = datetime.now(timezone.utc)
        if previous is None or previous.status != fresh.status:
            await invoke_callback(self._on_status_change, fresh)
        return fresh

    async def start(self) -> Optional[SigningRequest]:
        """Fetch once, then keep refreshing until the request reaches a final status."""
        self._stopped = False
        request = await self.fetch()
        if self.auto_refresh and request is not None and not self.is_refreshing and not self._is_finished():
            self._task = asyncio.create_task(self._refresh_loop())
        return request

    async def stop(self) -> None:
        self._stopped = True
        if self._task is None:
            return
        if self._task is asyncio.current_task():
            self._task = None
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _is_finished(self) -> bool:
        return self.request is not None and self.request.is_terminal

    async def _refresh_loop(self) -> None:
        while not self._stopped and not self._is_finished():
            await asyncio.sleep(self._refresh_interval)
            if await self.fetch() is None:
                # The failure has been reported; a manual refresh resumes tracking.
                break
        logger.debug("Stopped refreshing signing request %s", self.request_id)
