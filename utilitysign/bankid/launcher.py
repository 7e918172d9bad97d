"""
Opening the BankID signing page.

Browser capabilities (``window.open``, ``window.confirm``, navigation) are injected
through ``WindowOpener`` so the launch logic can run against a fake in tests.
"""

import abc
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from utilitysign.config import settings

logger = logging.getLogger(__name__)

POPUP_BLOCKED_PROMPT = (
    "Popup blokkert. Vil du bli omdirigert til signeringssiden i dette vinduet? "
    "(Du kan returnere til denne siden etter signering)"
)
POPUP_DECLINED_MESSAGE = 'Vennligst tillat popups eller klikk "OK" for å omdirigere til signeringssiden.'


class WindowOpener(abc.ABC):
    """The browser operations the signing flow needs."""

    @abc.abstractmethod
    def open(self, url: str, name: str, features: str) -> Optional[Any]:
        """Open ``url`` in a named window. ``None`` means the popup was blocked."""

    @abc.abstractmethod
    def is_closed(self, handle: Any) -> bool:
        ...

    @abc.abstractmethod
    def close(self, handle: Any) -> None:
        ...

    @abc.abstractmethod
    def confirm(self, message: str) -> bool:
        ...

    @abc.abstractmethod
    def redirect(self, url: str) -> None:
        """Navigate the current page away to ``url``."""


class LauncherState(str, enum.Enum):
    idle = "idle"
    launching = "launching"
    popup_open = "popup_open"
    popup_blocked = "popup_blocked"
    redirected = "redirected"


class LaunchStatus(str, enum.Enum):
    popup_open = "popup_open"
    redirected = "redirected"
    declined = "declined"


@dataclass(frozen=True)
class LaunchResult:
    status: LaunchStatus
    window: Optional[Any] = None
    message: Optional[str] = None


class BankIDLauncher:
    def __init__(
        self,
        opener: WindowOpener,
        *,
        window_name: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        self._opener = opener
        self._window_name = window_name or settings.bankid_window_name
        self._width = width or settings.bankid_window_width
        self._height = height or settings.bankid_window_height
        self.state = LauncherState.idle
        self.window: Optional[Any] = None

    @property
    def window_features(self) -> str:
        return f"width={self._width},height={self._height},scrollbars=yes,resizable=yes"

    def launch(self, url: str) -> LaunchResult:
        """Open ``url`` in a popup, or redirect the page when the popup is blocked.

        A ``redirected`` result means the page is navigating away; the caller must
        not treat it as a local success. A ``declined`` result is not an error, it
        carries the message to show the user and leaves the launcher idle.
        """
        if not url:
            raise ValueError("A signing URL is required to launch BankID")

        self.state = LauncherState.launching
        handle = self._opener.open(url, self._window_name, self.window_features)
        if handle is not None:
            self.state = LauncherState.popup_open
            self.window = handle
            logger.debug("Opened BankID window %s", self._window_name)
            return LaunchResult(LaunchStatus.popup_open, window=handle)

        self.state = LauncherState.popup_blocked
        self.window = None
        logger.warning("Popup blocked, asking to redirect to the signing page instead")
        if self._opener.confirm(POPUP_BLOCKED_PROMPT):
            self.state = LauncherState.redirected
            self._opener.redirect(url)
            return LaunchResult(LaunchStatus.redirected)

        self.state = LauncherState.idle
        return LaunchResult(LaunchStatus.declined, message=POPUP_DECLINED_MESSAGE)

    def close(self) -> None:
        """Close the popup this launcher opened, if the user has not already."""
        if self.window is not None and not self._opener.is_closed(self.window):
            self._opener.close(self.window)
        self.reset()

    def reset(self) -> None:
        self.state = LauncherState.idle
        self.window = None
