#!/usr/bin/env python3
"""Override primitives - the manual on/off/auto actions a user can trigger."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from overdrive.models import FilterState, Override, OverrideMode

logger = logging.getLogger(__name__)

# Accepted spellings for each action, as sent by the control server or a tray menu
ACTION_ALIASES = {
    "on": OverrideMode.FORCED_ON,
    "force-on": OverrideMode.FORCED_ON,
    "forced_on": OverrideMode.FORCED_ON,
    "off": OverrideMode.FORCED_OFF,
    "force-off": OverrideMode.FORCED_OFF,
    "forced_off": OverrideMode.FORCED_OFF,
    "auto": OverrideMode.NONE,
    "none": OverrideMode.NONE,
}

OverrideListener = Callable[[Override, Override], None]


def parse_action(action: str) -> OverrideMode:
    """Map a user action string to the override mode it requests.

    Raises:
        ValueError: Unknown action.
    """
    try:
        return ACTION_ALIASES[action.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown override action '{action}'") from None


class OverrideController:
    """Owns the manual override and wakes the scheduler whenever it changes.

    The controller lives on the scheduler's event loop.  The current value is
    an immutable `Override`; every transition replaces it in one assignment,
    so `snapshot()` never observes a half-written state.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._current = Override.none()
        self.changed = asyncio.Event()
        self._listeners: List[OverrideListener] = []

    @property
    def mode(self) -> OverrideMode:
        return self._current.mode

    def snapshot(self) -> Override:
        return self._current

    def add_listener(self, listener: OverrideListener) -> None:
        self._listeners.append(listener)

    def _transition(self, new: Override, source: str) -> None:
        old = self._current
        self._current = new
        logger.info(f"[{source}] Override {old.mode.value} -> {new.mode.value}")
        self.changed.set()
        for listener in self._listeners:
            listener(old, new)

    def request(self, mode: OverrideMode, source: str = "user", now: Optional[datetime] = None) -> Override:
        """Apply a user request. Returns the new snapshot."""
        now = now or self._clock()
        self._transition(Override.forced(mode, now), source)
        return self._current

    def force_on(self, source: str = "user", now: Optional[datetime] = None) -> Override:
        return self.request(OverrideMode.FORCED_ON, source, now)

    def force_off(self, source: str = "user", now: Optional[datetime] = None) -> Override:
        return self.request(OverrideMode.FORCED_OFF, source, now)

    def auto(self, source: str = "user", now: Optional[datetime] = None) -> Override:
        return self.request(OverrideMode.NONE, source, now)

    def toggle(self, current: FilterState, source: str = "user", now: Optional[datetime] = None) -> Override:
        """Force the opposite of whatever the display currently shows."""
        target = current.flipped()
        mode = OverrideMode.FORCED_ON if target is FilterState.ACTIVE else OverrideMode.FORCED_OFF
        return self.request(mode, source, now)

    def expire(self, now: datetime) -> bool:
        """Clear an override whose local-midnight deadline has passed.

        Returns:
            True if an override was cleared
        """
        current = self._current
        if current.mode is OverrideMode.NONE or current.is_active(now):
            return False
        logger.info(f"Override {current.mode.value} set at {current.set_at.isoformat()} expired at midnight")
        self._transition(Override.none(), "midnight")
        return True

    def post(self, action: str, source: str = "user") -> Override:
        """Handle a raw action string coming from a UI surface."""
        return self.request(parse_action(action), source)

    def post_threadsafe(self, loop: asyncio.AbstractEventLoop, action: str, source: str = "tray") -> None:
        """Hand an action over from a foreign thread (e.g. a tray toolkit)."""
        mode = parse_action(action)
        loop.call_soon_threadsafe(self.request, mode, source)
