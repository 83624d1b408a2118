"""Exclusive manipulation mode shared by scale/rotate/translate handlers.

Only one gesture may manipulate the volume at a time.  Instead of three
independent global flags, handlers share one :class:`ManipulationArbiter`
and ask it for the token before they start.
"""

from __future__ import annotations

from enum import Enum
import logging
import threading

LOGGER = logging.getLogger(__name__)


class ManipulationMode(Enum):
    IDLE = "idle"
    SCALING = "scaling"
    ROTATING = "rotating"
    TRANSLATING = "translating"


class ManipulationArbiter:
    """Grants the manipulation token to one mode at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mode = ManipulationMode.IDLE

    @property
    def mode(self) -> ManipulationMode:
        return self._mode

    @property
    def busy(self) -> bool:
        return self._mode is not ManipulationMode.IDLE

    def try_begin(self, mode: ManipulationMode) -> bool:
        """Take the token for *mode*; ``False`` when another mode holds it."""

        if mode is ManipulationMode.IDLE:
            raise ValueError("IDLE is not a manipulation mode")
        with self._lock:
            if self._mode in (ManipulationMode.IDLE, mode):
                self._mode = mode
                return True
            LOGGER.debug("%s refused while %s is active", mode.value, self._mode.value)
            return False

    def end(self, mode: ManipulationMode) -> bool:
        """Release the token if *mode* holds it."""

        with self._lock:
            if self._mode is mode and mode is not ManipulationMode.IDLE:
                self._mode = ManipulationMode.IDLE
                return True
            return False

    def reset(self) -> None:
        with self._lock:
            self._mode = ManipulationMode.IDLE


__all__ = ["ManipulationMode", "ManipulationArbiter"]
