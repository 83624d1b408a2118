"""Runtime per-label visibility, opacity and tint.

The renderer multiplies each label's lookup colour by a control row
``(tint_r, tint_g, tint_b, alpha)``.  :class:`LabelControlPlane` owns those
256 rows.  UI handlers call the mutators from any thread while the renderer
grabs :meth:`LabelControlPlane.snapshot` once per frame.

Writers are serialized by a lock and every mutation publishes a brand new
read-only array, so a reader either sees the buffer before a mutation or
after it, never half of it.  Indices outside ``0..255`` are ignored.
"""

from __future__ import annotations

import logging
import math
import operator
import threading
from typing import Callable, Mapping, Optional, Tuple

import numpy as np

from .config import LUT_SIZE

LOGGER = logging.getLogger(__name__)

_TINT = slice(0, 3)
_ALPHA = 3


def _index(value) -> Optional[int]:
    """Return *value* as a label index, or ``None`` when it is unusable."""

    if isinstance(value, bool):
        return None
    try:
        idx = operator.index(value)
    except TypeError:
        return None
    if 0 <= idx < LUT_SIZE:
        return idx
    return None


def _default_state() -> np.ndarray:
    state = np.ones((LUT_SIZE, 4), dtype=np.float32)
    state.flags.writeable = False
    return state


class LabelControlPlane:
    """Thread-safe 256-entry ``(tint, alpha)`` buffer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = _default_state()
        self._revision = 0

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------
    def snapshot(self) -> np.ndarray:
        """Return the latest published ``(256, 4)`` buffer (read-only)."""

        return self._state

    @property
    def revision(self) -> int:
        """Counter bumped by every mutation that changed the buffer."""

        return self._revision

    def alpha(self, index: int) -> Optional[float]:
        idx = _index(index)
        if idx is None:
            return None
        return float(self._state[idx, _ALPHA])

    def tint(self, index: int) -> Optional[Tuple[float, float, float]]:
        idx = _index(index)
        if idx is None:
            return None
        r, g, b = (float(v) for v in self._state[idx, _TINT])
        return (r, g, b)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------
    def _publish(self, mutate: Callable[[np.ndarray], None]) -> None:
        with self._lock:
            state = self._state.copy()
            mutate(state)
            if np.array_equal(state, self._state):
                return
            state.flags.writeable = False
            self._state = state
            self._revision += 1

    def set_visible(self, index: int, visible: bool) -> None:
        """Show (alpha 1) or hide (alpha 0) a label, keeping its tint."""

        idx = _index(index)
        if idx is None:
            LOGGER.debug("set_visible ignored for out-of-range label %r", index)
            return
        alpha = 1.0 if visible else 0.0

        def mutate(state: np.ndarray) -> None:
            state[idx, _ALPHA] = alpha

        self._publish(mutate)

    def set_opacity(self, index: int, opacity: float) -> None:
        """Set a label's alpha, clamped into ``[0, 1]``."""

        idx = _index(index)
        if idx is None:
            LOGGER.debug("set_opacity ignored for out-of-range label %r", index)
            return
        value = float(opacity)
        if math.isnan(value):
            LOGGER.debug("set_opacity ignored NaN for label %d", idx)
            return
        value = min(max(value, 0.0), 1.0)

        def mutate(state: np.ndarray) -> None:
            state[idx, _ALPHA] = value

        self._publish(mutate)

    def set_tint(self, index: int, rgb: Tuple[float, float, float]) -> None:
        """Overwrite a label's tint; alpha is left alone."""

        idx = _index(index)
        if idx is None:
            LOGGER.debug("set_tint ignored for out-of-range label %r", index)
            return
        r, g, b = (float(c) for c in tuple(rgb)[:3])

        def mutate(state: np.ndarray) -> None:
            state[idx, _TINT] = (r, g, b)

        self._publish(mutate)

    def solo(self, index: int) -> None:
        """Make *index* the only visible label. Tints are untouched."""

        idx = _index(index)
        if idx is None:
            LOGGER.debug("solo ignored for out-of-range label %r", index)
            return

        def mutate(state: np.ndarray) -> None:
            state[:, _ALPHA] = 0.0
            state[idx, _ALPHA] = 1.0

        self._publish(mutate)

    def show_all(self) -> None:
        """Make every label fully opaque again. Tints are untouched."""

        def mutate(state: np.ndarray) -> None:
            state[:, _ALPHA] = 1.0

        self._publish(mutate)

    def set_visibility_many(self, visibility: Mapping[int, bool]) -> None:
        """Apply several visibility changes as one atomic update."""

        updates = {}
        for index, visible in visibility.items():
            idx = _index(index)
            if idx is None:
                LOGGER.debug("Ignoring out-of-range label %r", index)
                continue
            updates[idx] = 1.0 if visible else 0.0
        if not updates:
            return

        def mutate(state: np.ndarray) -> None:
            for idx, alpha in updates.items():
                state[idx, _ALPHA] = alpha

        self._publish(mutate)

    def reset(self) -> None:
        """Return every label to white tint and full opacity."""

        def mutate(state: np.ndarray) -> None:
            state[...] = 1.0

        self._publish(mutate)


__all__ = ["LabelControlPlane"]
