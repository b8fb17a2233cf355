"""Subscription state for Snap Sync.

Remembers, per media category and camera, whether Frigate currently has
that category switched on.  Anything never announced is treated as off.
"""

import logging
import threading

from snap_sync.events import MediaCategory

logger = logging.getLogger(__name__)


class SubscriptionStateTracker:
    """Thread-safe map of (category, camera) -> enabled."""

    def __init__(self) -> None:
        self._enabled: dict[tuple[MediaCategory, str], bool] = {}
        self._lock = threading.Lock()

    def apply_state_change(
        self, category: MediaCategory, enabled: bool, camera: str = ""
    ) -> None:
        """Record the latest toggle for *category* on *camera*.  Idempotent."""
        key = (category, camera)
        with self._lock:
            previous = self._enabled.get(key)
            self._enabled[key] = bool(enabled)
        if previous != enabled:
            logger.info(
                "%s %s for camera '%s'",
                category.value.capitalize(),
                "enabled" if enabled else "disabled",
                camera,
            )

    def is_enabled(self, category: MediaCategory, camera: str = "") -> bool:
        """Return the current toggle, defaulting to False when unknown."""
        with self._lock:
            return self._enabled.get((category, camera), False)

    def snapshot(self) -> dict[tuple[MediaCategory, str], bool]:
        """Return a copy of the full state."""
        with self._lock:
            return dict(self._enabled)
