"""
Adaptive lens switch controller.
Keeps a bounded history of per-frame quality scores and asks for the next
lens when the windowed mean stays poor, at most once per cooldown period.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .config import ControllerConfig
from .lenses import CameraInventory, LensType
from .selection import select_next

logger = logging.getLogger(__name__)


class QualityHistory:
    """Last N quality scores, oldest evicted first."""

    def __init__(self, capacity: int = 10):
        self.capacity = capacity
        self._scores = deque(maxlen=capacity)

    def append(self, score: float):
        self._scores.append(float(score))

    def clear(self):
        self._scores.clear()

    @property
    def is_full(self) -> bool:
        return len(self._scores) >= self.capacity

    @property
    def average(self) -> float:
        if not self._scores:
            return 0.0
        return sum(self._scores) / len(self._scores)

    def snapshot(self) -> List[float]:
        return list(self._scores)

    def __len__(self):
        return len(self._scores)


@dataclass
class SwitchCooldown:
    """Minimum interval between controller-triggered switches."""
    interval: float = 10.0
    last_switch: Optional[float] = None

    def elapsed(self, now: float) -> bool:
        return self.last_switch is None or now - self.last_switch >= self.interval

    def mark(self, now: float):
        self.last_switch = now


class ControllerState(Enum):
    STABLE = "stable"
    COOLING_DOWN = "cooling_down"


class AdaptiveSwitchController:
    """
    Mean-threshold-with-cooldown controller.

    `record()` is called once per processed frame with the frame's quality
    (0.0 when nothing was detected) and returns the lens type to switch to,
    or None. The caller performs the switch and calls `lens_changed()`.
    """

    def __init__(self, config: Optional[ControllerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or ControllerConfig()
        self.clock = clock
        self.history = QualityHistory(self.config.history_size)
        self.cooldown = SwitchCooldown(self.config.switch_cooldown_seconds)
        self.last_quality = 0.0
        self.switch_timestamps: List[float] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> ControllerState:
        with self._lock:
            if self.cooldown.elapsed(self.clock()):
                return ControllerState.STABLE
            return ControllerState.COOLING_DOWN

    @property
    def is_cooling_down(self) -> bool:
        return self.state is ControllerState.COOLING_DOWN

    @property
    def average(self) -> float:
        with self._lock:
            return self.history.average

    def record(self, quality: float, preference: LensType, current_type: Optional[LensType],
               inventory: CameraInventory) -> Optional[LensType]:
        """
        Feed one frame's quality score.

        Args:
            quality: Score in [0, 1], 0.0 for frames without a detection
            preference: Caller's lens preference; only AUTO switches
            current_type: Active lens type
            inventory: Lenses available to switch to

        Returns:
            LensType to switch to, or None
        """
        with self._lock:
            self.last_quality = quality
            self.history.append(quality)

            if preference is not LensType.AUTO or current_type is None:
                return None
            if not self.history.is_full:
                return None

            average = self.history.average
            if average >= self.config.poor_quality_threshold:
                return None

            now = self.clock()
            if not self.cooldown.elapsed(now):
                return None

            logger.info(f"📸 Poor detection quality (avg {average:.2f}, last {quality:.2f}), considering camera switch")
            next_type = select_next(inventory, current_type)
            if next_type == current_type:
                logger.debug("No other lens available to switch to")
                return None

            self.cooldown.mark(now)
            self.switch_timestamps.append(now)
            logger.info(f"📸 Auto-switching to {next_type.display_name} for better detection")
            return next_type

    def lens_changed(self):
        """History from another lens is not comparable."""
        with self._lock:
            self.history.clear()

    def reset(self):
        with self._lock:
            self.history.clear()
            self.cooldown.last_switch = None
            self.last_quality = 0.0
