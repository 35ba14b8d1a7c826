"""
Stabilization funnel interface.
The funnel sees every detected quadrilateral together with the one on
screen and decides what to display and when auto-scan is armed.
"""
from enum import Enum
from typing import Optional, Protocol, Tuple

from .geometry import Quadrilateral


class FunnelDecision(Enum):
    SHOW = "show"
    SHOW_AND_AUTO_SCAN = "show_and_auto_scan"
    IGNORE = "ignore"


FunnelResult = Tuple[FunnelDecision, Quadrilateral]


class RectangleFunnel(Protocol):
    """Multi-frame stabilization collaborator."""

    auto_scan_pass_count: int

    def add(self, candidate: Quadrilateral,
            currently_displayed: Optional[Quadrilateral]) -> Optional[FunnelResult]:
        """Feed a candidate; returns a decision and the quadrilateral to show, or None."""
        ...

    def reset_pass_count(self) -> None:
        ...


class PassThroughFunnel:
    """Shows every candidate as-is and never arms auto-scan."""

    def __init__(self):
        self.auto_scan_pass_count = 0

    def add(self, candidate: Quadrilateral,
            currently_displayed: Optional[Quadrilateral]) -> Optional[FunnelResult]:
        return FunnelDecision.SHOW, candidate

    def reset_pass_count(self) -> None:
        self.auto_scan_pass_count = 0
