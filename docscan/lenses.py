"""
Camera inventory and lens suitability.
Lenses are immutable descriptors indexed by their LensType tag; the tag is
assigned once at discovery time.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class LensType(Enum):
    WIDE = "wide"
    ULTRA_WIDE = "ultra_wide"
    TELEPHOTO = "telephoto"
    AUTO = "auto"           # selection preference only, never a physical lens

    @property
    def display_name(self) -> str:
        return {
            LensType.WIDE: "Wide",
            LensType.ULTRA_WIDE: "Ultra Wide",
            LensType.TELEPHOTO: "Telephoto",
            LensType.AUTO: "Auto",
        }[self]


# Fixed priority order, also the ring used for runtime switching
PRIORITY_ORDER = (LensType.WIDE, LensType.ULTRA_WIDE, LensType.TELEPHOTO)


class LensPosition(Enum):
    BACK = "back"
    FRONT = "front"
    UNSPECIFIED = "unspecified"


@dataclass(frozen=True)
class LensDescriptor:
    """Static description of one physical lens."""
    lens_type: LensType
    handle: Any                          # opaque device handle (V4L2 index for OpenCV)
    name: str = ""
    position: LensPosition = LensPosition.BACK
    continuous_autofocus: bool = False
    single_autofocus: bool = False
    near_focus_restriction: bool = False
    stabilization: bool = False
    focus_point_of_interest: bool = False
    exposure_point_of_interest: bool = False
    continuous_auto_exposure: bool = False

    @property
    def label(self) -> str:
        return self.name or f"{self.lens_type.display_name} ({self.handle})"


class DeviceProbe(Protocol):
    """Enumerates hardware; implemented by capture backends."""

    def enumerate_lenses(self) -> List[LensDescriptor]:
        ...

    def default_device(self) -> Optional[LensDescriptor]:
        ...


class CameraInventory:
    """
    Lenses available for this session, at most one per lens type,
    plus the system default device used as a last resort.
    """

    def __init__(self, lenses: Optional[Dict[LensType, LensDescriptor]] = None,
                 system_default: Optional[LensDescriptor] = None,
                 probe: Optional[DeviceProbe] = None):
        self._lenses: Dict[LensType, LensDescriptor] = dict(lenses or {})
        self.system_default = system_default
        self._probe = probe

    @classmethod
    def from_lenses(cls, lenses: Iterable[LensDescriptor],
                    system_default: Optional[LensDescriptor] = None) -> "CameraInventory":
        inventory = cls(system_default=system_default)
        inventory._fill(lenses)
        return inventory

    def _fill(self, lenses: Iterable[LensDescriptor]):
        self._lenses.clear()
        for lens in lenses:
            if lens.position is LensPosition.FRONT:
                continue
            if lens.lens_type is LensType.AUTO:
                logger.warning(f"Ignoring lens {lens.label}: 'auto' is not a lens type")
                continue
            # First descriptor per category wins
            self._lenses.setdefault(lens.lens_type, lens)

    def refresh(self) -> "CameraInventory":
        """Re-enumerate hardware through the probe this inventory was discovered with."""
        if self._probe is None:
            return self
        self._fill(self._probe.enumerate_lenses())
        self.system_default = self._probe.default_device()
        logger.info(f"📸 Available cameras: {[t.value for t in self.available_types]}")
        return self

    def get(self, lens_type: LensType) -> Optional[LensDescriptor]:
        return self._lenses.get(lens_type)

    @property
    def available_types(self) -> List[LensType]:
        return sorted(self._lenses, key=lambda t: t.display_name)

    def __contains__(self, lens_type) -> bool:
        return lens_type in self._lenses

    def __len__(self) -> int:
        return len(self._lenses)

    def __iter__(self):
        return iter(self._lenses.values())

    def __repr__(self):
        return f"CameraInventory({[t.value for t in self._lenses]}, default={self.system_default is not None})"


def discover(probe: DeviceProbe) -> CameraInventory:
    """
    Snapshot the back-facing lenses the probe can see.
    Absent lenses are simply missing from the inventory.
    """
    inventory = CameraInventory(probe=probe)
    return inventory.refresh()


# Lens-type bonus used by evaluate()
LENS_TYPE_BONUS = {
    LensType.WIDE: 0.1,         # Standard good choice
    LensType.ULTRA_WIDE: 0.05,  # Large documents, some distortion
    LensType.TELEPHOTO: 0.05,   # Detail, narrow field of view
}


def evaluate(lens: LensDescriptor) -> float:
    """
    Score a lens's fitness for document scanning from its static capabilities.

    Returns:
        float: Score in [0, 1]
    """
    score = 0.5
    if lens.continuous_autofocus:
        score += 0.2
    if lens.near_focus_restriction:
        score += 0.1
    if lens.stabilization:
        score += 0.1
    score += LENS_TYPE_BONUS.get(lens.lens_type, 0.0)
    return min(score, 1.0)
