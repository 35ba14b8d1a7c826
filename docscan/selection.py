"""
Camera selection policy.
Chooses the initial lens for a session and the next lens to try when the
adaptive controller gives up on the current one.
"""
import logging
from typing import Optional

from .lenses import PRIORITY_ORDER, CameraInventory, LensDescriptor, LensType, evaluate

logger = logging.getLogger(__name__)


# Minimum suitability per lens type when the preference is auto
AUTO_THRESHOLDS = (
    (LensType.WIDE, 0.7),          # most reliable for general scanning
    (LensType.ULTRA_WIDE, 0.6),    # wider field of view, close subjects
    (LensType.TELEPHOTO, 0.5),     # distant or detailed scanning
)


def select_initial(inventory: CameraInventory, preference: LensType) -> Optional[LensDescriptor]:
    """
    Pick the lens to start a session with.

    Args:
        inventory: Discovered lenses
        preference: A specific lens type, or LensType.AUTO

    Returns:
        LensDescriptor or None if neither a lens nor a system default exists
    """
    if preference is LensType.AUTO:
        return _select_for_scanning(inventory)
    return _select_specific(inventory, preference)


def _select_specific(inventory: CameraInventory, lens_type: LensType) -> Optional[LensDescriptor]:
    lens = inventory.get(lens_type)
    if lens is not None:
        logger.info(f"📸 Selected {lens_type.display_name} camera")
        return lens

    wide = inventory.get(LensType.WIDE)
    if wide is not None:
        logger.info(f"📸 Fallback to Wide camera (requested {lens_type.display_name} not available)")
        return wide

    if inventory.system_default is not None:
        logger.info("📸 Fallback to system default camera")
    return inventory.system_default


def _select_for_scanning(inventory: CameraInventory) -> Optional[LensDescriptor]:
    for lens_type, threshold in AUTO_THRESHOLDS:
        lens = inventory.get(lens_type)
        if lens is None:
            continue
        suitability = evaluate(lens)
        if suitability >= threshold:
            logger.info(f"📸 Auto-selected {lens_type.display_name} camera (suitability {suitability:.2f})")
            return lens
        logger.debug(f"{lens_type.display_name} suitability {suitability:.2f} below {threshold}")

    for lens_type in PRIORITY_ORDER:
        lens = inventory.get(lens_type)
        if lens is not None:
            logger.info(f"📸 Auto-selected {lens_type.display_name} camera (fallback)")
            return lens

    # Last resort
    if inventory.system_default is not None:
        logger.info("📸 Auto-selected system default camera")
    return inventory.system_default


def select_next(inventory: CameraInventory, current_type: LensType) -> LensType:
    """
    Next present lens after `current_type` in the ring wide -> ultra-wide -> telephoto.

    Absent lenses are skipped. Returns `current_type` when no other lens is
    present. A current type outside the ring starts the search at the ring head.
    """
    ring = list(PRIORITY_ORDER)
    if current_type in ring:
        start = ring.index(current_type) + 1
    else:
        start = 0

    for offset in range(len(ring)):
        candidate = ring[(start + offset) % len(ring)]
        if candidate == current_type:
            break
        if candidate in inventory:
            return candidate
    return current_type
