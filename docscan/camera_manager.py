"""
Camera manager.
Owns the lens inventory, the selection state and the active device input.
Every lens change goes through one two-phase transaction: acquire the new
input, or release it and re-attach the previous one.
"""
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .capture import CaptureSession, DeviceInput, FocusSettings
from .config import CameraConfig
from .controller import AdaptiveSwitchController
from .error_handlers import LensConfigurationError, NoCameraAvailableError, SwitchRollbackError
from .geometry import Point
from .lenses import CameraInventory, DeviceProbe, LensDescriptor, LensType, discover
from .selection import select_initial

logger = logging.getLogger(__name__)


class SwitchOutcome(Enum):
    SWITCHED = "switched"
    ROLLED_BACK = "rolled_back"
    UNCHANGED = "unchanged"


@dataclass
class SelectionState:
    active_type: Optional[LensType] = None
    preference: LensType = LensType.AUTO
    macro_mode: bool = False
    macro_explicitly_disabled: bool = False


class CameraManager:
    """
    Lens selection and reconfiguration for one capture session.
    Reconfigurations are serialized; `switching` is set while one runs.
    """

    def __init__(self, capture_session: CaptureSession,
                 controller: AdaptiveSwitchController,
                 config: Optional[CameraConfig] = None,
                 probe: Optional[DeviceProbe] = None,
                 inventory: Optional[CameraInventory] = None):
        self.session = capture_session
        self.controller = controller
        self.config = config or CameraConfig()
        self.probe = probe
        self.inventory = inventory
        self.state = SelectionState(
            preference=self.config.preferred_camera_type,
            macro_mode=self.config.macro_mode_enabled,
        )
        self.current_input: Optional[DeviceInput] = None
        self.switching = threading.Event()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Setup / teardown
    # ------------------------------------------------------------------ #

    def setup(self) -> LensDescriptor:
        """
        Discover lenses and attach the initial one.

        Raises:
            NoCameraAvailableError: No lens and no system default
            LensConfigurationError: The selected lens could not be configured
        """
        with self._lock:
            if self.probe is not None:
                # Devices may have been plugged or unplugged since the last start
                self.inventory = discover(self.probe)
            elif self.inventory is None:
                raise NoCameraAvailableError(self.state.preference.value)

            lens = select_initial(self.inventory, self.state.preference)
            if lens is None:
                raise NoCameraAvailableError(self.state.preference.value)

            self.session.begin_configuration()
            try:
                self.current_input = self._acquire(lens)
                self.state.active_type = lens.lens_type
            finally:
                self.session.commit_configuration()

            logger.info(f"Camera ready: {lens.label}")
            return lens

    def teardown(self):
        with self._lock:
            if self.session.is_running:
                self.session.stop()
            if self.current_input is not None:
                self.session.release_input(self.current_input)
                self.current_input = None
            self.session.close()
            self.state.active_type = None
            logger.info("Camera torn down")

    # ------------------------------------------------------------------ #
    # Switching
    # ------------------------------------------------------------------ #

    def switch_camera(self, new_type: LensType) -> SwitchOutcome:
        """Caller-requested switch; also changes the preference."""
        with self._lock:
            if new_type == self.state.preference:
                return SwitchOutcome.UNCHANGED
            logger.info(f"📸 Switching camera from {self.state.preference.display_name} to {new_type.display_name}")
            self.state.preference = new_type
            target = select_initial(self.inventory, new_type) if self.inventory is not None else None
            return self._transition(target, new_type)

    def auto_switch(self, lens_type: LensType) -> SwitchOutcome:
        """Controller-requested switch; the preference stays auto."""
        with self._lock:
            target = self.inventory.get(lens_type) if self.inventory is not None else None
            return self._transition(target, lens_type)

    def _transition(self, target: Optional[LensDescriptor], requested: LensType) -> SwitchOutcome:
        previous = self.current_input
        if target is not None and previous is not None and target == previous.lens:
            return SwitchOutcome.UNCHANGED

        self.switching.set()
        was_running = self.session.is_running
        if was_running:
            self.session.stop()

        self.session.begin_configuration()
        try:
            if previous is not None:
                self.session.remove_input(previous)

            try:
                if target is None:
                    raise LensConfigurationError(requested.value, reason="Lens not available")
                new_input = self._acquire(target)
            except LensConfigurationError as e:
                logger.warning(f"❌ Failed to switch camera: {e.details.get('reason')}")
                self._restore(previous, requested, e)
                return SwitchOutcome.ROLLED_BACK

            if previous is not None:
                self.session.release_input(previous)
            self.current_input = new_input
            self.state.active_type = target.lens_type
            self.controller.lens_changed()
            logger.info(f"✅ Successfully switched to {target.lens_type.display_name} camera")
            return SwitchOutcome.SWITCHED
        finally:
            self.session.commit_configuration()
            if was_running:
                self.session.start()
            self.switching.clear()

    def _acquire(self, lens: LensDescriptor) -> DeviceInput:
        """
        Phase one: open, configure and attach `lens`.
        Releases whatever it opened before raising LensConfigurationError.
        """
        device_input = self.session.open_input(lens)
        try:
            if not self.session.can_add_input(device_input):
                raise LensConfigurationError(lens.lens_type.value, reason="Session cannot add input")
            self.session.configure_device(device_input, self._focus_settings(lens))
            self.session.add_input(device_input)
        except LensConfigurationError:
            self.session.release_input(device_input)
            raise
        return device_input

    def _restore(self, previous: Optional[DeviceInput], requested: LensType, cause: LensConfigurationError):
        """Phase two: re-attach the previous input or fail as an input-device error."""
        from_type = previous.lens.lens_type.value if previous is not None else None
        if previous is None or not self.session.can_add_input(previous):
            raise SwitchRollbackError(from_type, requested.value, reason=str(cause))
        self.session.add_input(previous)
        logger.info(f"Restored {previous.lens.label} after failed switch")

    # ------------------------------------------------------------------ #
    # Focus and macro
    # ------------------------------------------------------------------ #

    def should_enable_macro(self, lens: LensDescriptor) -> bool:
        if self.state.macro_mode:
            return True
        if self.state.macro_explicitly_disabled:
            return False

        # Poor recent detections suggest the document is too close
        if len(self.controller.history) and self.controller.average < self.controller.config.poor_quality_threshold:
            logger.info("📸 Auto-enabling macro mode due to poor detection quality")
            return True

        if lens.lens_type is LensType.TELEPHOTO:
            logger.info("📸 Auto-enabling macro mode for telephoto camera")
            return True
        return False

    def _focus_settings(self, lens: LensDescriptor) -> FocusSettings:
        return FocusSettings.for_lens(lens, near_focus=self.should_enable_macro(lens))

    def toggle_macro_mode(self) -> bool:
        """Flip macro mode and reconfigure the active lens. Returns the new state."""
        with self._lock:
            self.state.macro_mode = not self.state.macro_mode
            self.state.macro_explicitly_disabled = not self.state.macro_mode

            if self.current_input is not None:
                try:
                    self.session.configure_device(self.current_input, self._focus_settings(self.current_input.lens))
                except LensConfigurationError as e:
                    logger.warning(f"Failed to toggle macro mode: {e.message}")
            logger.info(f"📸 Macro mode {'enabled' if self.state.macro_mode else 'disabled'}")
            return self.state.macro_mode

    def set_focus_point(self, point: Point) -> bool:
        with self._lock:
            if self.current_input is None:
                logger.warning("❌ No current device for focus")
                return False
            lens = self.current_input.lens
            if not (lens.focus_point_of_interest or lens.exposure_point_of_interest):
                logger.debug(f"{lens.label} has no focus or exposure point of interest")
                return False
            if self.session.set_focus_point(self.current_input, point):
                logger.info(f"📸 Focus point set to {point}")
                return True
            logger.debug("Focus point of interest not supported by this device")
            return False

    def reset_focus_to_auto(self) -> bool:
        with self._lock:
            if self.current_input is None:
                logger.warning("❌ No current device for focus reset")
                return False
            try:
                self.session.configure_device(self.current_input, self._focus_settings(self.current_input.lens))
            except LensConfigurationError as e:
                logger.warning(f"❌ Failed to reset focus: {e.message}")
                return False
            logger.info("📸 Focus reset to auto")
            return True

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    @property
    def available_camera_types(self) -> List[LensType]:
        return self.inventory.available_types if self.inventory is not None else []

    @property
    def current_camera_type(self) -> LensType:
        return self.state.active_type or LensType.WIDE

    @property
    def preference(self) -> LensType:
        return self.state.preference
