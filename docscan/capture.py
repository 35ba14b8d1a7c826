"""
Hardware capture session.
The abstract session the camera manager drives (inputs, configuration
blocks, focus, frames, photos) and its OpenCV/V4L2 implementation.
"""
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

import cv2
import numpy as np

from .config import CameraConfig
from .error_handlers import LensConfigurationError
from .geometry import Point
from .lenses import LensDescriptor, LensPosition, LensType

logger = logging.getLogger(__name__)


class AuthorizationStatus(Enum):
    AUTHORIZED = "authorized"
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"


class FocusMode(Enum):
    CONTINUOUS_AUTO = "continuous_auto"
    AUTO = "auto"              # single-shot autofocus


class FocusRange(Enum):
    NONE = "none"
    NEAR = "near"


@dataclass(frozen=True)
class FocusSettings:
    """Focus and exposure configuration applied to a device."""
    focus_mode: Optional[FocusMode] = None
    continuous_auto_exposure: bool = False
    focus_range: FocusRange = FocusRange.NONE

    @classmethod
    def for_lens(cls, lens: LensDescriptor, near_focus: bool = False) -> "FocusSettings":
        """Continuous autofocus preferred, else single-shot; continuous auto exposure."""
        if lens.continuous_autofocus:
            mode = FocusMode.CONTINUOUS_AUTO
        elif lens.single_autofocus:
            mode = FocusMode.AUTO
        else:
            mode = None
        near = near_focus and lens.near_focus_restriction
        return cls(
            focus_mode=mode,
            continuous_auto_exposure=lens.continuous_auto_exposure,
            focus_range=FocusRange.NEAR if near else FocusRange.NONE,
        )


@dataclass
class DeviceInput:
    """An opened lens, ready to be attached to a session."""
    lens: LensDescriptor
    device: Any = None


class CaptureSession(ABC):
    """Hardware session contract used by the camera manager."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...

    @abstractmethod
    def start(self):
        ...

    @abstractmethod
    def stop(self):
        ...

    @abstractmethod
    def begin_configuration(self):
        ...

    @abstractmethod
    def commit_configuration(self):
        ...

    @abstractmethod
    def open_input(self, lens: LensDescriptor) -> DeviceInput:
        """Acquire the device. Raises LensConfigurationError."""

    @abstractmethod
    def can_add_input(self, device_input: DeviceInput) -> bool:
        ...

    @abstractmethod
    def add_input(self, device_input: DeviceInput):
        ...

    @abstractmethod
    def remove_input(self, device_input: DeviceInput):
        ...

    @abstractmethod
    def release_input(self, device_input: DeviceInput):
        """Close a device that is not attached."""

    @abstractmethod
    def configure_device(self, device_input: DeviceInput, settings: FocusSettings):
        """Lock, apply settings, unlock. Raises LensConfigurationError."""

    @abstractmethod
    def set_focus_point(self, device_input: DeviceInput, point: Point) -> bool:
        """Single autofocus and exposure at a point of interest; False if unsupported."""

    @abstractmethod
    def read_frame(self) -> Optional[np.ndarray]:
        ...

    @abstractmethod
    def capture_photo(self) -> Optional[np.ndarray]:
        ...

    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        ...

    @abstractmethod
    def request_access(self) -> bool:
        ...

    def close(self):
        """Release every device the session still holds."""


def device_path(index: int) -> str:
    return f"/dev/video{index}"


def device_exists(index: int) -> bool:
    return os.path.exists(device_path(index))


class OpenCVCaptureSession(CaptureSession):
    """
    Capture session over V4L2 devices opened with OpenCV.
    One VideoCapture per opened lens; exactly one attached at a time.
    """

    def __init__(self, config: Optional[CameraConfig] = None):
        self.config = config or CameraConfig()
        self._active: Optional[DeviceInput] = None
        self._opened: List[DeviceInput] = []
        self._running = False
        self._configuring = False
        self._lock = threading.RLock()
        logger.info("OpenCVCaptureSession created")

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        with self._lock:
            self._running = True
        logger.info("Capture session started")

    def stop(self):
        with self._lock:
            self._running = False
        logger.info("Capture session stopped")

    def begin_configuration(self):
        self._lock.acquire()
        self._configuring = True

    def commit_configuration(self):
        self._configuring = False
        self._lock.release()

    def open_input(self, lens: LensDescriptor) -> DeviceInput:
        index = lens.handle
        if not device_exists(index):
            raise LensConfigurationError(lens.lens_type.value, reason=f"{device_path(index)} not found")

        logger.info(f"Opening {lens.label} at {device_path(index)}")
        camera = cv2.VideoCapture(index, cv2.CAP_V4L2)
        if not camera.isOpened():
            camera.release()
            raise LensConfigurationError(lens.lens_type.value, reason="Failed to open camera device")

        self._configure_stream(camera)
        device_input = DeviceInput(lens=lens, device=camera)
        self._opened.append(device_input)

        actual_width = int(camera.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera opened: {actual_width}x{actual_height} @ {camera.get(cv2.CAP_PROP_FPS)}fps")
        return device_input

    def _configure_stream(self, camera):
        """Apply codec, resolution, frame rate and buffer settings."""
        cfg = self.config

        # Set codec (MJPG for high FPS)
        camera.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*cfg.codec))

        camera.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.width)
        camera.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.height)
        camera.set(cv2.CAP_PROP_FPS, cfg.fps)

        # Minimal buffer for low latency
        camera.set(cv2.CAP_PROP_BUFFERSIZE, cfg.buffer_size)

        logger.debug(f"Camera configured: {cfg.width}x{cfg.height} @ {cfg.fps}fps")

    def can_add_input(self, device_input: DeviceInput) -> bool:
        return (self._active is None
                and device_input.device is not None
                and device_input.device.isOpened())

    def add_input(self, device_input: DeviceInput):
        with self._lock:
            self._active = device_input
        logger.debug(f"Input attached: {device_input.lens.label}")

    def remove_input(self, device_input: DeviceInput):
        with self._lock:
            if self._active is device_input:
                self._active = None
        logger.debug(f"Input detached: {device_input.lens.label}")

    def release_input(self, device_input: DeviceInput):
        with self._lock:
            if self._active is device_input:
                self._active = None
            if device_input.device is not None:
                device_input.device.release()
            if device_input in self._opened:
                self._opened.remove(device_input)
        logger.debug(f"Input released: {device_input.lens.label}")

    def configure_device(self, device_input: DeviceInput, settings: FocusSettings):
        camera = device_input.device
        if camera is None or not camera.isOpened():
            raise LensConfigurationError(device_input.lens.lens_type.value, reason="Device is not open")

        if settings.focus_range is FocusRange.NEAR:
            # No range restriction in V4L2: pin focus to the near end instead
            camera.set(cv2.CAP_PROP_AUTOFOCUS, 0)
            camera.set(cv2.CAP_PROP_FOCUS, self.config.near_focus_position)
        elif settings.focus_mode is not None:
            camera.set(cv2.CAP_PROP_AUTOFOCUS, 1)

        if settings.continuous_auto_exposure:
            # V4L2 aperture-priority mode is continuous auto exposure
            camera.set(cv2.CAP_PROP_AUTO_EXPOSURE, 3)

        logger.info(f"📸 Configured focus settings for {device_input.lens.label}: "
                    f"{settings.focus_mode.value if settings.focus_mode else 'fixed'}, "
                    f"range={settings.focus_range.value}")

    def set_focus_point(self, device_input: DeviceInput, point: Point) -> bool:
        # V4L2 exposes no focus or metering region; re-run the auto loops instead
        camera = device_input.device
        lens = device_input.lens
        if camera is None or not camera.isOpened():
            return False

        applied = False
        if lens.focus_point_of_interest:
            camera.set(cv2.CAP_PROP_AUTOFOCUS, 0)
            camera.set(cv2.CAP_PROP_AUTOFOCUS, 1)
            applied = True
        if lens.exposure_point_of_interest:
            camera.set(cv2.CAP_PROP_AUTO_EXPOSURE, 1)
            camera.set(cv2.CAP_PROP_AUTO_EXPOSURE, 3)
            applied = True

        if applied:
            logger.debug(f"Auto focus/exposure retriggered for point {point}")
        return applied

    def read_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self._running or self._active is None:
                return None
            ret, frame = self._active.device.read()
        if not ret or frame is None:
            return None
        return frame

    def capture_photo(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._active is None:
                return None
            ret, frame = self._active.device.read()
        if not ret or frame is None:
            logger.warning("Photo capture returned no frame")
            return None
        return frame.copy()

    def _device_indices(self) -> List[int]:
        indices = list(self.config.lens_map.values())
        if self.config.default_camera_index is not None:
            indices.append(self.config.default_camera_index)
        return list(dict.fromkeys(indices))

    def authorization_status(self) -> AuthorizationStatus:
        existing = [i for i in self._device_indices() if device_exists(i)]
        if not existing:
            return AuthorizationStatus.NOT_DETERMINED
        if any(os.access(device_path(i), os.R_OK | os.W_OK) for i in existing):
            return AuthorizationStatus.AUTHORIZED
        return AuthorizationStatus.DENIED

    def request_access(self) -> bool:
        # Device permissions cannot be prompted for; only an unreadable device is a denial
        return self.authorization_status() is not AuthorizationStatus.DENIED

    def close(self):
        with self._lock:
            for device_input in list(self._opened):
                if device_input.device is not None:
                    device_input.device.release()
            self._opened.clear()
            self._active = None
            self._running = False
        logger.info("Capture session closed")


class V4L2DeviceProbe:
    """
    Enumerates the lenses named in the configured lens map and probes their
    capabilities through OpenCV properties.
    """

    def __init__(self, config: Optional[CameraConfig] = None):
        self.config = config or CameraConfig()

    def _probe(self, lens_type: LensType, index: int, name: str) -> Optional[LensDescriptor]:
        path = device_path(index)
        if not device_exists(index):
            logger.debug(f"{lens_type.display_name} lens not present ({path})")
            return None

        camera = cv2.VideoCapture(index, cv2.CAP_V4L2)
        try:
            if not camera.isOpened():
                logger.warning(f"Could not open {path} for probing")
                return None
            autofocus = bool(camera.set(cv2.CAP_PROP_AUTOFOCUS, 1))
            manual_focus = bool(camera.set(cv2.CAP_PROP_FOCUS, self.config.near_focus_position))
            auto_exposure = bool(camera.set(cv2.CAP_PROP_AUTO_EXPOSURE, 3))
        finally:
            camera.release()

        return LensDescriptor(
            lens_type=lens_type,
            handle=index,
            name=name,
            position=LensPosition.BACK,
            continuous_autofocus=autofocus,
            single_autofocus=autofocus,
            near_focus_restriction=manual_focus,
            focus_point_of_interest=autofocus,
            exposure_point_of_interest=auto_exposure,
            continuous_auto_exposure=auto_exposure,
        )

    def enumerate_lenses(self) -> List[LensDescriptor]:
        lenses = []
        for lens_type, index in self.config.lens_map.items():
            lens = self._probe(lens_type, index, f"{lens_type.display_name} {device_path(index)}")
            if lens is not None:
                lenses.append(lens)
        return lenses

    def default_device(self) -> Optional[LensDescriptor]:
        index = self.config.default_camera_index
        if index is None:
            return None
        # Untagged devices are treated as wide
        return self._probe(LensType.WIDE, index, f"System default {device_path(index)}")
