"""
Detection session loop.
Pulls frames from the capture session, runs the shape detector off the
frame thread, scores every result, feeds the adaptive switch controller and
the stabilization funnel, and reports to the presentation delegate.
"""
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, Protocol

import numpy as np

from .camera_manager import CameraManager, SwitchOutcome
from .capture import AuthorizationStatus, CaptureSession, OpenCVCaptureSession, V4L2DeviceProbe
from .config import ScannerConfig
from .controller import AdaptiveSwitchController
from .detector import ContourRectangleDetector, ShapeDetector
from .error_handlers import (AuthorizationError, CaptureError, InputDeviceError, ScannerError,
                             handle_error)
from .funnel import FunnelDecision, PassThroughFunnel, RectangleFunnel
from .geometry import CoordinateSpace, Point, Quadrilateral, Size
from .lenses import CameraInventory, DeviceProbe, LensType
from .quality import DetectionQualityScore, QualityScorer
from .transforms import compose_display_transform, scale_to_image

logger = logging.getLogger(__name__)


class ScannerDelegate(Protocol):
    """Presentation callbacks, dispatched off the detection worker."""

    def on_detection_update(self, quad: Optional[Quadrilateral], frame_size: Size) -> None:
        ...

    def on_capture_started(self) -> None:
        ...

    def on_capture_completed(self, image: np.ndarray, quad: Optional[Quadrilateral]) -> None:
        ...

    def on_error(self, error: ScannerError) -> None:
        ...


class DetectionSession:
    """
    Per-frame detection, quality scoring and adaptive lens control.

    Frames that arrive while stopped, while a capture is being processed,
    during a lens switch or while a detection is in flight are dropped.
    """

    def __init__(self, config: Optional[ScannerConfig] = None,
                 detector: Optional[ShapeDetector] = None,
                 funnel: Optional[RectangleFunnel] = None,
                 capture_session: Optional[CaptureSession] = None,
                 probe: Optional[DeviceProbe] = None,
                 inventory: Optional[CameraInventory] = None,
                 delegate: Optional[ScannerDelegate] = None,
                 detection_executor: Optional[Executor] = None,
                 control_executor: Optional[Executor] = None,
                 delegate_executor: Optional[Executor] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize a detection session

        Args:
            config: Scanner configuration (defaults everywhere if omitted)
            detector: Shape detector, ContourRectangleDetector by default
            funnel: Stabilization funnel, PassThroughFunnel by default
            capture_session: Hardware session, OpenCVCaptureSession by default
            probe: Lens enumerator, V4L2DeviceProbe by default
            inventory: Pre-built inventory; skips discovery when given
            delegate: Presentation callbacks
            detection_executor, control_executor, delegate_executor:
                Workers for detection, lens switches and callbacks
            clock: Monotonic clock for the switch cooldown
        """
        self.config = (config or ScannerConfig()).validate()
        self.detector = detector or ContourRectangleDetector()
        self.funnel = funnel or PassThroughFunnel()
        self.delegate = delegate

        camera_config = self.config.camera
        self.capture_session = capture_session or OpenCVCaptureSession(camera_config)
        if probe is None and inventory is None:
            probe = V4L2DeviceProbe(camera_config)

        self.controller = AdaptiveSwitchController(self.config.controller, clock)
        self.scorer = QualityScorer(self.config.detector, self.config.optimal_area_range)
        self.camera = CameraManager(self.capture_session, self.controller, camera_config,
                                    probe=probe, inventory=inventory)

        self._detection_executor = detection_executor
        self._control_executor = control_executor
        self._delegate_executor = delegate_executor
        self._owned_executors = []
        self._open_executors()

        self.view_size: Optional[Size] = None
        self.auto_scan_enabled = self.config.auto_scan_enabled
        self.last_score: Optional[DetectionQualityScore] = None

        self._running = False
        self._suspended = False
        self._editing = False
        self._detection_in_flight = False
        self._no_rectangle_count = 0
        self._displayed_quad: Optional[Quadrilateral] = None
        self._displayed_frame_size: Optional[Size] = None
        self._fatal_error: Optional[ScannerError] = None
        self._pending_switch: Optional[Future] = None

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._frame_thread: Optional[threading.Thread] = None

        logger.info("DetectionSession initialized")

    def _own(self, executor: Executor) -> Executor:
        self._owned_executors.append(executor)
        return executor

    def _open_executors(self):
        """Create the workers this session owns; stop() shuts them down."""
        if self._owned_executors:
            return
        self.detection_executor = self._detection_executor or self._own(
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="docscan-detect"))
        self.control_executor = self._control_executor or self._own(
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="docscan-control"))
        self.delegate_executor = self._delegate_executor or self._own(
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="docscan-delegate"))

    def _reset_state(self):
        """Per-run state starts fresh on every start()."""
        self._suspended = False
        self._editing = False
        self._no_rectangle_count = 0
        self._displayed_quad = None
        self._displayed_frame_size = None
        self._pending_switch = None
        self.last_score = None
        self.controller.reset()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_switching(self) -> bool:
        return self.camera.switching.is_set()

    def start(self, run_frame_loop: bool = True) -> bool:
        """
        Check authorization, attach the initial lens and start detecting.

        Args:
            run_frame_loop: Start the frame producer thread. Disable to feed
                frames through process_frame() directly.

        Returns:
            bool: True if detection is running
        """
        with self._lock:
            if self._running:
                return True
            if self._fatal_error is not None:
                logger.warning(f"Session already failed: {self._fatal_error.error_code}")
                return False

            self._open_executors()
            self._reset_state()

            status = self.capture_session.authorization_status()
            if status is AuthorizationStatus.NOT_DETERMINED:
                logger.info("Requesting camera access")
                if not self.capture_session.request_access():
                    status = AuthorizationStatus.DENIED
            if status is AuthorizationStatus.DENIED:
                self._fail(AuthorizationError(self.camera.current_camera_type.value))
                return False

            try:
                self.camera.setup()
            except InputDeviceError as e:
                self._fail(e)
                return False

            self.capture_session.start()
            self._running = True
            self._stop_event.clear()

        if run_frame_loop:
            self._frame_thread = threading.Thread(target=self._frame_loop, name="docscan-frames", daemon=True)
            self._frame_thread.start()

        logger.info("✅ Detection started")
        return True

    def stop(self):
        """Stop accepting frames, finish a pending switch and release the hardware."""
        with self._lock:
            was_running = self._running
            self._running = False
            self._stop_event.set()
            pending = self._pending_switch

        if self._frame_thread is not None and self._frame_thread is not threading.current_thread():
            self._frame_thread.join(timeout=2.0)
        self._frame_thread = None

        # A dispatched switch completes, rollback included
        if pending is not None:
            try:
                pending.result()
            except ScannerError:
                pass    # already reported through on_error

        # In-flight detections and callbacks finish before the hardware goes
        for executor in self._owned_executors:
            executor.shutdown(wait=True)
        self._owned_executors.clear()
        self.camera.teardown()

        if was_running:
            logger.info("Detection stopped")

    def _frame_loop(self):
        logger.debug("Frame loop started")
        while not self._stop_event.is_set():
            frame = self.capture_session.read_frame()
            if frame is None:
                self._stop_event.wait(0.01)
                continue
            self.process_frame(frame)
        logger.debug("Frame loop exited")

    def _fail(self, error: ScannerError):
        """Fatal error: stop detecting and report it once."""
        self._running = False
        self._stop_event.set()
        self._fatal_error = error
        handle_error(error, "❌ Scanning session failed")
        self._dispatch('on_error', error)

    # ------------------------------------------------------------------ #
    # Per-frame processing
    # ------------------------------------------------------------------ #

    def process_frame(self, frame: np.ndarray) -> bool:
        """
        Submit one frame for detection.

        Returns:
            bool: False if the frame was dropped
        """
        with self._lock:
            if (not self._running or self._suspended or self.is_switching
                    or self._detection_in_flight):
                return False
            self._detection_in_flight = True

        height, width = frame.shape[:2]
        frame_size = Size(width, height)
        try:
            future = self.detection_executor.submit(self.detector.detect, frame, self.config.detector)
        except RuntimeError as e:
            # Executor shut down underneath us
            logger.debug(f"Detection not submitted: {e}")
            with self._lock:
                self._detection_in_flight = False
            return False
        future.add_done_callback(lambda f: self._on_detection_done(f, frame_size))
        return True

    def _on_detection_done(self, future: Future, frame_size: Size):
        try:
            quad = future.result()
        except Exception as e:
            # Transient: treated as nothing detected
            logger.debug(f"Detector failed: {e}")
            quad = None

        try:
            self._handle_result(quad, frame_size)
        finally:
            with self._lock:
                self._detection_in_flight = False

    def _handle_result(self, quad: Optional[Quadrilateral], frame_size: Size):
        capture = False
        with self._lock:
            if not self._running or self.is_switching:
                logger.debug("Dropping detection result")
                return

            if quad is not None and quad.space is CoordinateSpace.DETECTOR:
                quad = quad.to_cartesian(frame_size.height)

            if quad is None:
                self._handle_no_detection(frame_size)
            else:
                capture = self._handle_detection(quad, frame_size)

        if capture:
            self._auto_capture()

    def _feed_controller(self, quality: float):
        target = self.controller.record(quality, self.camera.preference,
                                        self.camera.state.active_type, self.camera.inventory)
        if target is not None:
            self._request_switch(target)

    def _handle_detection(self, quad: Quadrilateral, frame_size: Size) -> bool:
        """Returns True when auto-scan should capture."""
        score = self.scorer.score(quad, frame_size)
        self.last_score = score
        logger.debug(f"Detection quality {score.score:.2f} (area {score.relative_area:.2f})")
        self._feed_controller(score.score)
        self._no_rectangle_count = 0
        if self.is_switching:
            # The overlay and any capture belong to the lens being replaced
            return False

        result = self.funnel.add(quad, self._displayed_quad)
        if result is None:
            return False
        decision, shown = result
        if decision is FunnelDecision.IGNORE:
            return False

        self._displayed_quad = shown
        self._displayed_frame_size = frame_size
        self._dispatch('on_detection_update', self._to_display(shown, frame_size), frame_size)

        return (decision is FunnelDecision.SHOW_AND_AUTO_SCAN and self.auto_scan_enabled
                and not self._suspended and not self._editing)

    def _handle_no_detection(self, frame_size: Size):
        self._feed_controller(0.0)
        if self.is_switching:
            return
        self._no_rectangle_count += 1

        if self._no_rectangle_count > self.config.no_rectangle_threshold:
            # Auto-scan passes restart with the next detection
            self.funnel.reset_pass_count()
            self._displayed_quad = None
            self._displayed_frame_size = None
            self._dispatch('on_detection_update', None, frame_size)

    def _to_display(self, quad: Quadrilateral, frame_size: Size) -> Quadrilateral:
        if self.view_size is None:
            return quad
        return compose_display_transform(quad, frame_size, self.view_size)

    def _dispatch(self, callback: str, *args):
        if self.delegate is None:
            return
        try:
            self.delegate_executor.submit(getattr(self.delegate, callback), *args)
        except RuntimeError as e:
            logger.debug(f"Delegate callback {callback} not dispatched: {e}")

    # ------------------------------------------------------------------ #
    # Lens switching
    # ------------------------------------------------------------------ #

    def _request_switch(self, lens_type: LensType):
        # Set before submitting so results produced meanwhile are dropped
        self.camera.switching.set()
        self._pending_switch = self.control_executor.submit(self._run_switch, lens_type, False)

    def _run_switch(self, lens_type: LensType, explicit: bool) -> SwitchOutcome:
        try:
            if explicit:
                outcome = self.camera.switch_camera(lens_type)
            else:
                outcome = self.camera.auto_switch(lens_type)
        except InputDeviceError as e:
            with self._lock:
                self._fail(e)
            raise
        finally:
            self.camera.switching.clear()

        if outcome is SwitchOutcome.ROLLED_BACK:
            logger.warning(f"Switch to {lens_type.display_name} rolled back")
        return outcome

    def switch_camera(self, lens_type: LensType) -> Future:
        """Switch to `lens_type` (or back to AUTO) on the control worker."""
        with self._lock:
            self._pending_switch = self.control_executor.submit(self._run_switch, lens_type, True)
            return self._pending_switch

    # ------------------------------------------------------------------ #
    # Capture
    # ------------------------------------------------------------------ #

    def _auto_capture(self):
        try:
            self.capture_photo()
        except CaptureError as e:
            handle_error(e)
            self._dispatch('on_error', e)

    def capture_photo(self) -> np.ndarray:
        """
        Capture a still image of the current frame.

        Raises:
            CaptureError: The session produced no image; detection continues
        """
        image = self.capture_session.capture_photo()
        if image is None:
            raise CaptureError("Capture session returned no image")

        with self._lock:
            self._suspended = True
            self.funnel.reset_pass_count()
            displayed, displayed_size = self._displayed_quad, self._displayed_frame_size
            self._editing = True

        self._dispatch('on_capture_started')

        quad = None
        if displayed is not None and displayed_size is not None:
            height, width = image.shape[:2]
            quad = scale_to_image(displayed, displayed_size, Size(width, height))

        logger.info(f"📸 Photo captured ({image.shape[1]}x{image.shape[0]})")
        self._dispatch('on_capture_completed', image, quad)
        return image

    def resume_detection(self):
        """Re-arm detection after a capture has been handled."""
        with self._lock:
            self._suspended = False
            self._editing = False
            self._no_rectangle_count = 0
        logger.info("Detection resumed")

    # ------------------------------------------------------------------ #
    # Caller overrides
    # ------------------------------------------------------------------ #

    def set_view_size(self, width: float, height: float):
        with self._lock:
            self.view_size = Size(width, height)

    def set_auto_scan(self, enabled: bool):
        with self._lock:
            self.auto_scan_enabled = enabled

    def set_editing(self, editing: bool):
        with self._lock:
            self._editing = editing

    def set_focus_point(self, point: Point) -> bool:
        return self.camera.set_focus_point(point)

    def reset_focus_to_auto(self) -> bool:
        return self.camera.reset_focus_to_auto()

    def toggle_macro_mode(self) -> bool:
        return self.camera.toggle_macro_mode()

    @property
    def available_camera_types(self):
        return self.camera.available_camera_types

    @property
    def current_camera_type(self) -> LensType:
        return self.camera.current_camera_type

    def status(self):
        """Diagnostics snapshot."""
        with self._lock:
            return {
                'running': self._running,
                'suspended': self._suspended,
                'switching': self.is_switching,
                'camera_type': self.current_camera_type.value,
                'preference': self.camera.preference.value,
                'macro_mode': self.camera.state.macro_mode,
                'quality_average': round(self.controller.average, 4),
                'last_quality': self.last_score.to_dict() if self.last_score else None,
                'cooling_down': self.controller.is_cooling_down,
                'no_rectangle_count': self._no_rectangle_count,
                'error': self._fatal_error.to_dict() if self._fatal_error else None,
            }
