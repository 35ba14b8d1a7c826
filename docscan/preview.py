"""
Live preview window.
Drives a DetectionSession from an OpenCV window and draws the overlay it
reports. Keys: q quit, c capture, r resume, m macro, f refocus,
a/w/u/t lens preference (auto, wide, ultra wide, telephoto).
"""
import logging
import threading
import time
from typing import Optional

import cv2
import numpy as np

from .error_handlers import CaptureError, ScannerError
from .geometry import Quadrilateral, Size
from .lenses import LensType
from .session import DetectionSession

logger = logging.getLogger(__name__)

LENS_KEYS = {
    ord('a'): LensType.AUTO,
    ord('w'): LensType.WIDE,
    ord('u'): LensType.ULTRA_WIDE,
    ord('t'): LensType.TELEPHOTO,
}


class PreviewDelegate:
    """Keeps the latest overlay and capture for the preview loop."""

    def __init__(self):
        self.quad: Optional[Quadrilateral] = None
        self.captured: Optional[np.ndarray] = None
        self.error: Optional[ScannerError] = None
        self._lock = threading.Lock()

    def on_detection_update(self, quad, frame_size):
        with self._lock:
            self.quad = quad

    def on_capture_started(self):
        logger.info("Capturing...")

    def on_capture_completed(self, image, quad):
        with self._lock:
            self.captured = image
        if quad is not None:
            logger.info(f"Captured document corners: {quad.to_dict()['points']}")

    def on_error(self, error):
        with self._lock:
            self.error = error

    def snapshot(self):
        with self._lock:
            return self.quad, self.captured, self.error


def fill_view(frame: np.ndarray, view_size: Size) -> np.ndarray:
    """Rotate a landscape frame a quarter turn and aspect-fill it into the view."""
    rotated = cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
    h, w = rotated.shape[:2]
    scale = max(view_size.width / w, view_size.height / h)
    resized = cv2.resize(rotated, (int(round(w * scale)), int(round(h * scale))))

    vw, vh = int(view_size.width), int(view_size.height)
    x0 = max(0, (resized.shape[1] - vw) // 2)
    y0 = max(0, (resized.shape[0] - vh) // 2)
    return resized[y0:y0 + vh, x0:x0 + vw]


def draw_overlay(image: np.ndarray, quad: Optional[Quadrilateral], status_text: str) -> np.ndarray:
    overlay_frame = image.copy()

    if quad is not None:
        contour = quad.as_array().round().astype(np.int32).reshape(-1, 1, 2)

        # Draw thick green contour
        cv2.polylines(overlay_frame, [contour], True, (0, 255, 0), 4)

        for point in contour.reshape(-1, 2):
            cv2.circle(overlay_frame, tuple(int(v) for v in point), 10, (0, 255, 0), -1)
            cv2.circle(overlay_frame, tuple(int(v) for v in point), 10, (255, 255, 255), 2)

        overlay = overlay_frame.copy()
        cv2.fillPoly(overlay, [contour], (0, 255, 0))
        cv2.addWeighted(overlay, 0.1, overlay_frame, 0.9, 0, overlay_frame)

    text_size = cv2.getTextSize(status_text, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)[0]
    cv2.rectangle(overlay_frame, (10, 10), (text_size[0] + 30, 45), (50, 50, 50), -1)
    cv2.putText(overlay_frame, status_text, (20, 35),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)
    return overlay_frame


def run_preview(session: DetectionSession, window_name: str = "docscan") -> int:
    """
    Run the preview until 'q' is pressed or the session fails.

    Returns:
        int: Process exit code
    """
    delegate = PreviewDelegate()
    session.delegate = delegate

    if not session.start(run_frame_loop=False):
        _, _, error = delegate.snapshot()
        logger.error(f"Could not start scanning: {error.message if error else 'unknown error'}")
        return 1

    fps, frame_count, fps_time = 0, 0, time.time()
    try:
        while True:
            frame = session.capture_session.read_frame()
            if frame is None:
                if not session.is_running:
                    break
                if cv2.waitKey(10) & 0xFF == ord('q'):
                    break
                continue

            session.process_frame(frame)
            quad, captured, error = delegate.snapshot()
            if error is not None and not session.is_running:
                logger.error(f"Scanning stopped: {error.message}")
                break

            view = fill_view(frame, session.view_size) if session.view_size else frame

            frame_count += 1
            if time.time() - fps_time >= 1.0:
                fps, frame_count, fps_time = frame_count, 0, time.time()

            status = session.status()
            status_text = (f"FPS: {fps} | {status['camera_type']} ({status['preference']}) | "
                           f"quality {status['quality_average']:.2f}"
                           f"{' | MACRO' if status['macro_mode'] else ''}")
            cv2.imshow(window_name, draw_overlay(view, quad, status_text))
            if captured is not None:
                cv2.imshow(f"{window_name} - capture", captured)

            # Handle key presses
            key = cv2.waitKey(1) & 0xFF
            if key == ord('q'):
                break
            elif key == ord('c'):
                try:
                    session.capture_photo()
                except CaptureError as e:
                    logger.warning(f"Capture failed: {e.message}")
            elif key == ord('r'):
                session.resume_detection()
            elif key == ord('m'):
                session.toggle_macro_mode()
            elif key == ord('f'):
                h, w = frame.shape[:2]
                session.set_focus_point((w / 2.0, h / 2.0))
            elif key in LENS_KEYS:
                session.switch_camera(LENS_KEYS[key])
    finally:
        session.stop()
        cv2.destroyAllWindows()

    logger.info("Preview ended")
    return 0
