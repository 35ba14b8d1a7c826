"""
Shape detectors.
A detector turns one frame into the best document quadrilateral, or None.
Two implementations: OpenCV contour detection and a YOLO corner-keypoint
model. Both return pixel-space quadrilaterals (origin top-left).
"""
import logging
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

import cv2
import numpy as np

from .config import DetectorConfig
from .geometry import Quadrilateral, biggest, interior_angles, order_corners

logger = logging.getLogger(__name__)


class ShapeDetector(Protocol):
    """Protocol for document quadrilateral detectors."""

    def detect(self, frame: np.ndarray, config: DetectorConfig) -> Optional[Quadrilateral]:
        """Detect the best quadrilateral in a frame.

        Args:
            frame: BGR frame.
            config: Detection thresholds.

        Returns:
            Largest accepted quadrilateral, or None.
        """
        ...


def passes_config(quad: Quadrilateral, frame_shape: Tuple[int, ...], config: DetectorConfig) -> bool:
    """
    Apply the size, aspect ratio and quadrature thresholds to a candidate.

    Aspect ratio is short side / long side, minimum size is relative to the
    frame's smaller dimension.
    """
    h, w = frame_shape[:2]
    pts = quad.as_array()

    widths = [np.linalg.norm(pts[1] - pts[0]), np.linalg.norm(pts[2] - pts[3])]
    heights = [np.linalg.norm(pts[3] - pts[0]), np.linalg.norm(pts[2] - pts[1])]
    avg_width = float(np.mean(widths))
    avg_height = float(np.mean(heights))

    if avg_width == 0 or avg_height == 0:
        return False

    if min(avg_width, avg_height) < config.minimum_size * min(w, h):
        return False

    aspect_ratio = min(avg_width, avg_height) / max(avg_width, avg_height)
    if aspect_ratio < config.minimum_aspect_ratio or aspect_ratio > config.maximum_aspect_ratio:
        return False

    for angle in interior_angles(quad):
        if abs(angle - 90.0) > config.quadrature_tolerance:
            return False

    return True


class ContourRectangleDetector:
    """
    Edge/contour based document detection.
    Finds 4-sided convex contours and keeps the biggest one that passes the
    configured thresholds.
    """

    def __init__(self, processing_scale: float = 0.5, canny_low: int = 20, canny_high: int = 80,
                 max_contours: int = 20):
        """
        Initialize contour detector

        Args:
            processing_scale: Scale factor for detection (0.5 = 50% size for speed)
            canny_low: Lower Canny hysteresis threshold
            canny_high: Upper Canny hysteresis threshold
            max_contours: Largest contours to examine per frame
        """
        self.processing_scale = processing_scale
        self.canny_low = canny_low
        self.canny_high = canny_high
        self.max_contours = max_contours
        logger.info("ContourRectangleDetector initialized")
        logger.debug(f"  Processing scale: {processing_scale}")
        logger.debug(f"  Canny thresholds: {canny_low}/{canny_high}")

    def detect(self, frame: np.ndarray, config: DetectorConfig) -> Optional[Quadrilateral]:
        if frame is None or frame.size == 0:
            return None

        height, width = frame.shape[:2]
        small = cv2.resize(frame, (max(1, int(width * self.processing_scale)),
                                   max(1, int(height * self.processing_scale))))

        gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY) if small.ndim == 3 else small
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, self.canny_low, self.canny_high)

        kernel = np.ones((5, 5), np.uint8)
        closed = cv2.morphologyEx(cv2.dilate(edges, kernel, iterations=1), cv2.MORPH_CLOSE, kernel, iterations=2)

        contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        if not contours:
            return None

        contours = sorted(contours, key=cv2.contourArea, reverse=True)
        candidates: List[Quadrilateral] = []

        for contour in contours[:self.max_contours]:
            peri = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * peri, True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue

            approx_area = cv2.contourArea(approx)
            if approx_area <= 0:
                continue

            # How much of the fitted quadrilateral the raw contour fills
            confidence = min(1.0, cv2.contourArea(contour) / approx_area)
            if confidence < config.minimum_confidence:
                continue

            corners = order_corners(approx.reshape(4, 2) / self.processing_scale)
            quad = Quadrilateral.from_points([tuple(p) for p in corners])
            if not passes_config(quad, frame.shape, config):
                continue

            candidates.append(quad)
            if config.maximum_observations and len(candidates) >= config.maximum_observations:
                break

        return biggest(candidates)


class YoloCornerDetector:
    """
    Document corner detection with a YOLO keypoint model.
    The model is loaded lazily on first use.
    """

    def __init__(self, model_path: str = "models/document_detector.pt", use_virtual_padding: bool = True,
                 virtual_padding_ratio: float = 0.15, device=None):
        self.model_path = model_path
        self.use_virtual_padding = use_virtual_padding
        self.virtual_padding_ratio = virtual_padding_ratio
        self.device = device
        self.model = None
        self._model_loaded = False

    def load_model(self) -> bool:
        """
        Load YOLO model for document detection.

        Returns:
            bool: True if model loaded successfully
        """
        if self._model_loaded:
            return True

        model_path = Path(self.model_path)

        if not model_path.exists():
            logger.error(f"Model not found: {model_path}")
            return False

        try:
            from ultralytics import YOLO

            logger.info(f"Loading YOLO model from {model_path}")
            self.model = YOLO(str(model_path))
            self.model.fuse()  # Optimize for inference
            self._model_loaded = True
            logger.info("YOLO model loaded and fused")
            return True

        except ImportError:
            logger.error("ultralytics package not installed. Run: pip install docscan[yolo]")
            return False
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            return False

    def _add_virtual_padding(self, frame: np.ndarray) -> Tuple[np.ndarray, int, int]:
        """
        Add virtual padding around frame for better detection near edges.

        Returns:
            Tuple of (padded_frame, padding_x, padding_y)
        """
        h, w = frame.shape[:2]
        ratio = self.virtual_padding_ratio
        px, py = int(w * ratio), int(h * ratio)

        # Create padded frame with neutral gray
        padded = np.full((h + 2 * py, w + 2 * px, 3), 128, dtype=np.uint8)
        padded[py:py + h, px:px + w] = frame

        return padded, px, py

    def detect(self, frame: np.ndarray, config: DetectorConfig) -> Optional[Quadrilateral]:
        if not self.load_model():
            return None

        if self.use_virtual_padding:
            inference_frame, px, py = self._add_virtual_padding(frame)
        else:
            inference_frame, px, py = frame, 0, 0

        kwargs = {'conf': config.minimum_confidence, 'verbose': False}
        if config.maximum_observations:
            kwargs['max_det'] = config.maximum_observations
        if self.device is not None:
            kwargs['device'] = self.device

        results = self.model(inference_frame, **kwargs)

        candidates: List[Quadrilateral] = []
        for r in results:
            if r.keypoints is None:
                continue
            for kpts in r.keypoints.data:
                # Filter visible keypoints and adjust for padding
                visible = [(float(x) - px, float(y) - py) for x, y, v in kpts.cpu().numpy() if v > 0.5]
                if len(visible) != 4:
                    continue
                quad = Quadrilateral.from_points([tuple(p) for p in order_corners(visible)])
                if passes_config(quad, frame.shape, config):
                    candidates.append(quad)

        return biggest(candidates)
