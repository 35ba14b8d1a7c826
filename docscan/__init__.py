"""
docscan - Document detection quality and adaptive camera control.
Scores every detected document quadrilateral, switches lenses when the
windowed quality stays poor, and maps detections into display space.
"""
from .camera_manager import CameraManager, SwitchOutcome
from .capture import CaptureSession, OpenCVCaptureSession, V4L2DeviceProbe
from .config import CameraConfig, ControllerConfig, DetectorConfig, ScannerConfig
from .controller import AdaptiveSwitchController
from .detector import ContourRectangleDetector, ShapeDetector, YoloCornerDetector
from .error_handlers import ScannerError
from .funnel import FunnelDecision, PassThroughFunnel, RectangleFunnel
from .geometry import Quadrilateral, Size
from .lenses import CameraInventory, LensDescriptor, LensType
from .quality import DetectionQualityScore, QualityScorer
from .session import DetectionSession, ScannerDelegate

__all__ = [
    'AdaptiveSwitchController',
    'CameraConfig',
    'CameraInventory',
    'CameraManager',
    'CaptureSession',
    'ContourRectangleDetector',
    'ControllerConfig',
    'DetectionQualityScore',
    'DetectionSession',
    'DetectorConfig',
    'FunnelDecision',
    'LensDescriptor',
    'LensType',
    'OpenCVCaptureSession',
    'PassThroughFunnel',
    'Quadrilateral',
    'QualityScorer',
    'RectangleFunnel',
    'ScannerConfig',
    'ScannerDelegate',
    'ScannerError',
    'ShapeDetector',
    'Size',
    'SwitchOutcome',
    'V4L2DeviceProbe',
    'YoloCornerDetector',
]
