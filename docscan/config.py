"""
Scanner configuration.
Typed dataclasses with the documented defaults, loadable from DOCSCAN_*
environment variables.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .error_handlers import ConfigurationError
from .lenses import LensType

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """Thresholds handed to the shape detector on every frame."""
    minimum_aspect_ratio: float = 0.3
    maximum_aspect_ratio: float = 1.0
    minimum_confidence: float = 0.8
    maximum_observations: int = 1
    minimum_size: float = 0.2            # fraction of the frame's smaller side
    quadrature_tolerance: float = 30.0   # degrees

    def validate(self):
        if self.minimum_aspect_ratio <= 0:
            raise ConfigurationError("minimum_aspect_ratio", self.minimum_aspect_ratio, "must be positive")
        if self.maximum_aspect_ratio < self.minimum_aspect_ratio:
            raise ConfigurationError(
                "maximum_aspect_ratio", self.maximum_aspect_ratio,
                f"must be >= minimum_aspect_ratio ({self.minimum_aspect_ratio})"
            )
        if not 0.0 <= self.minimum_confidence <= 1.0:
            raise ConfigurationError("minimum_confidence", self.minimum_confidence, "must be within [0, 1]")
        if self.maximum_observations < 0:
            raise ConfigurationError("maximum_observations", self.maximum_observations, "must be >= 0")
        if not 0.0 <= self.minimum_size <= 1.0:
            raise ConfigurationError("minimum_size", self.minimum_size, "must be within [0, 1]")
        if not 0.0 <= self.quadrature_tolerance <= 45.0:
            raise ConfigurationError("quadrature_tolerance", self.quadrature_tolerance, "must be within [0, 45] degrees")


@dataclass
class ControllerConfig:
    """Adaptive lens switching."""
    history_size: int = 10
    poor_quality_threshold: float = 0.3
    switch_cooldown_seconds: float = 10.0

    def validate(self):
        if self.history_size < 1:
            raise ConfigurationError("history_size", self.history_size, "must be >= 1")
        if self.switch_cooldown_seconds < 0:
            raise ConfigurationError("switch_cooldown_seconds", self.switch_cooldown_seconds, "must be >= 0")


@dataclass
class CameraConfig:
    """Lens preference and V4L2 device settings."""
    preferred_camera_type: LensType = LensType.AUTO
    macro_mode_enabled: bool = False

    # Lens type -> /dev/videoN index
    lens_map: Dict[LensType, int] = field(default_factory=lambda: {LensType.WIDE: 0})
    default_camera_index: Optional[int] = 0

    width: int = 1920
    height: int = 1080
    fps: int = 30
    codec: str = 'MJPG'
    buffer_size: int = 1                 # Minimal buffer for low latency

    # V4L2 has no focus range restriction; near focus pins the lens here
    near_focus_position: int = 250


@dataclass
class ScannerConfig:
    """Configuration for a scanning session."""
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)

    # Quality scoring
    optimal_area_range: Tuple[float, float] = (0.1, 0.8)

    # Session loop
    no_rectangle_threshold: int = 3
    auto_scan_enabled: bool = True

    def validate(self) -> "ScannerConfig":
        self.detector.validate()
        self.controller.validate()
        low, high = self.optimal_area_range
        if not 0.0 <= low <= high:
            raise ConfigurationError("optimal_area_range", self.optimal_area_range, "expected 0 <= low <= high")
        if self.no_rectangle_threshold < 0:
            raise ConfigurationError("no_rectangle_threshold", self.no_rectangle_threshold, "must be >= 0")
        return self

    @classmethod
    def from_env(cls, environ=None) -> "ScannerConfig":
        """
        Build a configuration from DOCSCAN_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            ScannerConfig: Validated configuration
        """
        env = os.environ if environ is None else environ
        detector = DetectorConfig(
            minimum_aspect_ratio=float(env.get('DOCSCAN_MIN_ASPECT_RATIO', 0.3)),
            maximum_aspect_ratio=float(env.get('DOCSCAN_MAX_ASPECT_RATIO', 1.0)),
            minimum_confidence=float(env.get('DOCSCAN_MIN_CONFIDENCE', 0.8)),
            maximum_observations=int(env.get('DOCSCAN_MAX_OBSERVATIONS', 1)),
            minimum_size=float(env.get('DOCSCAN_MIN_SIZE', 0.2)),
            quadrature_tolerance=float(env.get('DOCSCAN_QUADRATURE_TOLERANCE', 30.0)),
        )
        camera = CameraConfig(
            preferred_camera_type=parse_lens_type(env.get('DOCSCAN_CAMERA_TYPE', 'auto')),
            macro_mode_enabled=env.get('DOCSCAN_MACRO_MODE', '0').lower() in ('1', 'true', 'yes', 'on'),
        )
        if 'DOCSCAN_LENSES' in env:
            camera.lens_map = parse_lens_map(env['DOCSCAN_LENSES'])
        if 'DOCSCAN_DEFAULT_CAMERA' in env:
            raw = env['DOCSCAN_DEFAULT_CAMERA']
            camera.default_camera_index = None if raw.lower() in ('', 'none') else int(raw)

        config = cls(
            detector=detector,
            camera=camera,
            no_rectangle_threshold=int(env.get('DOCSCAN_NO_RECTANGLE_THRESHOLD', 3)),
            auto_scan_enabled=env.get('DOCSCAN_AUTO_SCAN', '1').lower() in ('1', 'true', 'yes', 'on'),
        )
        logger.debug(f"Config from environment: {config}")
        return config.validate()


def parse_lens_type(value: str) -> LensType:
    """Parse 'wide', 'ultra_wide', 'ultra-wide', 'telephoto' or 'auto'."""
    key = value.strip().lower().replace('-', '_').replace(' ', '_')
    try:
        return LensType(key)
    except ValueError:
        raise ConfigurationError("camera_type", value, f"expected one of {[t.value for t in LensType]}")


def parse_lens_map(value: str) -> Dict[LensType, int]:
    """
    Parse a lens map such as 'wide:0,ultra_wide:2,telephoto:4'.

    Returns:
        dict: Lens type -> V4L2 device index
    """
    lens_map: Dict[LensType, int] = {}
    for item in filter(None, (part.strip() for part in value.split(','))):
        name, sep, index = item.partition(':')
        if not sep:
            raise ConfigurationError("lenses", value, f"entry '{item}' must look like type:index")
        lens_type = parse_lens_type(name)
        if lens_type is LensType.AUTO:
            raise ConfigurationError("lenses", value, "'auto' is a preference, not a lens")
        try:
            lens_map[lens_type] = int(index)
        except ValueError:
            raise ConfigurationError("lenses", value, f"device index '{index}' is not an integer")
    return lens_map
