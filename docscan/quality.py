"""
Detection Quality Assessment
Scores one detected quadrilateral for driving auto-capture and lens
switching. Combines relative area, aspect ratio and corner regularity
into a single value in [0, 1].
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import DetectorConfig
from .geometry import Quadrilateral, Size, bounding_box, interior_angles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionQualityScore:
    """Quality score plus the inputs that produced it."""
    score: float
    relative_area: float
    aspect_ratio: float
    angular_deviations: Tuple[float, ...] = field(default_factory=tuple)
    area_score: float = 0.0
    aspect_score: float = 0.0
    regularity: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            'score': round(self.score, 4),
            'relative_area': round(self.relative_area, 4),
            'aspect_ratio': round(self.aspect_ratio, 4),
            'angular_deviations': [round(d, 2) for d in self.angular_deviations],
            'area_score': self.area_score,
            'aspect_score': self.aspect_score,
            'regularity': round(self.regularity, 4),
        }


class QualityScorer:
    """
    Per-frame quality scoring.
    Area and aspect terms are binary thresholds; irregular corners stack a
    multiplicative penalty.
    """

    # Scores for values outside their optimal band
    SCORES = {
        'in_band': 1.0,
        'area_out_of_band': 0.5,
        'aspect_out_of_band': 0.3,
        'irregular_corner_penalty': 0.7,
    }

    def __init__(self, config: Optional[DetectorConfig] = None,
                 optimal_area_range: Tuple[float, float] = (0.1, 0.8)):
        """
        Initialize quality scorer.

        Args:
            config: Detector thresholds (aspect bounds, quadrature tolerance)
            optimal_area_range: Inclusive band of bounding-box area / frame area
        """
        self.config = config or DetectorConfig()
        self.optimal_area_range = optimal_area_range
        logger.debug(f"QualityScorer initialized (optimal area {optimal_area_range})")

    def score(self, quad: Quadrilateral, frame_size: Size) -> DetectionQualityScore:
        return score_quadrilateral(quad, frame_size, self.config, self.optimal_area_range)


def score_quadrilateral(quad: Quadrilateral, frame_size: Size,
                        config: DetectorConfig,
                        optimal_area_range: Tuple[float, float] = (0.1, 0.8)) -> DetectionQualityScore:
    """
    Score a detected quadrilateral.

    Args:
        quad: Detected quadrilateral in pixel space
        frame_size: Size of the frame it was detected in (area must be > 0)
        config: Detector thresholds
        optimal_area_range: Inclusive band for the relative area

    Returns:
        DetectionQualityScore: Score in [0, 1] with its diagnostics
    """
    s = QualityScorer.SCORES
    box = bounding_box(quad)

    relative_area = box.area / frame_size.area
    low, high = optimal_area_range
    area_score = s['in_band'] if low <= relative_area <= high else s['area_out_of_band']

    # Zero height counts as out of band rather than dividing by zero
    aspect_ratio = box.width / box.height if box.height > 0 else float('inf')
    if config.minimum_aspect_ratio <= aspect_ratio <= config.maximum_aspect_ratio:
        aspect_score = s['in_band']
    else:
        aspect_score = s['aspect_out_of_band']

    deviations = _angular_deviations(quad)
    regularity = 1.0
    for deviation in deviations:
        if deviation > config.quadrature_tolerance:
            regularity *= s['irregular_corner_penalty']

    score = min(area_score * aspect_score * regularity, 1.0)

    return DetectionQualityScore(
        score=score,
        relative_area=relative_area,
        aspect_ratio=aspect_ratio,
        angular_deviations=tuple(deviations),
        area_score=area_score,
        aspect_score=aspect_score,
        regularity=regularity,
    )


def _angular_deviations(quad: Quadrilateral) -> List[float]:
    return [abs(angle - 90.0) for angle in interior_angles(quad)]
