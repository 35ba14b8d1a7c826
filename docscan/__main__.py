"""
Command line entry point: python -m docscan
"""
import argparse
import logging
import sys

from .config import ScannerConfig, parse_lens_map, parse_lens_type
from .detector import ContourRectangleDetector, YoloCornerDetector
from .error_handlers import ConfigurationError
from .preview import run_preview
from .session import DetectionSession

logger = logging.getLogger(__name__)


def parse_view(value: str):
    width, sep, height = value.lower().partition('x')
    if not sep:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got '{value}'")
    try:
        return float(width), float(height)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got '{value}'")


def build_parser():
    parser = argparse.ArgumentParser(prog='docscan', description='Live document detection preview')
    parser.add_argument('--lenses', help="Lens map, e.g. 'wide:0,ultra_wide:2,telephoto:4'")
    parser.add_argument('--default-camera', type=int, help='System default device index')
    parser.add_argument('--camera-type', default=None, help='auto, wide, ultra_wide or telephoto')
    parser.add_argument('--macro', action='store_true', help='Start with macro mode enabled')
    parser.add_argument('--view', type=parse_view, help='Presentation view size, e.g. 720x1280')
    parser.add_argument('--detector', choices=['contour', 'yolo'], default='contour')
    parser.add_argument('--model', default='models/document_detector.pt', help='YOLO keypoint model path')
    parser.add_argument('--no-auto-scan', action='store_true')
    parser.add_argument('--log-level', default='INFO')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        config = ScannerConfig.from_env()
        if args.lenses:
            config.camera.lens_map = parse_lens_map(args.lenses)
        if args.default_camera is not None:
            config.camera.default_camera_index = args.default_camera
        if args.camera_type:
            config.camera.preferred_camera_type = parse_lens_type(args.camera_type)
        if args.macro:
            config.camera.macro_mode_enabled = True
        if args.no_auto_scan:
            config.auto_scan_enabled = False
    except ConfigurationError as e:
        logger.error(f"❌ {e.message} (value: {e.details.get('value')})")
        return 2

    if args.detector == 'yolo':
        detector = YoloCornerDetector(model_path=args.model)
    else:
        detector = ContourRectangleDetector()

    session = DetectionSession(config=config, detector=detector)
    if args.view:
        session.set_view_size(*args.view)

    logger.info(f"🚀 Starting docscan preview (lenses: {[t.value for t in config.camera.lens_map]})")
    return run_preview(session)


if __name__ == '__main__':
    sys.exit(main())
