"""
Tests for scanner configuration and environment loading.
"""
import pytest

from docscan.config import DetectorConfig, ScannerConfig, parse_lens_map, parse_lens_type
from docscan.error_handlers import ConfigurationError, LensConfigurationError, ScannerError, handle_error
from docscan.lenses import LensType


class TestDefaults:
    """Test documented defaults."""

    def test_detector_defaults(self):
        config = DetectorConfig()
        assert config.minimum_aspect_ratio == 0.3
        assert config.maximum_aspect_ratio == 1.0
        assert config.minimum_confidence == 0.8
        assert config.maximum_observations == 1
        assert config.minimum_size == 0.2
        assert config.quadrature_tolerance == 30.0

    def test_scanner_defaults(self):
        config = ScannerConfig().validate()
        assert config.camera.preferred_camera_type is LensType.AUTO
        assert config.camera.macro_mode_enabled is False
        assert config.controller.history_size == 10
        assert config.controller.poor_quality_threshold == 0.3
        assert config.controller.switch_cooldown_seconds == 10.0
        assert config.no_rectangle_threshold == 3


class TestFromEnv:
    """Test DOCSCAN_* environment variables."""

    def test_empty_environment_gives_defaults(self):
        assert ScannerConfig.from_env({}) == ScannerConfig()

    def test_overrides(self):
        config = ScannerConfig.from_env({
            'DOCSCAN_MIN_ASPECT_RATIO': '0.5',
            'DOCSCAN_QUADRATURE_TOLERANCE': '20',
            'DOCSCAN_CAMERA_TYPE': 'ultra-wide',
            'DOCSCAN_MACRO_MODE': 'true',
            'DOCSCAN_LENSES': 'wide:0, telephoto:4',
            'DOCSCAN_DEFAULT_CAMERA': 'none',
            'DOCSCAN_AUTO_SCAN': '0',
        })
        assert config.detector.minimum_aspect_ratio == 0.5
        assert config.detector.quadrature_tolerance == 20.0
        assert config.camera.preferred_camera_type is LensType.ULTRA_WIDE
        assert config.camera.macro_mode_enabled is True
        assert config.camera.lens_map == {LensType.WIDE: 0, LensType.TELEPHOTO: 4}
        assert config.camera.default_camera_index is None
        assert config.auto_scan_enabled is False

    def test_invalid_values_raise(self):
        with pytest.raises(ConfigurationError):
            ScannerConfig.from_env({'DOCSCAN_MIN_ASPECT_RATIO': '0.9', 'DOCSCAN_MAX_ASPECT_RATIO': '0.5'})


class TestParsing:
    """Test lens type and lens map parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ('wide', LensType.WIDE),
        ('Ultra Wide', LensType.ULTRA_WIDE),
        ('ultra_wide', LensType.ULTRA_WIDE),
        ('TELEPHOTO', LensType.TELEPHOTO),
        ('auto', LensType.AUTO),
    ])
    def test_parse_lens_type(self, raw, expected):
        assert parse_lens_type(raw) is expected

    def test_unknown_lens_type(self):
        with pytest.raises(ConfigurationError) as exc:
            parse_lens_type('fisheye')
        assert exc.value.error_code == 'INVALID_CONFIGURATION'

    def test_lens_map_rejects_auto(self):
        with pytest.raises(ConfigurationError):
            parse_lens_map('auto:0')

    def test_lens_map_requires_index(self):
        with pytest.raises(ConfigurationError):
            parse_lens_map('wide')
        with pytest.raises(ConfigurationError):
            parse_lens_map('wide:front')


class TestValidation:
    """Test configuration validation."""

    def test_confidence_out_of_range(self):
        with pytest.raises(ConfigurationError):
            DetectorConfig(minimum_confidence=1.5).validate()

    def test_area_range_order(self):
        with pytest.raises(ConfigurationError):
            ScannerConfig(optimal_area_range=(0.8, 0.1)).validate()


class TestErrorHandling:
    """Test error serialization."""

    def test_scanner_error_to_dict(self):
        error = ConfigurationError('minimum_size', 2.0, 'must be within [0, 1]')
        data = handle_error(error)
        assert data['error'] == error.message
        assert data['error_code'] == 'INVALID_CONFIGURATION'
        assert data['details']['field'] == 'minimum_size'
        assert isinstance(error, ScannerError)

    def test_error_details_survive(self):
        error = LensConfigurationError('telephoto', reason='device busy')
        data = error.to_dict()
        assert data['error_code'] == 'LENS_CONFIGURATION_FAILED'
        assert data['details']['lens_type'] == 'telephoto'
        assert data['details']['reason'] == 'device busy'
