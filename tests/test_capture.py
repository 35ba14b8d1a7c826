"""
Tests for the OpenCV capture session and V4L2 probe.
"""
import cv2
import numpy as np
import pytest

from docscan import capture
from docscan.capture import (AuthorizationStatus, FocusMode, FocusRange, FocusSettings,
                             OpenCVCaptureSession, V4L2DeviceProbe)
from docscan.config import CameraConfig
from docscan.error_handlers import LensConfigurationError
from docscan.lenses import LensType
from conftest import make_lens


class FakeVideoCapture:
    """Stands in for cv2.VideoCapture."""

    instances = []
    unsupported = set()

    def __init__(self, index, backend=None):
        self.index = index
        self.backend = backend
        self.props = {}
        self.released = False
        FakeVideoCapture.instances.append(self)

    def isOpened(self):
        return not self.released

    def set(self, prop, value):
        if prop in FakeVideoCapture.unsupported:
            return False
        self.props[prop] = value
        return True

    def get(self, prop):
        return self.props.get(prop, 0)

    def read(self):
        return True, np.full((4, 6, 3), self.index, dtype=np.uint8)

    def release(self):
        self.released = True


@pytest.fixture
def fake_cv2(monkeypatch):
    FakeVideoCapture.instances = []
    FakeVideoCapture.unsupported = set()
    monkeypatch.setattr(capture.cv2, 'VideoCapture', FakeVideoCapture)
    monkeypatch.setattr(capture, 'device_exists', lambda index: index in (0, 2))
    return FakeVideoCapture


@pytest.fixture
def session(fake_cv2):
    return OpenCVCaptureSession(CameraConfig(lens_map={LensType.WIDE: 0, LensType.ULTRA_WIDE: 2}))


class TestFocusSettings:
    """Test focus configuration derived from lens capabilities."""

    def test_continuous_autofocus_preferred(self, wide_lens):
        settings = FocusSettings.for_lens(wide_lens)
        assert settings.focus_mode is FocusMode.CONTINUOUS_AUTO
        assert settings.focus_range is FocusRange.NONE

    def test_single_autofocus_fallback(self):
        lens = make_lens(LensType.WIDE, single_autofocus=True)
        assert FocusSettings.for_lens(lens).focus_mode is FocusMode.AUTO

    def test_near_focus_needs_restriction_support(self):
        lens = make_lens(LensType.TELEPHOTO, continuous_autofocus=True)
        assert FocusSettings.for_lens(lens, near_focus=True).focus_range is FocusRange.NONE


class TestOpenCVCaptureSession:
    """Test the V4L2 capture session."""

    def test_open_missing_device(self, session):
        with pytest.raises(LensConfigurationError):
            session.open_input(make_lens(LensType.TELEPHOTO, 4))

    def test_open_configures_stream(self, session):
        device_input = session.open_input(make_lens(LensType.WIDE, 0))
        camera = device_input.device
        assert camera.backend == cv2.CAP_V4L2
        assert camera.props[cv2.CAP_PROP_FRAME_WIDTH] == 1920
        assert camera.props[cv2.CAP_PROP_FRAME_HEIGHT] == 1080
        assert camera.props[cv2.CAP_PROP_BUFFERSIZE] == 1

    def test_frames_only_while_running(self, session):
        device_input = session.open_input(make_lens(LensType.WIDE, 0))
        session.begin_configuration()
        assert session.can_add_input(device_input)
        session.add_input(device_input)
        session.commit_configuration()

        assert session.read_frame() is None
        session.start()
        assert session.read_frame().shape == (4, 6, 3)
        session.stop()
        assert session.read_frame() is None

    def test_only_one_input_attached(self, session):
        first = session.open_input(make_lens(LensType.WIDE, 0))
        second = session.open_input(make_lens(LensType.ULTRA_WIDE, 2))
        session.add_input(first)
        assert not session.can_add_input(second)
        session.remove_input(first)
        assert session.can_add_input(second)

    def test_near_focus_pins_lens(self, session):
        lens = make_lens(LensType.TELEPHOTO, 0, near_focus_restriction=True, continuous_autofocus=True)
        device_input = session.open_input(lens)
        session.configure_device(device_input, FocusSettings.for_lens(lens, near_focus=True))
        assert device_input.device.props[cv2.CAP_PROP_AUTOFOCUS] == 0
        assert device_input.device.props[cv2.CAP_PROP_FOCUS] == 250

    def test_focus_point_retriggers_auto_loops(self, session):
        lens = make_lens(LensType.WIDE, 0, focus_point_of_interest=True, exposure_point_of_interest=True)
        device_input = session.open_input(lens)
        assert session.set_focus_point(device_input, (0.5, 0.5))
        assert device_input.device.props[cv2.CAP_PROP_AUTOFOCUS] == 1
        assert device_input.device.props[cv2.CAP_PROP_AUTO_EXPOSURE] == 3

    def test_focus_point_without_point_of_interest(self, session):
        device_input = session.open_input(make_lens(LensType.WIDE, 0, single_autofocus=True))
        assert not session.set_focus_point(device_input, (0.5, 0.5))
        assert cv2.CAP_PROP_AUTOFOCUS not in device_input.device.props

    def test_configure_closed_device(self, session, wide_lens):
        device_input = session.open_input(wide_lens)
        session.release_input(device_input)
        with pytest.raises(LensConfigurationError):
            session.configure_device(device_input, FocusSettings.for_lens(wide_lens))

    def test_capture_photo_copies_frame(self, session):
        device_input = session.open_input(make_lens(LensType.ULTRA_WIDE, 2))
        session.add_input(device_input)
        photo = session.capture_photo()
        assert photo.shape == (4, 6, 3)
        assert int(photo[0, 0, 0]) == 2

    def test_close_releases_everything(self, session, fake_cv2):
        session.open_input(make_lens(LensType.WIDE, 0))
        session.open_input(make_lens(LensType.ULTRA_WIDE, 2))
        session.close()
        assert all(cam.released for cam in fake_cv2.instances)

    def test_authorization(self, session, monkeypatch):
        monkeypatch.setattr(capture.os, 'access', lambda path, mode: True)
        assert session.authorization_status() is AuthorizationStatus.AUTHORIZED
        monkeypatch.setattr(capture.os, 'access', lambda path, mode: False)
        assert session.authorization_status() is AuthorizationStatus.DENIED
        assert not session.request_access()

    def test_no_devices_is_not_a_denial(self, session, monkeypatch):
        monkeypatch.setattr(capture, 'device_exists', lambda index: False)
        assert session.authorization_status() is AuthorizationStatus.NOT_DETERMINED
        assert session.request_access()


class TestV4L2DeviceProbe:
    """Test lens enumeration."""

    def test_enumerates_present_lenses(self, fake_cv2):
        probe = V4L2DeviceProbe(CameraConfig(lens_map={LensType.WIDE: 0, LensType.TELEPHOTO: 4}))
        lenses = probe.enumerate_lenses()
        assert [lens.lens_type for lens in lenses] == [LensType.WIDE]
        assert lenses[0].continuous_autofocus
        assert lenses[0].near_focus_restriction
        assert lenses[0].focus_point_of_interest
        assert lenses[0].exposure_point_of_interest
        assert all(cam.released for cam in fake_cv2.instances)

    def test_capabilities_follow_property_support(self, fake_cv2):
        fake_cv2.unsupported = {cv2.CAP_PROP_AUTOFOCUS, cv2.CAP_PROP_FOCUS}
        lens = V4L2DeviceProbe(CameraConfig(lens_map={LensType.ULTRA_WIDE: 2})).enumerate_lenses()[0]
        assert not lens.continuous_autofocus
        assert not lens.single_autofocus
        assert not lens.near_focus_restriction
        assert not lens.focus_point_of_interest
        assert lens.exposure_point_of_interest
        assert lens.continuous_auto_exposure

    def test_default_device_is_tagged_wide(self, fake_cv2):
        default = V4L2DeviceProbe(CameraConfig(default_camera_index=2)).default_device()
        assert default.lens_type is LensType.WIDE
        assert default.handle == 2

    def test_no_default_device(self, fake_cv2):
        assert V4L2DeviceProbe(CameraConfig(default_camera_index=None)).default_device() is None
