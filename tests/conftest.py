"""
Pytest configuration and fixtures for docscan tests.
Deterministic fakes for the detector, funnel, capture session, clock and
executors so the whole loop runs inline.
"""
import time
from collections import deque
from concurrent.futures import Executor, Future

import numpy as np
import pytest

from docscan.capture import AuthorizationStatus, CaptureSession, DeviceInput
from docscan.config import ScannerConfig
from docscan.error_handlers import LensConfigurationError
from docscan.funnel import FunnelDecision
from docscan.geometry import Quadrilateral
from docscan.lenses import CameraInventory, LensDescriptor, LensPosition, LensType
from docscan.session import DetectionSession


class SynchronousExecutor(Executor):
    """Runs every task on submit."""

    def __init__(self):
        self._shutdown = False

    def submit(self, fn, *args, **kwargs):
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait=True, **kwargs):
        self._shutdown = True


class DeferredExecutor(Executor):
    """Queues tasks until run_pending() is called."""

    def __init__(self):
        self.pending = deque()

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self):
        while self.pending:
            future, fn, args, kwargs = self.pending.popleft()
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeDetector:
    """Returns queued results, then `default`. Exception instances are raised."""

    def __init__(self, results=(), default=None):
        self.results = deque(results)
        self.default = default
        self.calls = 0

    def detect(self, frame, config):
        self.calls += 1
        result = self.results.popleft() if self.results else self.default
        if isinstance(result, Exception):
            raise result
        return result


class FakeFunnel:
    """Answers with a fixed decision and counts pass-count resets."""

    def __init__(self, decision=FunnelDecision.SHOW):
        self.decision = decision
        self.auto_scan_pass_count = 0
        self.resets = 0
        self.added = []

    def add(self, candidate, currently_displayed):
        self.added.append((candidate, currently_displayed))
        if self.decision is None:
            return None
        return self.decision, candidate

    def reset_pass_count(self):
        self.resets += 1
        self.auto_scan_pass_count = 0


class FakeCaptureSession(CaptureSession):
    """In-memory capture session with injectable failures."""

    def __init__(self, authorization=AuthorizationStatus.AUTHORIZED, grant_access=True):
        self.authorization = authorization
        self.grant_access = grant_access
        self.access_requests = 0
        self.photo = np.zeros((1080, 1920, 3), dtype=np.uint8)
        self.frames = []
        self.fail_open = set()
        self.fail_add = set()
        self.fail_configure = set()
        self.active = None
        self.released = []
        self.configured = []
        self.focus_points = []
        self.calls = []
        self.running = False
        self.closed = False

    @property
    def is_running(self):
        return self.running

    def start(self):
        self.calls.append('start')
        self.running = True

    def stop(self):
        self.calls.append('stop')
        self.running = False

    def begin_configuration(self):
        self.calls.append('begin')

    def commit_configuration(self):
        self.calls.append('commit')

    def open_input(self, lens):
        self.calls.append(('open', lens.lens_type))
        if lens.lens_type in self.fail_open:
            raise LensConfigurationError(lens.lens_type.value, reason="device busy")
        return DeviceInput(lens=lens, device=object())

    def can_add_input(self, device_input):
        return self.active is None and device_input.lens.lens_type not in self.fail_add

    def add_input(self, device_input):
        self.calls.append(('add', device_input.lens.lens_type))
        self.active = device_input

    def remove_input(self, device_input):
        self.calls.append(('remove', device_input.lens.lens_type))
        if self.active is device_input:
            self.active = None

    def release_input(self, device_input):
        self.calls.append(('release', device_input.lens.lens_type))
        self.released.append(device_input)
        if self.active is device_input:
            self.active = None

    def configure_device(self, device_input, settings):
        if device_input.lens.lens_type in self.fail_configure:
            raise LensConfigurationError(device_input.lens.lens_type.value, reason="lock failed")
        self.configured.append((device_input.lens.lens_type, settings))

    def set_focus_point(self, device_input, point):
        self.focus_points.append(point)
        return True

    def read_frame(self):
        return self.frames.pop(0) if self.frames else None

    def capture_photo(self):
        self.calls.append('capture')
        return self.photo

    def authorization_status(self):
        return self.authorization

    def request_access(self):
        self.access_requests += 1
        if self.grant_access:
            self.authorization = AuthorizationStatus.AUTHORIZED
        return self.grant_access

    def close(self):
        self.closed = True


class FakeProbe:
    """Device probe over a mutable lens list."""

    def __init__(self, lenses=(), default=None):
        self.lenses = list(lenses)
        self.default = default
        self.enumerations = 0

    def enumerate_lenses(self):
        self.enumerations += 1
        return list(self.lenses)

    def default_device(self):
        return self.default


class RecordingDelegate:
    def __init__(self):
        self.updates = []
        self.capture_started = 0
        self.captures = []
        self.errors = []

    def on_detection_update(self, quad, frame_size):
        self.updates.append((quad, frame_size))

    def on_capture_started(self):
        self.capture_started += 1

    def on_capture_completed(self, image, quad):
        self.captures.append((image, quad))

    def on_error(self, error):
        self.errors.append(error)


def wait_for(predicate, timeout=2.0):
    """Poll `predicate` until it is truthy or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


def make_lens(lens_type, handle=0, **capabilities):
    return LensDescriptor(lens_type=lens_type, handle=handle, name=f"{lens_type.value}-{handle}",
                          **capabilities)


FULL_CAPABILITIES = dict(
    continuous_autofocus=True,
    single_autofocus=True,
    near_focus_restriction=True,
    stabilization=True,
    focus_point_of_interest=True,
    continuous_auto_exposure=True,
)


@pytest.fixture
def wide_lens():
    return make_lens(LensType.WIDE, 0, **FULL_CAPABILITIES)


@pytest.fixture
def ultra_wide_lens():
    return make_lens(LensType.ULTRA_WIDE, 2, continuous_autofocus=True, single_autofocus=True)


@pytest.fixture
def telephoto_lens():
    return make_lens(LensType.TELEPHOTO, 4, continuous_autofocus=True, single_autofocus=True,
                     near_focus_restriction=True)


@pytest.fixture
def front_lens():
    return LensDescriptor(lens_type=LensType.WIDE, handle=9, name="front", position=LensPosition.FRONT)


@pytest.fixture
def full_inventory(wide_lens, ultra_wide_lens, telephoto_lens):
    return CameraInventory.from_lenses([wide_lens, ultra_wide_lens, telephoto_lens])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def capture_session():
    return FakeCaptureSession()


@pytest.fixture
def delegate():
    return RecordingDelegate()


@pytest.fixture
def frame():
    """Blank 1920x1080 landscape frame."""
    return np.zeros((1080, 1920, 3), dtype=np.uint8)


@pytest.fixture
def document_quad():
    """Upright portrait rectangle covering about 23% of a 1920x1080 frame."""
    return Quadrilateral.from_points([(660, 140), (1260, 140), (1260, 940), (660, 940)])


@pytest.fixture
def make_session(capture_session, delegate, clock):
    """Factory for a session running entirely on inline executors."""

    def factory(lenses, preference=LensType.AUTO, detector=None, funnel=None,
                control_executor=None, config=None, system_default=None):
        config = config or ScannerConfig()
        config.camera.preferred_camera_type = preference
        return DetectionSession(
            config=config,
            detector=detector or FakeDetector(),
            funnel=funnel or FakeFunnel(),
            capture_session=capture_session,
            inventory=CameraInventory.from_lenses(lenses, system_default),
            delegate=delegate,
            detection_executor=SynchronousExecutor(),
            control_executor=control_executor or SynchronousExecutor(),
            delegate_executor=SynchronousExecutor(),
            clock=clock,
        )

    return factory


@pytest.fixture
def make_threaded_session(capture_session, delegate, clock):
    """Factory for a session on its own worker threads."""

    def factory(lenses, detector=None, preference=LensType.AUTO, session=None):
        config = ScannerConfig()
        config.camera.preferred_camera_type = preference
        return DetectionSession(
            config=config,
            detector=detector or FakeDetector(),
            funnel=FakeFunnel(),
            capture_session=session or capture_session,
            inventory=CameraInventory.from_lenses(lenses),
            delegate=delegate,
            clock=clock,
        )

    return factory
