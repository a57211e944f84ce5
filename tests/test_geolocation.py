import threading

from halal_finder.errors import GeolocationError
from halal_finder.geocoding import IpLocation, IpLookupError
from halal_finder.geolocation import (
    DeviceLocator,
    GeoAcquisition,
    GeoEvent,
    GeoEventType,
    GeolocationState,
    GeoStatus,
    LocationModeGuard,
    LocationSource,
    transition,
)
from halal_finder.models import Coordinate
from halal_finder.notifications import Notifier


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages = []

    def info(self, message):
        self.messages.append(("info", message))

    def success(self, message):
        self.messages.append(("success", message))

    def warning(self, message):
        self.messages.append(("warning", message))

    def error(self, message):
        self.messages.append(("error", message))


class FakeLocator(DeviceLocator):
    def __init__(self, high=None, low=None, secure=True, supported=True, on_call=None):
        self.results = {True: high, False: low}
        self.is_secure_context = secure
        self.is_supported = supported
        self.on_call = on_call
        self.calls = []

    def current_position(self, high_accuracy, timeout_s, maximum_age_s):
        self.calls.append((high_accuracy, timeout_s, maximum_age_s))
        if self.on_call is not None:
            self.on_call(high_accuracy)
        result = self.results[high_accuracy]
        if isinstance(result, Exception) or result is None:
            raise result or GeolocationError(GeolocationError.POSITION_UNAVAILABLE)
        return result


class FakeIpLookup:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_transition_ignores_events_that_do_not_apply():
    idle = GeolocationState()
    assert transition(idle, GeoEvent(GeoEventType.START)).status is GeoStatus.REQUESTING_PERMISSION
    assert transition(idle, GeoEvent(GeoEventType.IP_FAILED)) == idle

    success = GeolocationState(status=GeoStatus.SUCCESS, source=LocationSource.GPS)
    assert transition(success, GeoEvent(GeoEventType.GPS_TIMEOUT)) == success
    assert transition(success, GeoEvent(GeoEventType.RETRY)).status is GeoStatus.IDLE


def test_transition_routes_invalid_gps_fix_to_ip_fallback():
    high = GeolocationState(status=GeoStatus.DETECTING_GPS_HIGH)
    state = transition(high, GeoEvent(GeoEventType.GPS_FIX, coordinate=Coordinate(123.0, 0.0)))
    assert state.status is GeoStatus.FALLBACK_IP

    state = transition(high, GeoEvent(GeoEventType.GPS_FIX, coordinate=Coordinate(0.0, 0.0)))
    assert state.status is GeoStatus.VALIDATING
    assert state.source is LocationSource.GPS

    low = GeolocationState(status=GeoStatus.DETECTING_GPS_LOW)
    assert transition(low, GeoEvent(GeoEventType.GPS_INVALID)).status is GeoStatus.FALLBACK_IP
    assert transition(low, GeoEvent(GeoEventType.GPS_DENIED)).status is GeoStatus.FALLBACK_IP


def test_high_accuracy_gps_success():
    notifier = RecordingNotifier()
    ip = FakeIpLookup(IpLocation(1.0, 2.0))
    locator = FakeLocator(high=Coordinate(51.5, -0.12))
    acquisition = GeoAcquisition(locator, ip, notifier=notifier)

    state = acquisition.detect()

    assert state.status is GeoStatus.SUCCESS
    assert state.source is LocationSource.GPS
    assert state.coordinate == Coordinate(51.5, -0.12)
    assert locator.calls == [(True, 8.0, 0.0)]
    assert ip.calls == 0
    assert notifier.messages[-1][0] == "success"


def test_chain_falls_back_to_low_accuracy_then_ip():
    ip = FakeIpLookup(IpLocation(40.7, -74.0, "New York", "United States"))
    locator = FakeLocator(
        high=GeolocationError(GeolocationError.TIMEOUT),
        low=GeolocationError(GeolocationError.POSITION_UNAVAILABLE),
    )
    acquisition = GeoAcquisition(locator, ip, notifier=RecordingNotifier())

    state = acquisition.detect()

    assert [c[0] for c in locator.calls] == [True, False]
    assert locator.calls[1] == (False, 6.0, 60.0)
    assert ip.calls == 1
    assert state.status is GeoStatus.SUCCESS
    assert state.source is LocationSource.IP
    assert state.city == "New York"


def test_ip_fallback_accepts_zero_coordinates():
    ip = FakeIpLookup(IpLocation(0.0, 0.0))
    acquisition = GeoAcquisition(FakeLocator(), ip, notifier=RecordingNotifier())

    state = acquisition.detect()

    assert state.status is GeoStatus.SUCCESS
    assert state.coordinate == Coordinate(0.0, 0.0)


def test_invalid_gps_skips_low_accuracy():
    ip = FakeIpLookup(IpLocation(10.0, 10.0))
    locator = FakeLocator(high=Coordinate(200.0, 0.0), low=Coordinate(1.0, 1.0))
    acquisition = GeoAcquisition(locator, ip, notifier=RecordingNotifier())

    state = acquisition.detect()

    assert [c[0] for c in locator.calls] == [True]
    assert ip.calls == 1
    assert state.source is LocationSource.IP


def test_permission_denied_is_terminal_and_retryable():
    notifier = RecordingNotifier()
    ip = FakeIpLookup(IpLocation(10.0, 10.0))
    locator = FakeLocator(high=GeolocationError(GeolocationError.PERMISSION_DENIED))
    acquisition = GeoAcquisition(locator, ip, notifier=notifier)

    state = acquisition.detect()

    assert state.status is GeoStatus.PERMISSION_DENIED
    assert state.can_retry
    assert ip.calls == 0
    assert notifier.messages[-1][0] == "error"

    locator.results[True] = Coordinate(1.0, 1.0)
    state = acquisition.retry()
    assert state.status is GeoStatus.SUCCESS


def test_environment_guards():
    ip = FakeIpLookup(IpLocation(10.0, 10.0))
    insecure = FakeLocator(secure=False)
    state = GeoAcquisition(insecure, ip, notifier=RecordingNotifier()).detect()
    assert state.status is GeoStatus.NOT_SECURE_CONTEXT
    assert not state.can_retry
    assert insecure.calls == []

    unsupported = FakeLocator(supported=False)
    state = GeoAcquisition(unsupported, ip, notifier=RecordingNotifier()).detect()
    assert state.status is GeoStatus.NOT_SUPPORTED
    assert not state.can_retry
    assert ip.calls == 0


def test_ip_failure_ends_in_failed_state():
    ip = FakeIpLookup(IpLookupError("quota exceeded"))
    state = GeoAcquisition(FakeLocator(), ip, notifier=RecordingNotifier()).detect()

    assert state.status is GeoStatus.FAILED
    assert state.can_retry
    assert "quota exceeded" in state.error


def test_deadline_skips_remaining_stages():
    clock = {"now": 0.0}

    def advance(_high):
        clock["now"] += 8.0

    ip = FakeIpLookup(IpLocation(10.0, 10.0))
    locator = FakeLocator(high=GeolocationError(GeolocationError.TIMEOUT), on_call=advance)
    acquisition = GeoAcquisition(
        locator, ip, notifier=RecordingNotifier(), deadline_s=5.0, clock=lambda: clock["now"]
    )

    state = acquisition.detect()

    assert len(locator.calls) == 1
    assert ip.calls == 0
    assert state.status is GeoStatus.FAILED


def test_concurrent_fallback_triggers_run_one_lookup():
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow_lookup():
        calls.append(1)
        entered.set()
        release.wait(5)
        return IpLocation(10.0, 20.0)

    acquisition = GeoAcquisition(FakeLocator(), slow_lookup, notifier=RecordingNotifier())
    for event_type in (
        GeoEventType.START,
        GeoEventType.PERMISSION_GRANTED,
        GeoEventType.GPS_TIMEOUT,
        GeoEventType.GPS_TIMEOUT,
    ):
        acquisition.dispatch(GeoEvent(event_type))
    assert acquisition.state.status is GeoStatus.FALLBACK_IP

    first = threading.Thread(target=acquisition.fallback_to_ip)
    first.start()
    assert entered.wait(5)

    late = acquisition.fallback_to_ip()
    assert late.status is GeoStatus.FALLBACK_IP

    release.set()
    first.join(5)
    assert calls == [1]
    assert acquisition.state.status is GeoStatus.VALIDATING
    assert acquisition.state.coordinate == Coordinate(10.0, 20.0)


def test_detect_rejected_while_tracking_is_active():
    notifier = RecordingNotifier()
    guard = LocationModeGuard()
    assert guard.acquire("tracking")
    locator = FakeLocator(high=Coordinate(1.0, 1.0))
    acquisition = GeoAcquisition(locator, FakeIpLookup(None), notifier=notifier, guard=guard)

    state = acquisition.detect()

    assert state.status is GeoStatus.IDLE
    assert locator.calls == []
    assert notifier.messages[0][0] == "warning"
