from halal_finder.errors import (
    ErrorKind,
    ProxyExhaustedError,
    SourceNotConfiguredError,
    UpstreamError,
)
from halal_finder.notifications import Notifier
from halal_finder.retry import ClientRetryOrchestrator, classify_error


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

    def levels(self):
        return [level for level, _ in self.messages]


class Flaky:
    def __init__(self, failures, value="done"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


def make_orchestrator():
    notifier = RecordingNotifier()
    sleeps = []
    orchestrator = ClientRetryOrchestrator(notifier=notifier, sleep=sleeps.append)
    return orchestrator, notifier, sleeps


def test_classify_prefers_structured_kind():
    assert classify_error(UpstreamError("x", status=503)) is ErrorKind.SERVICE_RECOVERING
    assert classify_error(UpstreamError("x", status=401)) is ErrorKind.AUTH
    assert classify_error(ProxyExhaustedError("PROXY_ERROR: timed out")) is ErrorKind.SERVICE_RECOVERING
    assert classify_error(SourceNotConfiguredError("no key")) is ErrorKind.NOT_CONFIGURED


def test_classify_falls_back_to_keywords():
    assert classify_error(RuntimeError("Unauthorized caller")) is ErrorKind.AUTH
    assert classify_error(RuntimeError("Too Many Requests")) is ErrorKind.RATE_LIMITED
    assert classify_error(RuntimeError("backend is stopped")) is ErrorKind.SERVICE_RECOVERING
    assert classify_error(RuntimeError("replica rejected the call")) is ErrorKind.REPLICATION
    assert classify_error(RuntimeError("Failed to fetch")) is ErrorKind.NETWORK
    assert classify_error(RuntimeError("request timed out")) is ErrorKind.TIMEOUT
    assert classify_error(RuntimeError("boom")) is ErrorKind.UNKNOWN


def test_outage_exhausts_retries_and_enters_safe_mode():
    orchestrator, notifier, sleeps = make_orchestrator()
    op = Flaky([UpstreamError("HTTP 503", status=503) for _ in range(5)])

    outcome = orchestrator.execute(op, "overpass search")

    assert not outcome.ok
    assert outcome.attempts == 3
    assert op.calls == 3
    assert sleeps == [2.0, 4.0]
    assert outcome.kind is ErrorKind.SERVICE_RECOVERING
    assert orchestrator.safe_mode
    assert not orchestrator.is_retrying
    assert notifier.levels() == ["info", "info", "error"]


def test_success_after_retry_reports_connection_restored():
    orchestrator, notifier, sleeps = make_orchestrator()
    orchestrator.safe_mode = True
    op = Flaky([RuntimeError("network error")], value=[1, 2])

    outcome = orchestrator.execute(op)

    assert outcome.ok
    assert outcome.value == [1, 2]
    assert outcome.attempts == 2
    assert sleeps == [2.0]
    assert not orchestrator.safe_mode
    assert notifier.messages[-1][0] == "success"
    assert "Connection restored" in notifier.messages[-1][1]


def test_terminal_kinds_are_not_retried():
    orchestrator, notifier, sleeps = make_orchestrator()
    op = Flaky([UpstreamError("HTTP 403", status=403)])

    outcome = orchestrator.execute(op)

    assert not outcome.ok
    assert outcome.attempts == 1
    assert sleeps == []
    assert outcome.kind is ErrorKind.AUTH
    assert not orchestrator.safe_mode
    assert notifier.levels() == ["error"]


def test_not_configured_fails_silently():
    orchestrator, notifier, sleeps = make_orchestrator()
    outcome = orchestrator.execute(Flaky([SourceNotConfiguredError("no key")]))

    assert not outcome.ok
    assert outcome.kind is ErrorKind.NOT_CONFIGURED
    assert outcome.attempts == 1
    assert notifier.messages == []


def test_network_failure_does_not_enter_safe_mode():
    orchestrator, _, sleeps = make_orchestrator()
    outcome = orchestrator.execute(Flaky([UpstreamError("refused") for _ in range(3)]))

    assert outcome.kind is ErrorKind.NETWORK
    assert outcome.attempts == 3
    assert not orchestrator.safe_mode
    orchestrator.safe_mode = True
    orchestrator.exit_safe_mode()
    assert not orchestrator.safe_mode
