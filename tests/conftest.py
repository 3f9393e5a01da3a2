import pytest

from fakes import FakeLedger, FakePaymentClient, SleepRecorder
from solver.alerts import AlertSink


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def payments():
    return FakePaymentClient()


@pytest.fixture
def alert_sink():
    return AlertSink()


@pytest.fixture
def no_sleep():
    return SleepRecorder()
