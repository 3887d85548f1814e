import pytest
import yaml

from sseload.components.config_parser import Parameters
from sseload.correlator import EventCorrelator

params_yaml: str = """
    server:
        url: http://127.0.0.1:5173
    load:
        users: 3
        duration: 0.2
        requests_per_minute: 600
        grace_period: 0
        stagger: 0
        handshake_timeout: 1
        monitor_interval: 0.05
        event_queue_size: 4
        warmup_delay: 0
        startup_delay: 0
    admin:
        email: admin@loadtest.local
        password: secret
"""


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def at(self, now: float) -> "FakeClock":
        self.now = now
        return self


@pytest.fixture
def params() -> Parameters:
    return Parameters(yaml.safe_load(params_yaml))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def correlator(clock: FakeClock) -> EventCorrelator:
    return EventCorrelator(clock=clock)
