from dataclasses import dataclass

from .base_classes import ExplicitParams


@dataclass(init=False)
class ServerParams(ExplicitParams):
    url: str = "http://localhost:5173"


@dataclass(init=False)
class LoadParams(ExplicitParams):
    users: int = 45
    duration: float = 300.0
    requests_per_minute: float = 30.0
    grace_period: float = 5.0
    stagger: float = 0.1
    handshake_timeout: float = 10.0
    monitor_interval: float = 10.0
    event_queue_size: int = 100
    warmup_delay: float = 2.0
    startup_delay: float = 3.0


@dataclass(init=False)
class AdminParams(ExplicitParams):
    email: str = ""
    password: str = ""


@dataclass(init=False)
class LogsParams(ExplicitParams):
    verbose: bool = False
    debug: bool = False


@dataclass(init=False)
class MetricsParams(ExplicitParams):
    port: int = 0


@dataclass(init=False)
class Parameters(ExplicitParams):
    server: ServerParams
    load: LoadParams
    admin: AdminParams
    logs: LogsParams
    metrics: MetricsParams
