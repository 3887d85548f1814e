from dataclasses import dataclass, field
from typing import Iterable

from .components.metric import Metric

PERCENTILES = {"p50": 0.50, "p90": 0.90, "p95": 0.95, "p99": 0.99}
PASS_RATE = 99.9
WARN_RATE = 99.0
BANNER = "═" * 70
LATENCY_LABELS = (
    ("Mean", "mean"),
    ("P50", "p50"),
    ("P90", "p90"),
    ("P95", "p95"),
    ("P99", "p99"),
    ("Max", "max"),
)


def delivery_rate(received: int, expected: int) -> float:
    if expected == 0:
        return 100.0
    return received / expected * 100.0


@dataclass
class EventTypeStats:
    sent: int = 0
    expected: int = 0
    received: int = 0

    @property
    def missed(self) -> int:
        return self.expected - self.received

    @property
    def rate(self) -> float:
        return delivery_rate(self.received, self.expected)


@dataclass(frozen=True)
class LatencyStats:
    """
    Latency distribution in seconds. Percentiles use the nearest-rank element
    `sorted[int(p * n)]`, no interpolation.
    """

    count: int = 0
    mean: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    max: float = 0.0


def latency_stats(samples: Iterable[float]) -> LatencyStats:
    ordered = sorted(samples)
    if not ordered:
        return LatencyStats()

    n = len(ordered)
    percentiles = {name: ordered[int(n * p)] for name, p in PERCENTILES.items()}

    return LatencyStats(count=n, mean=sum(ordered) / n, max=ordered[-1], **percentiles)


@dataclass
class Report:
    connected_users: int = 0
    total_users: int = 0
    failed_connections: int = 0
    duration: float = 0.0
    by_type: dict[str, EventTypeStats] = field(default_factory=dict)
    latency: LatencyStats = field(default_factory=LatencyStats)
    events_sent: int = 0
    events_expected: int = 0
    events_received: int = 0

    @property
    def events_missed(self) -> int:
        return self.events_expected - self.events_received

    @property
    def delivery_rate(self) -> float:
        return delivery_rate(self.events_received, self.events_expected)

    @property
    def message_rate(self) -> float:
        """
        Confirmed actions per second over the measured duration.
        """
        if self.duration <= 0:
            return 0.0
        return self.events_sent / self.duration

    @property
    def verdict(self) -> str:
        if self.delivery_rate >= PASS_RATE:
            return "PASS"
        if self.delivery_rate >= WARN_RATE:
            return "WARN"
        return "FAIL"


def format_duration(seconds: float) -> str:
    if abs(seconds) < 1e-3:
        return f"{seconds * 1e6:.0f}µs"
    if abs(seconds) < 1:
        return f"{seconds * 1e3:.0f}ms"
    return f"{seconds:.1f}s"


def report_lines(report: Report) -> list[str]:
    connected_ratio = (
        report.connected_users / report.total_users * 100 if report.total_users else 0.0
    )

    lines = ["", BANNER, "LOAD TEST RESULTS", BANNER, ""]
    metrics = [
        Metric("Test duration", report.duration, "s"),
        Metric("Connected users", f"{report.connected_users}/{report.total_users}",
               f"({connected_ratio:.1f}%)"),
        Metric("Events sent", report.events_sent),
        Metric("Events expected", report.events_expected),
        Metric("Events received", report.events_received, cdt=report.events_missed == 0),
        Metric("Delivery rate", report.delivery_rate, "%", cdt=report.delivery_rate >= PASS_RATE),
    ]
    lines += [m.line() for m in metrics]

    lines += ["", "Event delivery by type:"]
    for event_type, stats in report.by_type.items():
        lines.append(
            f"  {event_type + ':':<20} {stats.sent} sent → {stats.expected} expected → "
            f"{stats.received} received ({stats.rate:.2f}%)"
        )
        if stats.missed > 0:
            lines.append(f"    missed events: {stats.missed}")

    if report.latency.count > 0:
        lines += ["", "Latency (event delivery):"]
        for label, name in LATENCY_LABELS:
            lines.append(f"  {label:<5} {format_duration(getattr(report.latency, name))}")

    lines += [
        "",
        Metric("Operation rate", report.message_rate * 60, "requests/min").line(),
        Metric("Operation rate", report.message_rate, "requests/s").line(),
        Metric(
            "Failed connections", report.failed_connections, cdt=report.failed_connections == 0
        ).line(),
        "",
        f"Result: {report.verdict} ({report.delivery_rate:.2f}% delivery rate)",
        BANNER,
    ]
    return lines


def print_report(report: Report):
    print("\n".join(report_lines(report)))


def rate_limit_lines() -> list[str]:
    return [
        "",
        BANNER,
        "⚠️  RATE LIMIT DETECTED",
        BANNER,
        "",
        "The server is rate limiting requests. To run load tests, you need to",
        "disable rate limiting by setting an environment variable:",
        "",
        "  DISABLE_RATE_LIMITING=true npm run dev",
        "",
        "Or if running in production mode:",
        "",
        "  DISABLE_RATE_LIMITING=true node build",
        "",
        BANNER,
    ]
