"""
Bookkeeping of the actions sent by simulated users and of the broadcasts they
trigger on every connected user's event stream.

A broadcast may reach a listener before the sender has recorded its action
(the API answer and the stream notification race each other), so received
events without a sent counterpart are parked in a pending buffer and matched
as soon as the sent event shows up.
"""

import itertools
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

from .components.logs import configure_logging
from .report import EventTypeStats, Report, latency_stats

configure_logging()
logger = logging.getLogger(__name__)

CARD_CREATED = "card_created"
CARD_UPDATED = "card_updated"
VOTE_CHANGED = "vote_changed"
CARDS_GROUPED = "cards_grouped"
CARD_GROUPED_ONTO = "card_grouped_onto"


@dataclass(frozen=True)
class SentEvent:
    id: str
    type: str
    key: str
    sender_id: int
    sent_at: float
    connected_users: int


@dataclass(frozen=True)
class ReceivedEvent:
    type: str
    key: str
    receiver_id: int
    received_at: float


class EventCorrelator:
    """
    Shared ledger of sent events and their deliveries.

    All operations are serialised behind a single lock and may be called from
    any number of coroutines or threads. Nothing in here raises: unmatched sent
    events only show up as missed deliveries in the report.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._sequence = itertools.count()

        self._sent: dict[str, SentEvent] = {}
        self._sent_by_key: dict[tuple[str, str], list[str]] = defaultdict(list)
        self._deliveries: dict[str, dict[int, float]] = {}
        self._pending: list[ReceivedEvent] = []
        self._latencies: list[float] = []
        self._connected_users = 0

    def set_connected_users(self, count: int):
        with self._lock:
            self._connected_users = count

    def record_sent(self, event_type: str, key: str, sender_id: int) -> str:
        """
        Record an action confirmed by the API and return its event id.

        The expected fan-out is frozen to the number of users connected right
        now. Pending deliveries for the same (type, key) are moved into this
        event's ledger.
        """
        with self._lock:
            sent_at = self._clock()
            event_id = f"{event_type}_{key}_{time.time_ns()}_{sender_id}_{next(self._sequence)}"

            event = SentEvent(event_id, event_type, key, sender_id, sent_at, self._connected_users)
            self._sent[event_id] = event
            self._sent_by_key[(event_type, key)].append(event_id)
            deliveries = self._deliveries[event_id] = {}

            remaining: list[ReceivedEvent] = []
            for pending in self._pending:
                if pending.type != event_type or pending.key != key:
                    remaining.append(pending)
                    continue

                if pending.receiver_id in deliveries:
                    continue

                deliveries[pending.receiver_id] = pending.received_at
                latency = pending.received_at - sent_at
                self._latencies.append(latency)

                logger.debug(
                    "Matched pending event",
                    {
                        "type": event_type,
                        "key": key,
                        "receiver": pending.receiver_id,
                        "latency_ms": latency * 1000,
                    },
                )

            self._pending = remaining

            return event_id

    def record_received(self, event_type: str, key: str, receiver_id: int, received_at: float):
        """
        Record a broadcast decoded from `receiver_id`'s stream.

        The delivery is credited to the most recent sent event with the same
        (type, key). A receiver is credited at most once per event. Without
        any matching sent event yet, the delivery waits in the pending buffer.
        """
        with self._lock:
            event = self._latest_sent(event_type, key)

            if event is None:
                self._pending.append(ReceivedEvent(event_type, key, receiver_id, received_at))
                logger.debug(
                    "Pending event",
                    {"type": event_type, "key": key, "receiver": receiver_id},
                )
                return

            deliveries = self._deliveries[event.id]
            if receiver_id in deliveries:
                return

            deliveries[receiver_id] = received_at
            latency = received_at - event.sent_at
            self._latencies.append(latency)

            logger.debug(
                "Event matched",
                {
                    "type": event_type,
                    "key": key,
                    "receiver": receiver_id,
                    "latency_ms": latency * 1000,
                },
            )

    def _latest_sent(self, event_type: str, key: str) -> Optional[SentEvent]:
        candidates = self._sent_by_key.get((event_type, key))
        if not candidates:
            return None

        # on equal timestamps the last recorded event wins
        return max(
            (self._sent[event_id] for event_id in reversed(candidates)),
            key=lambda event: event.sent_at,
        )

    def get_stats(self) -> tuple[int, int]:
        """
        Return (sent events, recorded deliveries) for live monitoring.
        """
        with self._lock:
            received = sum(len(receivers) for receivers in self._deliveries.values())
            return len(self._sent), received

    def generate_report(self, total_connected_users: int) -> Report:
        with self._lock:
            by_type: dict[str, EventTypeStats] = {}

            for event_id, event in self._sent.items():
                stats = by_type.setdefault(event.type, EventTypeStats())
                stats.sent += 1
                stats.expected += event.connected_users
                stats.received += len(self._deliveries.get(event_id, {}))

            report = Report(
                connected_users=total_connected_users,
                by_type=dict(sorted(by_type.items())),
                latency=latency_stats(self._latencies),
                events_sent=len(self._sent),
                events_expected=sum(s.expected for s in by_type.values()),
                events_received=sum(s.received for s in by_type.values()),
            )

        return report

    @property
    def pending(self) -> tuple[ReceivedEvent, ...]:
        with self._lock:
            return tuple(self._pending)

    @property
    def latencies(self) -> tuple[float, ...]:
        with self._lock:
            return tuple(self._latencies)

    def deliveries(self, event_id: str) -> dict[int, float]:
        with self._lock:
            return dict(self._deliveries.get(event_id, {}))
