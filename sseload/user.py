import asyncio
import logging
import random
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .api import APIError, BoardAPI, RateLimitError
from .components.config_parser import Parameters
from .components.decorators import connectguard
from .components.logs import configure_logging
from .components.metrics import ACTIONS
from .components.ticker import Ticker
from .correlator import (
    CARD_CREATED,
    CARD_GROUPED_ONTO,
    CARD_UPDATED,
    CARDS_GROUPED,
    VOTE_CHANGED,
    EventCorrelator,
)
from .stream import EventStream, StreamError

configure_logging()
logger = logging.getLogger(__name__)

PASSWORD = "testpass123"


class ActionKind(Enum):
    CREATE_CARD = "create_card"
    MOVE_CARD = "move_card"
    VOTE = "vote"
    GROUP_CARDS = "group_cards"
    GROUP_CARD_ONTO = "group_card_onto"


ACTION_WEIGHTS: dict[ActionKind, int] = {
    ActionKind.CREATE_CARD: 40,
    ActionKind.MOVE_CARD: 20,
    ActionKind.VOTE: 20,
    ActionKind.GROUP_CARDS: 10,
    ActionKind.GROUP_CARD_ONTO: 10,
}


def pick_action(weights: dict[ActionKind, int] = ACTION_WEIGHTS, rng=random) -> ActionKind:
    """
    Weighted draw: a uniform integer in [0, total) is located in the
    cumulative weight table.
    """
    roll = rng.randrange(sum(weights.values()))

    cumulative = 0
    for kind, weight in weights.items():
        cumulative += weight
        if roll < cumulative:
            return kind

    raise ValueError("Weight table is empty")


class SetupError(Exception):
    pass


async def wait_or_stop(awaitable: Awaitable, *stops: asyncio.Event) -> tuple[bool, Any]:
    """
    Await `awaitable` unless one of the `stops` events fires first.
    Returns (True, result) on completion, (False, None) when stopped.
    A result that is ready when a stop fires is still returned.
    """
    task = asyncio.ensure_future(awaitable)
    waiters = [asyncio.ensure_future(stop.wait()) for stop in stops]

    try:
        await asyncio.wait({task, *waiters}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        if not task.done():
            task.cancel()

    if task.done() and not task.cancelled():
        return True, task.result()
    return False, None


class UserSimulator:
    """
    One simulated board participant: an authenticated API session, an event
    stream, a listener feeding the correlator and an action loop driven by the
    run-wide ticker.
    """

    def __init__(
        self,
        user_id: int,
        board_id: str,
        column_ids: list[str],
        correlator: EventCorrelator,
        params: Optional[Parameters] = None,
        rng: Optional[random.Random] = None,
    ):
        self.params = params or Parameters()

        self.id = user_id
        self.username = f"testuser{user_id}_{time.time_ns() % 1000000}"
        self.email = f"{self.username}@loadtest.local"
        self.password = PASSWORD

        self.board_id = board_id
        self.column_ids = list(column_ids)
        self.card_ids: list[str] = []
        self.client_id = ""

        self.correlator = correlator
        self.api = BoardAPI(self.params.server.url)
        self.stream: Optional[EventStream] = None
        self.events: asyncio.Queue = asyncio.Queue(maxsize=self.params.load.event_queue_size)
        self.rng = rng or random.Random()

        self.connected = False
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

        self.actions: dict[ActionKind, Callable[[], Awaitable[bool]]] = {
            ActionKind.CREATE_CARD: self.create_card,
            ActionKind.MOVE_CARD: self.move_card,
            ActionKind.VOTE: self.vote_on_card,
            ActionKind.GROUP_CARDS: self.group_cards,
            ActionKind.GROUP_CARD_ONTO: self.group_card_onto,
        }

    async def setup(self):
        """
        Authenticate, open the event stream, wait for its handshake and join the
        board. Raises SetupError on failure (RateLimitError is left untouched).
        """
        try:
            await self._authenticate()
            await self._connect_stream()
            await self._join()
        except Exception:
            await self._release()
            raise

        self.connected = True

    async def _authenticate(self):
        try:
            await self.api.register(self.email, self.username, self.password)
            return
        except RateLimitError:
            raise
        except APIError as err:
            logger.debug("Registration failed, trying login", {"user": self.id, "error": str(err)})

        try:
            await self.api.login(self.email, self.password)
        except RateLimitError:
            raise
        except APIError as err:
            raise SetupError(f"authentication failed: {err}") from err

    async def _connect_stream(self):
        url = self.params.server.url
        self.stream = EventStream(self.api.session, url, self.board_id, self.events)

        try:
            await self.stream.connect()
            timeout = self.params.load.handshake_timeout
            self.client_id = await self.stream.wait_for_connection(timeout)
        except StreamError as err:
            raise SetupError(f"stream connection failed: {err}") from err

    async def _join(self):
        try:
            await self.api.join_board(self.client_id, self.board_id, self.username)
        except RateLimitError:
            raise
        except APIError as err:
            raise SetupError(f"join board failed: {err}") from err

    def start(
        self,
        run_stop: asyncio.Event,
        ticker: Ticker,
        on_fatal: Optional[Callable[[Exception], None]] = None,
    ):
        self._tasks = [
            asyncio.create_task(self.listen_for_events(), name=f"listener-{self.id}"),
            asyncio.create_task(
                self.action_loop(run_stop, ticker, on_fatal), name=f"actions-{self.id}"
            ),
        ]

    async def listen_for_events(self):
        while True:
            received, event = await wait_or_stop(self.events.get(), self._stop)
            if not received:
                return

            # own broadcasts are credited like anybody else's
            self.correlator.record_received(event.type, event.key, self.id, event.received_at)

    async def action_loop(
        self,
        run_stop: asyncio.Event,
        ticker: Ticker,
        on_fatal: Optional[Callable[[Exception], None]] = None,
    ):
        while True:
            ticked, _ = await wait_or_stop(ticker.wait(), run_stop, self._stop)
            if not ticked or run_stop.is_set() or self._stop.is_set():
                return

            try:
                await self.perform_random_action()
            except RateLimitError as err:
                logger.error(
                    "Rate limited while performing an action", {"user": self.id, "error": str(err)}
                )
                if on_fatal is not None:
                    on_fatal(err)
                return

    @connectguard
    async def perform_random_action(self) -> Optional[ActionKind]:
        kind = pick_action(rng=self.rng)

        try:
            recorded = await self.actions[kind]()
        except RateLimitError:
            ACTIONS.labels(kind=kind.value, result="rate_limited").inc()
            raise
        except APIError as err:
            ACTIONS.labels(kind=kind.value, result="failed").inc()
            logger.warning(
                "Action failed", {"user": self.id, "action": kind.value, "error": str(err)}
            )
            return kind

        ACTIONS.labels(kind=kind.value, result="sent" if recorded else "skipped").inc()
        return kind

    async def create_card(self) -> bool:
        if not self.column_ids:
            return False

        column_id = self.rng.choice(self.column_ids)
        content = f"Test card from user {self.id} at {datetime.now():%H:%M:%S}"

        card = await self.api.create_card(self.board_id, column_id, content)
        self.correlator.record_sent(CARD_CREATED, card.id, self.id)
        self.card_ids.append(card.id)

        logger.debug("Card created", {"user": self.id, "card": card.id})
        return True

    async def move_card(self) -> bool:
        if not self.card_ids or not self.column_ids:
            return False

        card_id = self.rng.choice(self.card_ids)
        column_id = self.rng.choice(self.column_ids)

        await self.api.move_card(card_id, column_id)
        self.correlator.record_sent(CARD_UPDATED, card_id, self.id)

        logger.debug("Card moved", {"user": self.id, "card": card_id, "column": column_id})
        return True

    async def vote_on_card(self) -> bool:
        board = await self.api.get_board(self.board_id)
        cards = board.cards
        if not cards:
            return False

        card_id = self.rng.choice(cards).id

        await self.api.vote_on_card(card_id)
        self.correlator.record_sent(VOTE_CHANGED, card_id, self.id)

        logger.debug("Voted on card", {"user": self.id, "card": card_id})
        return True

    async def group_cards(self) -> bool:
        board = await self.api.get_board(self.board_id)

        for column in board.columns:
            ungrouped = [card.id for card in column.cards if not card.grouped]
            if len(ungrouped) < 2:
                continue

            card_ids = ungrouped[: min(2 + self.rng.randrange(2), len(ungrouped))]
            group_id = f"group-{self.id}-{time.time_ns()}"

            await self.api.group_cards(self.board_id, card_ids, group_id)
            self.correlator.record_sent(CARDS_GROUPED, group_id, self.id)

            logger.debug("Cards grouped", {"user": self.id, "cards": card_ids, "group": group_id})
            return True

        return False

    async def group_card_onto(self) -> bool:
        if not self.card_ids:
            return False

        board = await self.api.get_board(self.board_id)
        own = set(self.card_ids)

        card = next((c for c in board.cards if c.id in own and not c.grouped), None)
        if card is None:
            return False

        column = board.column(card.column_id)
        target = next((c for c in column.cards if c.id != card.id), None) if column else None
        if target is None:
            return False

        await self.api.group_card_onto(card.id, target.id)
        self.correlator.record_sent(CARD_GROUPED_ONTO, card.id, self.id)

        logger.debug("Card grouped onto", {"user": self.id, "card": card.id, "target": target.id})
        return True

    async def stop(self):
        """
        Stop both loops, close the stream and mark the user disconnected.
        Further calls are no-ops.
        """
        if self._stop.is_set():
            return
        self._stop.set()

        self.connected = False
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("User task failed", {"task": task.get_name(), "error": str(result)})

        await self._release()

    async def _release(self):
        if self.stream is not None:
            await self.stream.close()
        await self.api.close()
