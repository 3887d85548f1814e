import asyncio
import random
from collections import Counter

import pytest
from pytest_mock import MockerFixture

from sseload.api import APIError, RateLimitError
from sseload.api.response_objects import Board, Card, Column
from sseload.components.config_parser import Parameters
from sseload.components.ticker import Ticker
from sseload.correlator import EventCorrelator
from sseload.stream import StreamError, StreamEvent
from sseload.user import (
    ACTION_WEIGHTS,
    ActionKind,
    SetupError,
    UserSimulator,
    pick_action,
    wait_or_stop,
)


class FixedRoll:
    def __init__(self, value: int):
        self.value = value
        self.bounds = []

    def randrange(self, stop: int) -> int:
        self.bounds.append(stop)
        return self.value

    def choice(self, seq):
        return seq[0]


@pytest.mark.parametrize(
    "roll,kind",
    [
        (0, ActionKind.CREATE_CARD),
        (39, ActionKind.CREATE_CARD),
        (40, ActionKind.MOVE_CARD),
        (59, ActionKind.MOVE_CARD),
        (60, ActionKind.VOTE),
        (79, ActionKind.VOTE),
        (80, ActionKind.GROUP_CARDS),
        (89, ActionKind.GROUP_CARDS),
        (90, ActionKind.GROUP_CARD_ONTO),
        (99, ActionKind.GROUP_CARD_ONTO),
    ],
)
def test_pick_action_boundaries(roll: int, kind: ActionKind):
    rng = FixedRoll(roll)

    assert pick_action(rng=rng) == kind
    assert rng.bounds == [100]


def test_pick_action_distribution():
    rng = random.Random(1234)
    draws = Counter(pick_action(rng=rng) for _ in range(20000))

    for kind, weight in ACTION_WEIGHTS.items():
        assert draws[kind] / 20000 == pytest.approx(weight / 100, abs=0.02)


def test_pick_action_custom_table():
    weights = {ActionKind.VOTE: 1, ActionKind.MOVE_CARD: 0}

    assert pick_action(weights, rng=random.Random(0)) == ActionKind.VOTE


@pytest.fixture
async def user(params: Parameters, correlator: EventCorrelator):
    user = UserSimulator(1, "b1", ["col1", "col2"], correlator, params, rng=random.Random(0))
    user.connected = True
    yield user
    await user.stop()


def board(*columns: Column) -> Board:
    return Board(id="b1", columns=list(columns))


def column(column_id: str, *cards: Card) -> Column:
    for card in cards:
        card.column_id = column_id
    return Column(id=column_id, cards=list(cards))


def test_identity(params: Parameters, correlator: EventCorrelator):
    user = UserSimulator(7, "b1", [], correlator, params)

    assert user.username.startswith("testuser7_")
    assert user.email == f"{user.username}@loadtest.local"
    assert user.password == "testpass123"
    assert user.events.maxsize == params.load.event_queue_size


@pytest.mark.asyncio
async def test_create_card(user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture):
    create_card = mocker.patch.object(user.api, "create_card", return_value=Card(id="c1"))

    assert await user.create_card()

    board_id, column_id, content = create_card.call_args.args
    assert board_id == "b1"
    assert column_id in ("col1", "col2")
    assert content.startswith("Test card from user 1 at ")
    assert user.card_ids == ["c1"]
    assert correlator.get_stats() == (1, 0)


@pytest.mark.asyncio
async def test_create_card_sent_before_broadcast(
    user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture
):
    correlator.set_connected_users(2)
    mocker.patch.object(user.api, "create_card", return_value=Card(id="c1"))

    await user.create_card()
    correlator.record_received("card_created", "c1", 2, 1.0)

    assert correlator.pending == ()
    assert correlator.get_stats() == (1, 1)


@pytest.mark.asyncio
async def test_move_card_needs_own_cards(user: UserSimulator, mocker: MockerFixture):
    move_card = mocker.patch.object(user.api, "move_card")

    assert not await user.move_card()
    move_card.assert_not_called()


@pytest.mark.asyncio
async def test_move_card(user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture):
    user.card_ids = ["c1"]
    move_card = mocker.patch.object(user.api, "move_card")

    assert await user.move_card()

    card_id, column_id = move_card.call_args.args
    assert card_id == "c1" and column_id in ("col1", "col2")
    assert correlator.generate_report(1).by_type["card_updated"].sent == 1


@pytest.mark.asyncio
async def test_vote_on_card(user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture):
    mocker.patch.object(user.api, "get_board", return_value=board(column("col1", Card(id="c9"))))
    vote = mocker.patch.object(user.api, "vote_on_card")

    assert await user.vote_on_card()

    vote.assert_called_once_with("c9")
    assert list(correlator.generate_report(1).by_type) == ["vote_changed"]


@pytest.mark.asyncio
async def test_vote_on_empty_board(user: UserSimulator, mocker: MockerFixture):
    mocker.patch.object(user.api, "get_board", return_value=board(column("col1")))
    vote = mocker.patch.object(user.api, "vote_on_card")

    assert not await user.vote_on_card()
    vote.assert_not_called()


@pytest.mark.asyncio
async def test_group_cards(user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture):
    mocker.patch.object(
        user.api,
        "get_board",
        return_value=board(
            column("col1", Card(id="a"), Card(id="b", group_id="g0")),
            column("col2", Card(id="c"), Card(id="d"), Card(id="e")),
        ),
    )
    group = mocker.patch.object(user.api, "group_cards")

    assert await user.group_cards()

    board_id, card_ids, group_id = group.call_args.args
    assert board_id == "b1"
    assert card_ids in (["c", "d"], ["c", "d", "e"])
    assert group_id.startswith("group-1-")

    correlator.record_received("cards_grouped", group_id, 1, 1.0)
    assert correlator.get_stats() == (1, 1)


@pytest.mark.asyncio
async def test_group_cards_needs_two_ungrouped(user: UserSimulator, mocker: MockerFixture):
    mocker.patch.object(
        user.api,
        "get_board",
        return_value=board(column("col1", Card(id="a"), Card(id="b", group_id="g"))),
    )
    group = mocker.patch.object(user.api, "group_cards")

    assert not await user.group_cards()
    group.assert_not_called()


@pytest.mark.asyncio
async def test_group_card_onto(user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture):
    user.card_ids = ["mine", "grouped"]
    mocker.patch.object(
        user.api,
        "get_board",
        return_value=board(
            column("col1", Card(id="grouped", group_id="g"), Card(id="other")),
            column("col2", Card(id="mine"), Card(id="target")),
        ),
    )
    group_onto = mocker.patch.object(user.api, "group_card_onto")

    assert await user.group_card_onto()

    group_onto.assert_called_once_with("mine", "target")
    correlator.record_received("card_grouped_onto", "mine", 2, 1.0)
    assert correlator.get_stats() == (1, 1)


@pytest.mark.asyncio
async def test_group_card_onto_needs_target(user: UserSimulator, mocker: MockerFixture):
    user.card_ids = ["mine"]
    mocker.patch.object(user.api, "get_board", return_value=board(column("col1", Card(id="mine"))))
    group_onto = mocker.patch.object(user.api, "group_card_onto")

    assert not await user.group_card_onto()
    group_onto.assert_not_called()


@pytest.mark.asyncio
async def test_random_action_skipped_when_disconnected(user: UserSimulator, mocker: MockerFixture):
    user.connected = False
    create_card = mocker.patch.object(user, "create_card")

    assert await user.perform_random_action() is None
    create_card.assert_not_called()


@pytest.mark.asyncio
async def test_random_action_failure_is_not_recorded(
    user: UserSimulator, correlator: EventCorrelator, mocker: MockerFixture
):
    user.rng = FixedRoll(0)
    error = APIError("create card failed", 500, "boom")
    mocker.patch.object(user.api, "create_card", side_effect=error)

    assert await user.perform_random_action() == ActionKind.CREATE_CARD
    assert correlator.get_stats() == (0, 0)
    assert user.card_ids == []


@pytest.mark.asyncio
async def test_random_action_rate_limited(user: UserSimulator, mocker: MockerFixture):
    user.rng = FixedRoll(0)
    error = RateLimitError("create card failed", 429, "")
    mocker.patch.object(user.api, "create_card", side_effect=error)

    with pytest.raises(RateLimitError):
        await user.perform_random_action()


@pytest.fixture
def fake_stream(mocker: MockerFixture):
    stream = mocker.MagicMock()
    stream.connect = mocker.AsyncMock()
    stream.wait_for_connection = mocker.AsyncMock(return_value="client-1")
    stream.close = mocker.AsyncMock()
    mocker.patch("sseload.user.EventStream", return_value=stream)
    return stream


@pytest.mark.asyncio
async def test_setup_falls_back_to_login(user: UserSimulator, fake_stream, mocker: MockerFixture):
    user.connected = False
    mocker.patch.object(user.api, "register", side_effect=APIError("register failed", 409, "exists"))
    login = mocker.patch.object(user.api, "login", return_value="cookie")
    join = mocker.patch.object(user.api, "join_board")

    await user.setup()

    login.assert_called_once_with(user.email, "testpass123")
    join.assert_called_once_with("client-1", "b1", user.username)
    fake_stream.wait_for_connection.assert_called_once_with(1.0)
    assert user.client_id == "client-1"
    assert user.connected


@pytest.mark.asyncio
async def test_setup_login_failure(user: UserSimulator, fake_stream, mocker: MockerFixture):
    user.connected = False
    mocker.patch.object(user.api, "register", side_effect=APIError("register failed", 409, "exists"))
    mocker.patch.object(user.api, "login", side_effect=APIError("login failed", 401, "bad password"))

    with pytest.raises(SetupError, match="authentication failed"):
        await user.setup()

    assert not user.connected


@pytest.mark.asyncio
async def test_setup_rate_limit_is_not_wrapped(user: UserSimulator, fake_stream, mocker: MockerFixture):
    user.connected = False
    mocker.patch.object(user.api, "register", side_effect=RateLimitError("register failed", 429, ""))

    with pytest.raises(RateLimitError):
        await user.setup()


@pytest.mark.asyncio
async def test_setup_handshake_timeout(user: UserSimulator, fake_stream, mocker: MockerFixture):
    user.connected = False
    mocker.patch.object(user.api, "register", return_value="cookie")
    fake_stream.wait_for_connection.side_effect = StreamError("timeout waiting for stream handshake")
    join = mocker.patch.object(user.api, "join_board")

    with pytest.raises(SetupError, match="stream connection failed"):
        await user.setup()

    join.assert_not_called()
    fake_stream.close.assert_called()
    assert not user.connected


@pytest.mark.asyncio
async def test_listener_records_deliveries(user: UserSimulator, correlator: EventCorrelator):
    run_stop = asyncio.Event()
    user.start(run_stop, Ticker(60))

    user.events.put_nowait(StreamEvent("card_created", "c1", 3.0))
    await asyncio.sleep(0.05)

    assert [(e.key, e.receiver_id) for e in correlator.pending] == [("c1", 1)]

    await user.stop()
    assert not user.connected


@pytest.mark.asyncio
async def test_wait_or_stop_keeps_ready_result():
    events = asyncio.Queue()
    events.put_nowait(StreamEvent("card_created", "c1", 3.0))
    stop = asyncio.Event()
    stop.set()

    received, event = await wait_or_stop(events.get(), stop)

    assert received
    assert event.key == "c1"
    assert events.empty()


@pytest.mark.asyncio
async def test_wait_or_stop_when_stopped():
    events = asyncio.Queue()
    stop = asyncio.Event()
    stop.set()

    assert await wait_or_stop(events.get(), stop) == (False, None)


@pytest.mark.asyncio
async def test_listener_records_delivery_queued_at_stop(
    user: UserSimulator, correlator: EventCorrelator
):
    user.start(asyncio.Event(), Ticker(60))
    user.events.put_nowait(StreamEvent("card_created", "c1", 3.0))

    await user.stop()

    assert [(e.key, e.receiver_id) for e in correlator.pending] == [("c1", 1)]
    assert user.events.empty()


@pytest.mark.asyncio
async def test_action_loop_follows_ticker(user: UserSimulator, mocker: MockerFixture):
    action = mocker.patch.object(user, "perform_random_action")
    ticker = Ticker(0.01)
    ticker.start()
    run_stop = asyncio.Event()

    user.start(run_stop, ticker)
    await asyncio.sleep(0.1)
    run_stop.set()
    await asyncio.sleep(0.02)
    calls = action.call_count
    await asyncio.sleep(0.05)

    assert calls > 0
    assert action.call_count == calls
    await ticker.stop()


@pytest.mark.asyncio
async def test_action_loop_rate_limit_is_fatal(user: UserSimulator, mocker: MockerFixture):
    error = RateLimitError("vote failed", 429, "")
    mocker.patch.object(user, "perform_random_action", side_effect=error)
    ticker = Ticker(0.01)
    ticker.start()
    on_fatal = mocker.MagicMock()

    user.start(asyncio.Event(), ticker, on_fatal)
    await asyncio.sleep(0.05)

    on_fatal.assert_called_once()
    assert isinstance(on_fatal.call_args.args[0], RateLimitError)
    await ticker.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent(user: UserSimulator, mocker: MockerFixture):
    close = mocker.spy(user.api, "close")
    user.start(asyncio.Event(), Ticker(60))

    await user.stop()
    await user.stop()

    assert close.call_count == 1
    assert not user.connected
