import asyncio
import logging
from datetime import datetime
from typing import Optional

from .api import APIError, BoardAPI, RateLimitError
from .components.config_parser import Parameters
from .components.logs import configure_logging
from .components.metrics import CONNECTED_USERS, EVENTS_RECEIVED, EVENTS_SENT, PENDING_EVENTS
from .components.ticker import Ticker
from .correlator import EventCorrelator
from .report import BANNER, Report
from .user import SetupError, UserSimulator

configure_logging()
logger = logging.getLogger(__name__)

ADMIN_NAME = "Admin User"
BOARD_TEMPLATE = "basic"

SCENE_FLAGS = [
    "allow_add_cards",
    "allow_edit_cards",
    "allow_move_cards",
    "allow_group_cards",
    "allow_voting",
    "show_votes",
    "allow_comments",
    "show_comments",
]
# flags the simulated actions depend on
REQUIRED_FLAGS = ["allow_add_cards", "allow_move_cards", "allow_group_cards", "allow_voting"]


def progress(symbol: str, message: str):
    print(f"[Setup] {message}... {symbol}")


class LoadTest:
    """
    Drives one run: bootstraps the board with an admin account, spawns the
    simulated users behind a single shared ticker, monitors the run, then
    stops everything and builds the report from the correlator.
    """

    def __init__(
        self,
        params: Parameters,
        correlator: Optional[EventCorrelator] = None,
        admin: Optional[BoardAPI] = None,
    ):
        self.params = params
        self.correlator = correlator or EventCorrelator()
        self.admin = admin or BoardAPI(params.server.url)

        self.series_id = ""
        self.board_id = ""
        self.column_ids: list[str] = []

        self.users: list[UserSimulator] = []
        self.failed_connections = 0
        self.ticker: Optional[Ticker] = None

        self.stop_event = asyncio.Event()
        self._end = asyncio.Event()
        self._fatal: Optional[Exception] = None
        self._started_at = 0.0

    @property
    def active_users(self) -> int:
        return sum(1 for user in self.users if user.connected)

    def interrupt(self):
        """
        Ends the measured window early. Safe to call from a signal handler.
        """
        if not self._end.is_set():
            print("\n\n⏹ Interrupted by user")
        self._end.set()

    def abort(self, err: Exception):
        if self._fatal is None:
            self._fatal = err
        self._end.set()

    async def run(self) -> Report:
        loop = asyncio.get_running_loop()
        load = self.params.load

        try:
            await asyncio.sleep(load.warmup_delay)
            await self.setup_board()

            self.print_board_url()
            print(f"⏳ Starting user connections in {load.startup_delay:g} seconds...\n")
            await asyncio.sleep(load.startup_delay)

            self.ticker = Ticker.per_minute(load.requests_per_minute)
            self.ticker.start()

            await self.spawn_users()

            print("\n🔍 Starting monitoring...\n")
            self._started_at = loop.time()
            monitor = asyncio.create_task(self.monitor())
            try:
                await self.wait_for_end()
            finally:
                monitor.cancel()
            duration = loop.time() - self._started_at

            print("\n[Cleanup] Stopping event generation...")
            self.stop_event.set()
            await self.ticker.stop()

            print(f"[Cleanup] Grace period: waiting {load.grace_period:g}s for pending events...")
            await asyncio.sleep(load.grace_period)
        finally:
            await self.shutdown()

        if self._fatal is not None:
            raise self._fatal

        report = self.correlator.generate_report(len(self.users))
        report.connected_users = len(self.users)
        report.total_users = load.users
        report.failed_connections = self.failed_connections
        report.duration = duration
        return report

    async def wait_for_end(self):
        try:
            await asyncio.wait_for(self._end.wait(), timeout=self.params.load.duration)
        except asyncio.TimeoutError:
            print("\n⏱ Test duration completed")

    async def setup_board(self):
        admin = self.params.admin

        progress("⚙", "Creating admin account")
        try:
            cookie = await self.admin.register(admin.email, ADMIN_NAME, admin.password)
        except RateLimitError:
            raise
        except APIError as err:
            raise SetupError(f"admin registration failed: {err}") from err
        if not cookie:
            raise SetupError("no session cookie received from registration")
        progress("✓", "Admin registered and authenticated")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        progress("✓", "Creating test series")
        self.series_id = await self._series(f"Load Test Series {timestamp}")

        progress("✓", "Creating test board")
        try:
            board = await self.admin.create_board(f"Load Test Board {timestamp}", self.series_id)
            self.board_id = board.id

            progress("✓", "Setting up board template")
            await self.admin.setup_board_template(self.board_id, BOARD_TEMPLATE)
        except RateLimitError:
            raise
        except APIError as err:
            raise SetupError(f"board setup failed: {err}") from err

        progress("✓", "Activating board")
        try:
            await self.admin.update_board(self.board_id, {"status": "active"})
        except RateLimitError:
            raise
        except APIError as err:
            logger.warning("Failed to activate board, continuing anyway", {"error": str(err)})

        board = await self.admin.get_board(self.board_id)
        self.column_ids = board.column_ids
        if not self.column_ids:
            raise SetupError("no columns found in board")
        progress("✓", f"Found {len(self.column_ids)} columns")

        await self.enable_scene_flags(board)

    async def _series(self, name: str) -> str:
        try:
            series = await self.admin.create_series(name, "Series for load testing")
        except RateLimitError:
            raise
        except APIError as err:
            existing = await self.admin.get_series()
            if not existing:
                raise SetupError(f"failed to create or get series: {err}") from err

            series = existing[0]
            progress("ℹ", f"Using existing series: {series.id}")

        return series.id

    async def enable_scene_flags(self, board):
        scene = board.current_scene
        if scene is None:
            logger.warning(
                "No current scene found, permissions may be restricted", {"board": board.id}
            )
            return

        progress("ℹ", f"Current scene: {scene.title} ({scene.mode})")
        progress("⚙", "Ensuring all scene permissions enabled for testing")
        await self.admin.update_scene(board.id, scene.id, {"flags": SCENE_FLAGS})
        progress("✓", "Scene permissions enabled")

        scene = (await self.admin.get_board(board.id)).current_scene
        missing = [flag for flag in REQUIRED_FLAGS if scene is None or not scene.has_flag(flag)]
        if missing:
            raise SetupError(f"scene permissions not properly set, missing: {', '.join(missing)}")
        progress("✓", "Scene permissions verified")

    def print_board_url(self):
        url = f"{self.params.server.url.rstrip('/')}/board/{self.board_id}"
        lines = ["   🔗 OPEN THIS URL IN YOUR BROWSER TO WATCH THE TEST:", "", f"   {url}"]
        print("\n".join(["", BANNER, "", *lines, "", BANNER, ""]))

    async def spawn_users(self):
        total = self.params.load.users
        print(f"\nSpawning {total} users...")

        for user_id in range(1, total + 1):
            if self._end.is_set():
                break

            user = UserSimulator(
                user_id, self.board_id, self.column_ids, self.correlator, self.params
            )

            try:
                await user.setup()
            except SetupError as err:
                self.failed_connections += 1
                logger.error("User setup failed", {"user": user_id, "error": str(err)})
                continue

            try:
                await self.admin.add_user_to_series(self.series_id, user.email)
            except APIError as err:
                await user.stop()
                if isinstance(err, RateLimitError):
                    raise
                self.failed_connections += 1
                logger.error("Adding user to series failed", {"user": user_id, "error": str(err)})
                continue

            self.users.append(user)
            self.correlator.set_connected_users(len(self.users))
            CONNECTED_USERS.set(len(self.users))

            user.start(self.stop_event, self.ticker, self.abort)
            print(f"✓ [Spawn] User {user_id}/{total} connected")

            await asyncio.sleep(self.params.load.stagger)

        print(f"\n✓ Connected {len(self.users)}/{total} users")
        if self.failed_connections > 0:
            print(f"✗ {self.failed_connections} connection failures")

    def monitor_line(self, elapsed: float) -> str:
        sent, received = self.correlator.get_stats()
        rate = sent / elapsed if elapsed > 0 else 0.0

        return (
            f"[{elapsed:3.0f}s] Active: {self.active_users}/{len(self.users)} | "
            f"Events sent: {sent} | Events received: {received} | Rate: {rate:.1f}/s"
        )

    def update_metrics(self):
        sent, received = self.correlator.get_stats()
        EVENTS_SENT.set(sent)
        EVENTS_RECEIVED.set(received)
        PENDING_EVENTS.set(len(self.correlator.pending))
        CONNECTED_USERS.set(self.active_users)

    async def monitor(self):
        loop = asyncio.get_running_loop()

        while True:
            await asyncio.sleep(self.params.load.monitor_interval)
            self.update_metrics()
            print(self.monitor_line(loop.time() - self._started_at))

    async def shutdown(self):
        self.stop_event.set()
        if self.ticker is not None:
            await self.ticker.stop()

        if self.users:
            print("[Cleanup] Disconnecting users...")
        await asyncio.gather(*(user.stop() for user in self.users))

        self.update_metrics()
        await self.admin.close()
