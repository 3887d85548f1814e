import asyncio
import json
import logging
from enum import Enum
from typing import Any, Optional

import aiohttp

from ..components.logs import configure_logging
from . import response_objects as resp
from .errors import APIError

configure_logging()
logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


class Method(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class BoardAPI:
    """
    Application API helper: authentication, series/board management and the
    card actions performed by simulated users. Every user owns its own instance,
    hence its own cookie jar and session cookie.
    """

    def __init__(self, url: str, timeout: float = 30.0):
        self.host = url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # unsafe jar so that cookies set by IP hosts (127.0.0.1) are kept
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.CookieJar(unsafe=True))
        return self._session

    @property
    def session_cookie(self) -> str:
        if self._session is None:
            return ""

        for cookie in self._session.cookie_jar:
            if cookie.key == SESSION_COOKIE:
                return cookie.value
        return ""

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def __call(
        self,
        method: Method,
        endpoint: str,
        data: Optional[dict] = None,
        error: str = "request failed",
        expected: tuple[int, ...] = (200,),
    ) -> str:
        url = f"{self.host}{endpoint}"
        logger.debug("API request", {"method": method.value, "url": url, "data": data})

        try:
            async with self.session.request(
                method.value, url, json=data, timeout=self.timeout
            ) as res:
                status = res.status
                body = await res.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise APIError(f"{error}: {type(err).__name__}: {err}") from err

        logger.debug(
            "API response", {"method": method.value, "url": url, "status": status, "body": body}
        )

        if status not in expected:
            raise APIError.from_response(error, status, body)

        return body

    async def __call_json(
        self, method: Method, endpoint: str, data: Optional[dict] = None, **kwargs
    ) -> Any:
        body = await self.__call(method, endpoint, data, **kwargs)
        try:
            return json.loads(body)
        except ValueError as err:
            error = kwargs.get("error", "request failed")
            raise APIError(f"{error}: invalid JSON", body=body) from err

    async def register(self, email: str, name: str, password: str) -> str:
        """
        Registers a new account and returns the session cookie set by the server.
        :param: email: str
        :param: name: str
        :param: password: str
        :return: session cookie: str
        """
        data = {"email": email, "name": name, "password": password}
        await self.__call(
            Method.POST, "/api/auth/register", data, error="register failed", expected=(200, 201)
        )
        return self.session_cookie

    async def login(self, email: str, password: str) -> str:
        """
        Logs into an existing account and returns the session cookie.
        """
        data = {"email": email, "password": password}
        await self.__call(Method.POST, "/api/auth/login", data, error="login failed")
        return self.session_cookie

    async def create_series(self, name: str, description: str) -> resp.Series:
        data = {"name": name, "description": description}
        result = await self.__call_json(
            Method.POST, "/api/series", data, error="create series failed", expected=(200, 201)
        )
        if not isinstance(result, dict) or not result.get("series"):
            raise APIError("no series in response")
        return resp.Series.from_dict(result["series"])

    async def get_series(self) -> list[resp.Series]:
        result = await self.__call_json(Method.GET, "/api/series", error="get series failed")
        return [resp.Series.from_dict(s) for s in (result or {}).get("series") or []]

    async def create_board(self, name: str, series_id: str) -> resp.Board:
        data = {"name": name, "seriesId": series_id}
        result = await self.__call_json(
            Method.POST, "/api/boards", data, error="create board failed", expected=(200, 201)
        )
        return self._board_from(result)

    async def get_board(self, board_id: str) -> resp.Board:
        result = await self.__call_json(
            Method.GET, f"/api/boards/{board_id}", error="get board failed"
        )
        return self._board_from(result)

    async def setup_board_template(self, board_id: str, template: str):
        await self.__call(
            Method.POST,
            f"/api/boards/{board_id}/setup-template",
            {"template": template},
            error="setup template failed",
        )

    async def update_board(self, board_id: str, updates: dict):
        await self.__call(
            Method.PATCH, f"/api/boards/{board_id}", updates, error="update board failed"
        )

    async def update_scene(self, board_id: str, scene_id: str, updates: dict):
        await self.__call(
            Method.PATCH,
            f"/api/boards/{board_id}/scenes/{scene_id}",
            updates,
            error="update scene failed",
        )

    async def add_user_to_series(self, series_id: str, email: str, role: str = "member"):
        await self.__call(
            Method.POST,
            f"/api/series/{series_id}/users",
            {"email": email, "role": role},
            error="add user to series failed",
        )

    async def join_board(self, client_id: str, board_id: str, user_id: str):
        """
        Announces the stream client on the board so that it starts receiving
        the board's broadcasts.
        """
        data = {
            "action": "join_board",
            "clientId": client_id,
            "boardId": board_id,
            "userId": user_id,
        }
        await self.__call(Method.POST, "/api/sse", data, error="join board failed")

    async def create_card(self, board_id: str, column_id: str, content: str) -> resp.Card:
        data = {"columnId": column_id, "content": content}
        result = await self.__call_json(
            Method.POST,
            f"/api/boards/{board_id}/cards",
            data,
            error="create card failed",
            expected=(200, 201),
        )
        if not isinstance(result, dict) or not result.get("card"):
            raise APIError("no card in response")
        return resp.Card.from_dict(result["card"])

    async def move_card(self, card_id: str, column_id: str):
        await self.__call(
            Method.PUT,
            f"/api/cards/{card_id}/move",
            {"columnId": column_id},
            error="move card failed",
        )

    async def vote_on_card(self, card_id: str):
        await self.__call(Method.POST, f"/api/cards/{card_id}/vote", {}, error="vote failed")

    async def group_cards(self, board_id: str, card_ids: list[str], group_id: str):
        await self.__call(
            Method.POST,
            f"/api/boards/{board_id}/cards/group",
            {"cardIds": card_ids, "groupId": group_id},
            error="group cards failed",
        )

    async def group_card_onto(self, card_id: str, target_card_id: str):
        await self.__call(
            Method.POST,
            f"/api/cards/{card_id}/group-onto",
            {"targetCardId": target_card_id},
            error="group card onto failed",
        )

    @staticmethod
    def _board_from(result: Any) -> resp.Board:
        if not isinstance(result, dict) or not result.get("board"):
            raise APIError("no board in response")
        return resp.Board.from_dict(result["board"])
