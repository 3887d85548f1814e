import pytest

from sseload.components.decorators import connectguard


class Guarded:
    def __init__(self, connected: bool):
        self.connected = connected
        self.calls = 0

    @connectguard
    async def act(self, value: int) -> int:
        self.calls += 1
        return value


@pytest.mark.asyncio
async def test_connectguard():
    assert await Guarded(True).act(4) == 4

    guarded = Guarded(False)
    assert await guarded.act(4) is None
    assert guarded.calls == 0
