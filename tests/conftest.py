import json
import sys
from pathlib import Path

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class DummyWebSocket:
    """Stands in for a websockets connection: records frames, exposes ``state``."""

    def __init__(self, remote_address=("127.0.0.1", 50000)) -> None:
        self.sent_messages: list[str] = []
        self.state = State.OPEN
        self.remote_address = remote_address
        self.close_code: int | None = None

    async def send(self, data: str) -> None:
        if self.state is not State.OPEN:
            raise ConnectionClosedError(None, None)
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.state = State.CLOSED
        self.close_code = code

    def drop(self) -> None:
        """Simulate the peer vanishing without the close handler having run yet."""
        self.state = State.CLOSED

    @property
    def frames(self) -> list[dict]:
        return [json.loads(m) for m in self.sent_messages]

    def frames_of(self, msg_type: str) -> list[dict]:
        return [f for f in self.frames if f.get("type") == msg_type]


@pytest.fixture
def make_link():
    from server.core.ConnectionLink import ConnectionLink

    def _make(remote_address=("127.0.0.1", 50000)):
        return ConnectionLink(DummyWebSocket(remote_address))

    return _make

